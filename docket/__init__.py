"""docket: verified delivery receipts.

Every task leaves a trail. The trail is hash-chained; the receipt is the proof.
"""

from __future__ import annotations

__all__ = [
    "__version__",
    "GENESIS_HASH",
    "CHAIN_VERSION",
]

__version__ = "1.0.0"

# prev_hash of the first event in every task chain.
GENESIS_HASH = "0" * 64

# Bumped whenever the canonical hash encoding changes. Stored per event.
CHAIN_VERSION = 1
