"""docket.security

Inbound authentication and outbound hygiene.

Nothing is written to the log before its signature verifies.
"""

from docket.security.redaction import redact_secrets, sanitize_for_log
from docket.security.signatures import Verified, verify_github, verify_jira, verify_request, verify_slack

__all__ = [
    "Verified",
    "redact_secrets",
    "sanitize_for_log",
    "verify_github",
    "verify_jira",
    "verify_request",
    "verify_slack",
]
