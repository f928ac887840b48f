"""docket.proofs

Proof packets: the receipt a task earns once its closure is final.
"""

from docket.proofs.assembler import ProofAssembler, SharedProof
from docket.proofs.closure import ClosureSweeper, evaluate_closure, resolve_policy
from docket.proofs.export import ExportArtifact
from docket.proofs.state_machine import PacketStatus, fold, next_status
from docket.proofs.store import ProofPacket, ProofStore

__all__ = [
    "ClosureSweeper",
    "ExportArtifact",
    "PacketStatus",
    "ProofAssembler",
    "ProofPacket",
    "ProofStore",
    "SharedProof",
    "evaluate_closure",
    "fold",
    "next_status",
    "resolve_policy",
]
