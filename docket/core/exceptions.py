"""docket.core.exceptions

Errors are part of the interface.

Authentication and integrity failures are terminal for a request.
Summary failures never leave the cascade.
"""

from __future__ import annotations


class DocketError(Exception):
    """Base exception for docket."""


class ConfigError(DocketError):
    """Configuration is missing, invalid, or inconsistent."""


# -----------------
# Authentication
# -----------------


class SignatureError(DocketError):
    """Webhook body could not be authenticated."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = str(provider)
        super().__init__(f"{self.provider}: {message}")


class SignatureInvalidError(SignatureError):
    """Signature header missing, malformed, or not matching the body."""


class SignatureExpiredError(SignatureError):
    """Signed timestamp is outside the replay window."""


class SecretNotConfiguredError(SignatureError):
    """No shared secret for this workspace/provider. Never a pass-through."""


# -----------------
# Event store
# -----------------


class EventStoreError(DocketError):
    """Event store failures: schema, IO, integrity, or invariants."""


class TaskNotFoundError(EventStoreError):
    def __init__(self, task_ref: str) -> None:
        self.task_ref = str(task_ref)
        super().__init__(f"task not found: {self.task_ref}")


class ChainCorruptedError(EventStoreError):
    """Recomputed hash chain does not match what is stored. Never auto-repaired."""

    def __init__(self, task_id: str, event_id: str, reason: str) -> None:
        self.task_id = task_id
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"chain corrupted for task {task_id} at event {event_id} ({reason})")


class PersistenceError(EventStoreError):
    """Storage-layer failure. Retryable by the caller."""


class DedupeConflictError(EventStoreError):
    """Deduplication key reused with different payload."""


class StaleTailError(EventStoreError):
    """A conditional append found a different tail than the caller read."""

    def __init__(self, task_id: str, expected: str, actual: str | None) -> None:
        self.task_id = task_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"task {task_id} tail moved: expected {expected}, found {actual}")


class AppendCancelledError(EventStoreError):
    """The caller gave up on this append before it was written."""


# -----------------
# Domain lookups
# -----------------


class WorkspaceNotFoundError(DocketError):
    def __init__(self, workspace_id: str) -> None:
        self.workspace_id = str(workspace_id)
        super().__init__(f"workspace not found: {self.workspace_id}")


class PayloadError(DocketError):
    """Provider payload is not parseable or lacks required fields."""


class PacketNotFoundError(DocketError):
    """Proof packet (or share token) does not exist."""


class PacketStateError(DocketError):
    """Operation not allowed in the packet's current state."""


class SummaryUnavailableError(DocketError):
    """A summary tier failed. Internal to the cascade."""
