"""docket.security.redaction

Secret redaction helpers.

Provider payloads and upstream error strings pass through here before they
reach a log line.
"""

from __future__ import annotations

import copy
import re
from typing import Any

_REDACTION_PATTERNS: list[tuple[str, str]] = [
    # Generic key/value
    (r"(?i)(api[_-]?key|secret|password)\s*[:=]\s*[^\s\"']+", "[REDACTED]"),
    # Bearer headers echoed back in error bodies
    (r"(?i)bearer\s+[a-zA-Z0-9._~+/=-]{8,}", "Bearer [REDACTED]"),
    # OpenRouter / OpenAI
    (r"sk-or-v1-[a-zA-Z0-9]{20,}", "[REDACTED]"),
    (r"sk-[a-zA-Z0-9]{20,}", "[REDACTED]"),
    # Slack tokens
    (r"xox[abposr]-[a-zA-Z0-9-]{10,}", "[REDACTED]"),
    # GitHub tokens
    (r"gh[pousr]_[a-zA-Z0-9]{20,}", "[REDACTED]"),
    # Atlassian API tokens
    (r"ATATT[a-zA-Z0-9_=-]{20,}", "[REDACTED]"),
    # JWT
    (r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+", "[REDACTED]"),
]

_SENSITIVE_FIELD_NAMES = {
    "api_key",
    "apikey",
    "secret",
    "password",
    "token",
    "access_token",
    "signing_secret",
    "webhook_secret",
    "authorization",
    "x-slack-signature",
    "x-hub-signature-256",
    "x-atlassian-webhook-signature",
}


def redact_secrets(text: str) -> str:
    out = text
    for pattern, repl in _REDACTION_PATTERNS:
        out = re.sub(pattern, repl, out)
    return out


def sanitize_for_log(data: dict[str, Any]) -> dict[str, Any]:
    """Deep-copy and redact sensitive fields + embedded secrets."""

    def _walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            new: dict[str, Any] = {}
            for k, v in obj.items():
                if str(k).lower() in _SENSITIVE_FIELD_NAMES:
                    new[k] = "[REDACTED]"
                else:
                    new[k] = _walk(v)
            return new
        if isinstance(obj, list):
            return [_walk(v) for v in obj]
        if isinstance(obj, tuple):
            return [_walk(v) for v in obj]
        if isinstance(obj, str):
            return redact_secrets(obj)
        return obj

    return _walk(copy.deepcopy(data))
