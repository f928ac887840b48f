"""docket.security.signatures

Webhook signature verification.

Every verifier is a pure predicate over the exact wire bytes: no parsing, no
re-serialization, no logging. It either returns ``Verified`` or raises.

- Slack:  ``v0=`` + HMAC-SHA256(secret, "v0:{ts}:{body}``), 5 minute replay window
- GitHub: ``sha256=`` + HMAC-SHA256(secret, body); replay is handled by delivery dedupe
- Jira:   hex HMAC-SHA256(secret, body) (``sha256=`` prefix tolerated)
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Mapping
from dataclasses import dataclass

from docket.core.events import Provider
from docket.core.exceptions import (
    SecretNotConfiguredError,
    SignatureExpiredError,
    SignatureInvalidError,
)

SLACK_REPLAY_WINDOW_SECONDS = 5 * 60

SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
GITHUB_SIGNATURE_HEADER = "X-Hub-Signature-256"
JIRA_SIGNATURE_HEADER = "X-Atlassian-Webhook-Signature"


@dataclass(frozen=True, slots=True)
class Verified:
    provider: Provider
    timestamp: int | None = None


def hmac_sha256_hex(secret: str, data: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()


def _same(a: str, b: str) -> bool:
    # compare_digest on str rejects non-ASCII; bytes keeps it total.
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _require_secret(provider: Provider, secret: str | None) -> str:
    if not secret:
        raise SecretNotConfiguredError(provider, "no webhook secret configured for workspace")
    return secret


def header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup over any mapping."""

    v = headers.get(name)
    if v is not None:
        return v
    lname = name.lower()
    for k, val in headers.items():
        if k.lower() == lname:
            return val
    return None


def verify_slack(
    raw_body: bytes,
    *,
    signature: str | None,
    timestamp: str | None,
    secret: str | None,
    now: float | None = None,
) -> Verified:
    key = _require_secret(Provider.SLACK, secret)
    if not signature or not timestamp:
        raise SignatureInvalidError(Provider.SLACK, "missing signature headers")

    raw_ts = timestamp.strip()
    try:
        ts = int(raw_ts)
    except ValueError as e:
        raise SignatureInvalidError(Provider.SLACK, "timestamp is not an integer") from e

    ref = time.time() if now is None else now
    if abs(int(ref) - ts) > SLACK_REPLAY_WINDOW_SECONDS:
        raise SignatureExpiredError(Provider.SLACK, "request timestamp outside replay window")

    # Slack signs the header value as sent, not its integer form.
    base = b"v0:" + raw_ts.encode("utf-8") + b":" + raw_body
    expected = "v0=" + hmac_sha256_hex(key, base)
    if not _same(signature.strip(), expected):
        raise SignatureInvalidError(Provider.SLACK, "signature mismatch")
    return Verified(provider=Provider.SLACK, timestamp=ts)


def verify_github(raw_body: bytes, *, signature: str | None, secret: str | None) -> Verified:
    key = _require_secret(Provider.GITHUB, secret)
    if not signature:
        raise SignatureInvalidError(Provider.GITHUB, "missing signature header")

    expected = "sha256=" + hmac_sha256_hex(key, raw_body)
    if not _same(signature.strip(), expected):
        raise SignatureInvalidError(Provider.GITHUB, "signature mismatch")
    return Verified(provider=Provider.GITHUB)


def verify_jira(raw_body: bytes, *, signature: str | None, secret: str | None) -> Verified:
    key = _require_secret(Provider.JIRA, secret)
    if not signature:
        raise SignatureInvalidError(Provider.JIRA, "missing signature header")

    given = signature.strip()
    if given.lower().startswith("sha256="):
        given = given[len("sha256=") :]
    expected = hmac_sha256_hex(key, raw_body)
    if not _same(given.lower(), expected):
        raise SignatureInvalidError(Provider.JIRA, "signature mismatch")
    return Verified(provider=Provider.JIRA)


def verify_request(
    provider: Provider | str,
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
    *,
    now: float | None = None,
) -> Verified:
    """Dispatch to the provider's verifier using its signature headers."""

    p = Provider(provider)
    if p is Provider.SLACK:
        return verify_slack(
            raw_body,
            signature=header(headers, SLACK_SIGNATURE_HEADER),
            timestamp=header(headers, SLACK_TIMESTAMP_HEADER),
            secret=secret,
            now=now,
        )
    if p is Provider.GITHUB:
        return verify_github(raw_body, signature=header(headers, GITHUB_SIGNATURE_HEADER), secret=secret)
    return verify_jira(raw_body, signature=header(headers, JIRA_SIGNATURE_HEADER), secret=secret)
