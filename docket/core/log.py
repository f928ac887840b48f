"""docket.core.log

Logging setup. Messages are snake_case event names; context rides in ``extra``.
"""

from __future__ import annotations

import json
import logging

from docket.core.config import LoggingConfig
from docket.security.redaction import sanitize_for_log

# Attributes every LogRecord carries; anything else came from ``extra``.
_RESERVED = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, object] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        extra = {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}
        out.update(sanitize_for_log(extra))
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return json.dumps(out, default=str, sort_keys=True)


def configure_logging(cfg: LoggingConfig) -> None:
    handler = logging.StreamHandler()
    if cfg.json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    root = logging.getLogger("docket")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(cfg.level.upper())
