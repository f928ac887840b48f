"""docket.core

Core primitives.

If a module needs to exist, it should probably depend only on this package.
"""

from .config import Config
from .database import Database
from .event_log import EventLog
from .events import EventType, Provider, TriggerSource
from .exceptions import DocketError
from .models import ChainVerification, Event, Task, Workspace
from .registry import Registry
from .time import parse_dt, to_iso, utc_now

__all__ = [
    "ChainVerification",
    "Config",
    "Database",
    "DocketError",
    "Event",
    "EventLog",
    "EventType",
    "Provider",
    "Registry",
    "Task",
    "TriggerSource",
    "Workspace",
    "utc_now",
    "parse_dt",
    "to_iso",
]
