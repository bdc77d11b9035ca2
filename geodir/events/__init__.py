from geodir.events.bus import ChangeEventBus
from geodir.events.log import ChangeEventLog, ClaimedChangeEvent, PostgresChangeEventLog
from geodir.events.types import ChangeEvent, ChangeKind

__all__ = [
    "ChangeEvent",
    "ChangeEventBus",
    "ChangeEventLog",
    "ChangeKind",
    "ClaimedChangeEvent",
    "PostgresChangeEventLog",
]
