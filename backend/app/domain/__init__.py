"""Domain types for ledger events and sync failures."""

from .errors import (
    ApplyError,
    ChainUnavailableError,
    CheckpointStoreError,
    FATAL_SYNC_ERRORS,
    MalformedEventError,
    MirrorStoreError,
    RangeTooWideError,
    SyncError,
)
from .events import (
    ContractEvent,
    DrawRequested,
    EntrySubmitted,
    EventType,
    RaffleCancelled,
    RawLog,
    TypedEvent,
    WinnersSelected,
)

__all__ = [
    "ApplyError",
    "ChainUnavailableError",
    "CheckpointStoreError",
    "ContractEvent",
    "DrawRequested",
    "EntrySubmitted",
    "EventType",
    "FATAL_SYNC_ERRORS",
    "MalformedEventError",
    "MirrorStoreError",
    "RaffleCancelled",
    "RangeTooWideError",
    "RawLog",
    "SyncError",
    "TypedEvent",
    "WinnersSelected",
]
