"""Repository abstractions for database interactions."""

from .checkpoint_repository import CheckpointStore
from .raffle_repository import RaffleRepository
from .types import Checkpoint, EntryTotals, RaffleTarget

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "EntryTotals",
    "RaffleRepository",
    "RaffleTarget",
]
