"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Snapshot of the last block fully processed for a chain."""

    last_synced_block: int = 0
    last_error: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class RaffleTarget:
    """Detached view of a raffle that still needs syncing."""

    raffle_id: str
    contract_raffle_id: str | None
    status: str


@dataclass(frozen=True, slots=True)
class EntryTotals:
    total_tickets: int
    total_participants: int
    total_paid: int


__all__ = ["Checkpoint", "EntryTotals", "RaffleTarget"]
