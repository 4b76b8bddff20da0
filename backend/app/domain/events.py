"""Typed representations of raw ledger logs and the raffle contract events decoded from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EventType(str, Enum):
    ENTRY_SUBMITTED = "EntrySubmitted"
    DRAW_REQUESTED = "DrawRequested"
    WINNERS_SELECTED = "WinnersSelected"
    RAFFLE_CANCELLED = "RaffleCancelled"

    @property
    def signature(self) -> str:
        """Canonical ABI signature hashed into topic0."""

        return _SIGNATURES[self]


_SIGNATURES = {
    EventType.ENTRY_SUBMITTED: "EntrySubmitted(uint256,address,uint256)",
    EventType.DRAW_REQUESTED: "DrawRequested(uint256,uint256)",
    EventType.WINNERS_SELECTED: "WinnersSelected(uint256,address[],uint256,uint256,uint256)",
    EventType.RAFFLE_CANCELLED: "RaffleCancelled(uint256,string)",
}


@dataclass(slots=True)
class RawLog:
    """Ledger log entry normalized to plain Python values."""

    address: str
    topics: list[str]
    data: bytes
    block_number: int
    transaction_hash: str
    log_index: int
    removed: bool = False


@dataclass(frozen=True, slots=True)
class ContractEvent:
    raffle_id: int
    transaction_hash: str
    log_index: int
    block_number: int

    @property
    def event_type(self) -> EventType:
        raise NotImplementedError

    @property
    def event_ref(self) -> str:
        return f"{self.event_type.value}:{self.transaction_hash}"


@dataclass(frozen=True, slots=True)
class EntrySubmitted(ContractEvent):
    participant: str
    num_entries: int

    @property
    def event_type(self) -> EventType:
        return EventType.ENTRY_SUBMITTED


@dataclass(frozen=True, slots=True)
class DrawRequested(ContractEvent):
    request_id: int

    @property
    def event_type(self) -> EventType:
        return EventType.DRAW_REQUESTED


@dataclass(frozen=True, slots=True)
class WinnersSelected(ContractEvent):
    prize_per_winner: int
    total_prize: int
    protocol_fee: int
    winners: tuple[str, ...] = field(default_factory=tuple)

    @property
    def event_type(self) -> EventType:
        return EventType.WINNERS_SELECTED


@dataclass(frozen=True, slots=True)
class RaffleCancelled(ContractEvent):
    reason: str

    @property
    def event_type(self) -> EventType:
        return EventType.RAFFLE_CANCELLED


TypedEvent = EntrySubmitted | DrawRequested | WinnersSelected | RaffleCancelled


__all__ = [
    "ContractEvent",
    "DrawRequested",
    "EntrySubmitted",
    "EventType",
    "RaffleCancelled",
    "RawLog",
    "TypedEvent",
    "WinnersSelected",
]
