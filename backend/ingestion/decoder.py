"""Decode raw raffle contract logs into typed events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from app.domain import (
    DrawRequested,
    EntrySubmitted,
    EventType,
    MalformedEventError,
    RaffleCancelled,
    RawLog,
    TypedEvent,
    WinnersSelected,
)

from .fetcher import event_topic


@dataclass(frozen=True, slots=True)
class EventLayout:
    """ABI layout of one event: indexed argument types after topic0, then data types."""

    indexed: tuple[str, ...]
    data: tuple[str, ...]


EVENT_LAYOUTS: dict[EventType, EventLayout] = {
    EventType.ENTRY_SUBMITTED: EventLayout(indexed=("uint256", "address"), data=("uint256",)),
    EventType.DRAW_REQUESTED: EventLayout(indexed=("uint256",), data=("uint256",)),
    EventType.WINNERS_SELECTED: EventLayout(
        indexed=("uint256",), data=("address[]", "uint256", "uint256", "uint256")
    ),
    EventType.RAFFLE_CANCELLED: EventLayout(indexed=("uint256",), data=("string",)),
}


def _topic_value(topic: str, abi_type: str) -> Any:
    body = topic[2:] if topic.startswith("0x") else topic
    if len(body) != 64:
        raise ValueError(f"indexed topic must be 32 bytes, got {len(body) // 2}")
    raw = int(body, 16)
    if abi_type == "address":
        if raw >> 160:
            raise ValueError("address topic has non-zero padding")
        return "0x" + body[-40:].lower()
    return raw


class EventDecoder:
    """Pure decoder for the four raffle contract events; never touches the store."""

    def __init__(self) -> None:
        self._topics = {event_type: event_topic(event_type) for event_type in EventType}

    def decode(self, raw_log: RawLog, event_type: EventType) -> TypedEvent:
        layout = EVENT_LAYOUTS[event_type]
        tx_hash = raw_log.transaction_hash

        def malformed(reason: str) -> MalformedEventError:
            return MalformedEventError(
                f"{event_type.value} log {tx_hash}#{raw_log.log_index}: {reason}",
                transaction_hash=tx_hash,
                log_index=raw_log.log_index,
            )

        topics = raw_log.topics
        if not topics or topics[0].lower() != self._topics[event_type]:
            raise malformed("topic0 does not match event signature")
        if len(topics) != 1 + len(layout.indexed):
            raise malformed(
                f"expected {1 + len(layout.indexed)} topics, got {len(topics)}"
            )

        try:
            indexed = [
                _topic_value(topic, abi_type)
                for topic, abi_type in zip(topics[1:], layout.indexed)
            ]
            values = decode(list(layout.data), raw_log.data)
        except (DecodingError, ValueError, TypeError, OverflowError) as exc:
            raise malformed(f"cannot decode payload ({exc})") from exc

        common = {
            "raffle_id": int(indexed[0]),
            "transaction_hash": tx_hash,
            "log_index": raw_log.log_index,
            "block_number": raw_log.block_number,
        }

        if event_type == EventType.ENTRY_SUBMITTED:
            (num_entries,) = values
            if num_entries <= 0:
                raise malformed("numEntries must be positive")
            return EntrySubmitted(participant=indexed[1], num_entries=int(num_entries), **common)

        if event_type == EventType.DRAW_REQUESTED:
            (request_id,) = values
            return DrawRequested(request_id=int(request_id), **common)

        if event_type == EventType.WINNERS_SELECTED:
            winners, prize_per_winner, total_prize, protocol_fee = values
            if not winners:
                raise malformed("winners array is empty")
            return WinnersSelected(
                winners=tuple(str(address).lower() for address in winners),
                prize_per_winner=int(prize_per_winner),
                total_prize=int(total_prize),
                protocol_fee=int(protocol_fee),
                **common,
            )

        (reason,) = values
        return RaffleCancelled(reason=str(reason), **common)
