"""Scoped log queries against the raffle contract."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from hexbytes import HexBytes
from loguru import logger
from web3 import Web3

from app.domain import EventType, RawLog

from .client import LedgerClient


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def _parse_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def event_topic(event_type: EventType) -> str:
    """keccak256 of the canonical event signature."""

    return _hex(Web3.keccak(text=event_type.signature))


def encode_uint_topic(value: int) -> str:
    """Left-pad an indexed uint256 argument to a 32-byte topic."""

    if value < 0:
        raise ValueError("indexed uint256 topics cannot be negative")
    return "0x" + value.to_bytes(32, "big").hex()


def normalize_log(log: Mapping[str, Any]) -> RawLog:
    data = log.get("data") or b""
    if isinstance(data, str):
        data = HexBytes(data)
    return RawLog(
        address=str(log.get("address", "")).lower(),
        topics=[_hex(topic).lower() for topic in (log.get("topics") or [])],
        data=bytes(data),
        block_number=_parse_int(log.get("blockNumber", 0)),
        transaction_hash=_hex(log.get("transactionHash", b"")).lower(),
        log_index=_parse_int(log.get("logIndex", 0)),
        removed=bool(log.get("removed", False)),
    )


class LogFetcher:
    """Fetch raw logs for one raffle contract event type over a block window."""

    def __init__(self, ledger: LedgerClient, contract_address: str) -> None:
        self._ledger = ledger
        self.contract_address = contract_address
        self._topics = {event_type: event_topic(event_type) for event_type in EventType}

    def fetch(
        self,
        event_type: EventType,
        from_block: int,
        to_block: int,
        raffle_external_id: int | None = None,
    ) -> list[RawLog]:
        """Return matching logs ordered by (block, log index).

        When ``raffle_external_id`` is given the indexed ``raffleId`` topic is
        filtered by the node, so only that raffle's events are transferred.
        Ledger errors (``ChainUnavailableError``, ``RangeTooWideError``)
        propagate unchanged.
        """

        topics: list[str | None] = [self._topics[event_type]]
        if raffle_external_id is not None:
            topics.append(encode_uint_topic(raffle_external_id))

        raw_logs = self._ledger.get_logs(
            address=self.contract_address,
            topics=topics,
            from_block=from_block,
            to_block=to_block,
        )
        logs = [normalize_log(log) for log in raw_logs]
        live = [log for log in logs if not log.removed]
        if len(live) != len(logs):
            logger.warning(
                "Dropped {} removed {} logs in {}-{}",
                len(logs) - len(live),
                event_type.value,
                from_block,
                to_block,
            )
        live.sort(key=lambda log: (log.block_number, log.log_index))
        return live
