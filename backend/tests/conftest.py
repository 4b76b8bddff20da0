from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from eth_abi import encode

from app.core.config import Settings
from app.db import Base, _create_engine, _create_session_factory
from app.domain import EventType
from app.models import Raffle, RaffleStatus
from ingestion.fetcher import encode_uint_topic, event_topic

CONTRACT_ADDRESS = "0x" + "ab" * 20


def tx_hash(seed: int) -> str:
    return "0x" + f"{seed:064x}"


def wallet(seed: int) -> str:
    return "0x" + f"{seed:040x}"


def _address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


class LogFactory:
    """Build raw ledger logs shaped like ``eth_getLogs`` results."""

    def __init__(self, address: str = CONTRACT_ADDRESS) -> None:
        self.address = address

    def build(
        self,
        event_type: EventType,
        indexed: Sequence[str],
        data: bytes,
        *,
        block: int = 1000,
        tx: str | None = None,
        log_index: int = 0,
        removed: bool = False,
    ) -> dict[str, Any]:
        return {
            "address": self.address,
            "topics": [event_topic(event_type), *indexed],
            "data": "0x" + data.hex(),
            "blockNumber": block,
            "transactionHash": tx or tx_hash(block * 1000 + log_index),
            "logIndex": log_index,
            "removed": removed,
        }

    def entry(self, raffle_id: int, participant: str, num_entries: int, **kwargs) -> dict[str, Any]:
        return self.build(
            EventType.ENTRY_SUBMITTED,
            [encode_uint_topic(raffle_id), _address_topic(participant)],
            encode(["uint256"], [num_entries]),
            **kwargs,
        )

    def draw(self, raffle_id: int, request_id: int, **kwargs) -> dict[str, Any]:
        return self.build(
            EventType.DRAW_REQUESTED,
            [encode_uint_topic(raffle_id)],
            encode(["uint256"], [request_id]),
            **kwargs,
        )

    def winners(
        self,
        raffle_id: int,
        winners: Sequence[str],
        *,
        prize_per_winner: int,
        total_prize: int | None = None,
        protocol_fee: int = 0,
        **kwargs,
    ) -> dict[str, Any]:
        total = total_prize if total_prize is not None else prize_per_winner * len(winners)
        return self.build(
            EventType.WINNERS_SELECTED,
            [encode_uint_topic(raffle_id)],
            encode(
                ["address[]", "uint256", "uint256", "uint256"],
                [list(winners), prize_per_winner, total, protocol_fee],
            ),
            **kwargs,
        )

    def cancel(self, raffle_id: int, reason: str, **kwargs) -> dict[str, Any]:
        return self.build(
            EventType.RAFFLE_CANCELLED,
            [encode_uint_topic(raffle_id)],
            encode(["string"], [reason]),
            **kwargs,
        )


class FakeLedger:
    """In-memory ledger node honouring address, topic and block range filters."""

    def __init__(self, head: int = 0) -> None:
        self.head = head
        self.logs: list[dict[str, Any]] = []
        self.calls: list[dict[str, Any]] = []
        self.head_error: Exception | None = None
        self.logs_error: Exception | None = None

    def get_latest_block_height(self) -> int:
        if self.head_error is not None:
            raise self.head_error
        return self.head

    def get_logs(self, *, address, topics, from_block, to_block):
        self.calls.append(
            {"address": address, "topics": list(topics), "from_block": from_block, "to_block": to_block}
        )
        if self.logs_error is not None:
            raise self.logs_error
        matched = []
        for log in self.logs:
            if log["address"].lower() != address.lower():
                continue
            if not from_block <= log["blockNumber"] <= to_block:
                continue
            if any(
                expected is not None
                and (position >= len(log["topics"]) or log["topics"][position] != expected)
                for position, expected in enumerate(topics)
            ):
                continue
            matched.append(log)
        return matched


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'raffle_sync.db'}",
        rpc_url="http://localhost:8545",
        raffle_contract_address=CONTRACT_ADDRESS,
        sync_api_key="test-sync-key",
        sync_max_workers=3,
        sync_checkpoint_retry_backoff_seconds=0,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def engine(test_settings):
    engine = _create_engine(test_settings.resolved_database_url)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return _create_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def log_factory() -> LogFactory:
    return LogFactory()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def make_raffle(session_factory):
    """Insert a raffle row the way the CRUD layer would and return its id."""

    def _make(
        contract_raffle_id: int | None = 1,
        *,
        status: RaffleStatus = RaffleStatus.ACTIVE,
        entry_price: int = 1_000_000,
        title: str = "Test raffle",
    ) -> str:
        session = session_factory()
        try:
            raffle = Raffle(
                contract_raffle_id=str(contract_raffle_id) if contract_raffle_id is not None else None,
                title=title,
                status=status.value,
                entry_price=Decimal(entry_price),
            )
            session.add(raffle)
            session.commit()
            return raffle.raffle_id
        finally:
            session.close()

    return _make
