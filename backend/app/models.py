from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from .db import Base


class TokenAmount(TypeDecorator):
    """uint256 token amount in its smallest unit.

    Postgres stores it as an exact ``NUMERIC(78, 0)``. Other backends (SQLite)
    round-trip ``Numeric`` through float, so the integer is kept as decimal text.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(78, 0, asdecimal=True))
        return dialect.type_descriptor(String(80))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = int(Decimal(value))
        return Decimal(amount) if dialect.name == "postgresql" else str(amount)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class RaffleStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    DRAWING = "drawing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RaffleStatus.COMPLETED, RaffleStatus.CANCELLED)

    def can_transition_to(self, target: RaffleStatus) -> bool:
        if self.is_terminal:
            return False
        if target == RaffleStatus.CANCELLED:
            return True
        order = _FORWARD_ORDER
        return order.index(target) > order.index(self)

    @classmethod
    def non_terminal(cls) -> tuple[RaffleStatus, ...]:
        return tuple(status for status in cls if not status.is_terminal)


_FORWARD_ORDER = (
    RaffleStatus.SCHEDULED,
    RaffleStatus.ACTIVE,
    RaffleStatus.DRAWING,
    RaffleStatus.COMPLETED,
)


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


ENTRY_SOURCE_CONTRACT = "DIRECT_CONTRACT"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class Raffle(Base):
    __tablename__ = "raffles"

    raffle_id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    contract_raffle_id: Mapped[str | None] = mapped_column(
        String, unique=True, nullable=True, index=True
    )
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=RaffleStatus.SCHEDULED.value, index=True
    )
    entry_price: Mapped[Decimal] = mapped_column(TokenAmount, nullable=False, default=0)
    total_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prize_pool: Mapped[Decimal] = mapped_column(TokenAmount, nullable=False, default=0)
    draw_request_id: Mapped[str | None] = mapped_column(String, nullable=True)
    draw_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    total_prize: Mapped[Decimal | None] = mapped_column(TokenAmount, nullable=True)
    protocol_fee: Mapped[Decimal | None] = mapped_column(TokenAmount, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    entries: Mapped[list["RaffleEntry"]] = relationship(
        "RaffleEntry", back_populates="raffle", cascade="all, delete-orphan"
    )
    winners: Mapped[list["Winner"]] = relationship(
        "Winner", back_populates="raffle", cascade="all, delete-orphan"
    )

    @property
    def status_enum(self) -> RaffleStatus:
        return RaffleStatus(self.status)


class RaffleEntry(Base):
    __tablename__ = "raffle_entries"
    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", name="uq_raffle_entries_log"),
    )

    entry_id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    raffle_id: Mapped[str] = mapped_column(
        String, ForeignKey("raffles.raffle_id"), nullable=False, index=True
    )
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    num_entries: Mapped[int] = mapped_column(Integer, nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(TokenAmount, nullable=False, default=0)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default=ENTRY_SOURCE_CONTRACT)
    refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    raffle: Mapped[Raffle] = relationship("Raffle", back_populates="entries")


class Winner(Base):
    __tablename__ = "winners"
    __table_args__ = (
        UniqueConstraint(
            "transaction_hash", "log_index", "position", name="uq_winners_log_position"
        ),
    )

    winner_id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    raffle_id: Mapped[str] = mapped_column(
        String, ForeignKey("raffles.raffle_id"), nullable=False, index=True
    )
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    tier: Mapped[str] = mapped_column(String, nullable=False)
    prize: Mapped[Decimal] = mapped_column(TokenAmount, nullable=False)
    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)
    total_tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    raffle: Mapped[Raffle] = relationship("Raffle", back_populates="winners")
    payout: Mapped[Payout | None] = relationship(
        "Payout", back_populates="winner", uselist=False, cascade="all, delete-orphan"
    )


class Payout(Base):
    __tablename__ = "payouts"

    payout_id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    winner_id: Mapped[str] = mapped_column(
        String, ForeignKey("winners.winner_id"), nullable=False, unique=True
    )
    raffle_id: Mapped[str] = mapped_column(
        String, ForeignKey("raffles.raffle_id"), nullable=False, index=True
    )
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[Decimal] = mapped_column(TokenAmount, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PayoutStatus.PENDING.value
    )
    transaction_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    winner: Mapped[Winner] = relationship("Winner", back_populates="payout")


class SyncCheckpoint(Base):
    __tablename__ = "sync_checkpoints"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_synced_block: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
