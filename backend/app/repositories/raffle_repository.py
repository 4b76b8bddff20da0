"""Raffle mirror data access helpers."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.models import (
    ENTRY_SOURCE_CONTRACT,
    Payout,
    PayoutStatus,
    Raffle,
    RaffleEntry,
    RaffleStatus,
    Winner,
    utcnow,
)

from .types import EntryTotals, RaffleTarget


class RaffleRepository:
    """Encapsulate raffle, entry, winner and payout persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Raffles

    def get_raffle(self, raffle_id: str) -> Raffle | None:
        return self._session.get(Raffle, raffle_id)

    def list_sync_targets(
        self, statuses: Iterable[RaffleStatus] | None = None
    ) -> list[RaffleTarget]:
        wanted = [status.value for status in (statuses or RaffleStatus.non_terminal())]
        query = (
            select(Raffle.raffle_id, Raffle.contract_raffle_id, Raffle.status)
            .where(Raffle.status.in_(wanted))
            .order_by(Raffle.created_at, Raffle.raffle_id)
        )
        rows = self._session.execute(query).all()
        return [
            RaffleTarget(raffle_id=row[0], contract_raffle_id=row[1], status=row[2])
            for row in rows
        ]

    def set_status(self, raffle: Raffle, status: RaffleStatus) -> None:
        raffle.status = status.value
        raffle.updated_at = utcnow()

    # ------------------------------------------------------------------
    # Entries

    def get_entry_by_log(self, transaction_hash: str, log_index: int) -> RaffleEntry | None:
        query = select(RaffleEntry).where(
            RaffleEntry.transaction_hash == transaction_hash,
            RaffleEntry.log_index == log_index,
        )
        return self._session.execute(query).scalar_one_or_none()

    def add_entry(
        self,
        raffle: Raffle,
        *,
        wallet_address: str,
        num_entries: int,
        total_paid: Decimal | int,
        transaction_hash: str,
        log_index: int,
        block_number: int,
    ) -> RaffleEntry:
        entry = RaffleEntry(
            raffle_id=raffle.raffle_id,
            wallet_address=wallet_address,
            num_entries=num_entries,
            total_paid=total_paid,
            transaction_hash=transaction_hash,
            log_index=log_index,
            block_number=block_number,
            source=ENTRY_SOURCE_CONTRACT,
        )
        self._session.add(entry)
        self._session.flush()
        return entry

    def list_entries(self, raffle_id: str) -> Sequence[RaffleEntry]:
        query = (
            select(RaffleEntry)
            .where(RaffleEntry.raffle_id == raffle_id)
            .order_by(RaffleEntry.block_number, RaffleEntry.log_index)
        )
        return self._session.execute(query).scalars().all()

    def entry_totals(self, raffle_id: str) -> EntryTotals:
        query = select(
            func.coalesce(func.sum(RaffleEntry.num_entries), 0),
            func.count(func.distinct(RaffleEntry.wallet_address)),
        ).where(RaffleEntry.raffle_id == raffle_id)
        tickets, participants = self._session.execute(query).one()
        # Summed as Python ints to keep uint256 amounts exact.
        paid_query = select(RaffleEntry.total_paid).where(RaffleEntry.raffle_id == raffle_id)
        paid = sum(int(amount) for amount in self._session.execute(paid_query).scalars())
        return EntryTotals(
            total_tickets=int(tickets or 0),
            total_participants=int(participants or 0),
            total_paid=int(paid or 0),
        )

    def refresh_entry_counters(self, raffle: Raffle) -> EntryTotals:
        """Recompute raffle counters from stored entries instead of incrementing them."""

        totals = self.entry_totals(raffle.raffle_id)
        raffle.total_entries = totals.total_tickets
        raffle.total_participants = totals.total_participants
        raffle.prize_pool = Decimal(totals.total_paid)
        raffle.updated_at = utcnow()
        return totals

    def mark_entries_refunded(self, raffle_id: str) -> int:
        result = self._session.execute(
            update(RaffleEntry)
            .where(RaffleEntry.raffle_id == raffle_id, RaffleEntry.refunded.is_(False))
            .values(refunded=True)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Winners and payouts

    def get_winner_by_log(
        self, transaction_hash: str, log_index: int, position: int
    ) -> Winner | None:
        query = select(Winner).where(
            Winner.transaction_hash == transaction_hash,
            Winner.log_index == log_index,
            Winner.position == position,
        )
        return self._session.execute(query).scalar_one_or_none()

    def add_winner(
        self,
        raffle: Raffle,
        *,
        wallet_address: str,
        tier: str,
        prize: Decimal | int,
        ticket_number: int,
        total_tickets: int,
        position: int,
        transaction_hash: str,
        log_index: int,
    ) -> Winner:
        winner = Winner(
            raffle_id=raffle.raffle_id,
            wallet_address=wallet_address,
            tier=tier,
            prize=prize,
            ticket_number=ticket_number,
            total_tickets=total_tickets,
            position=position,
            transaction_hash=transaction_hash,
            log_index=log_index,
        )
        self._session.add(winner)
        self._session.flush()
        return winner

    def get_payout_for_winner(self, winner_id: str) -> Payout | None:
        query = select(Payout).where(Payout.winner_id == winner_id)
        return self._session.execute(query).scalar_one_or_none()

    def record_paid_payout(
        self,
        winner: Winner,
        *,
        amount: Decimal | int,
        transaction_hash: str,
        processed_at: datetime | None = None,
    ) -> Payout:
        payout = Payout(
            winner_id=winner.winner_id,
            raffle_id=winner.raffle_id,
            wallet_address=winner.wallet_address,
            amount=amount,
            status=PayoutStatus.PAID.value,
            transaction_hash=transaction_hash,
            processed_at=processed_at or utcnow(),
        )
        self._session.add(payout)
        self._session.flush()
        return payout

    def list_winners(self, raffle_id: str) -> Sequence[Winner]:
        query = (
            select(Winner)
            .where(Winner.raffle_id == raffle_id)
            .order_by(Winner.transaction_hash, Winner.log_index, Winner.position)
        )
        return self._session.execute(query).scalars().all()

    def list_payouts(self, raffle_id: str) -> Sequence[Payout]:
        query = select(Payout).where(Payout.raffle_id == raffle_id)
        return self._session.execute(query).scalars().all()
