"""Handlers that mirror decoded raffle contract events into the database.

Every applier is keyed on the originating log, ``(transaction_hash, log_index)``,
so applying the same event twice leaves the mirror unchanged. Counters are
recomputed from stored entries rather than incremented.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import ClassVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.domain import (
    ApplyError,
    ContractEvent,
    DrawRequested,
    EntrySubmitted,
    EventType,
    RaffleCancelled,
    WinnersSelected,
)
from app.models import Raffle, RaffleStatus, utcnow
from app.repositories import RaffleRepository


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"


def tier_label(index: int, total_winners: int) -> str:
    """Label a winner by array position; a lone winner is simply ``Winner``."""

    if total_winners == 1:
        return "Winner"
    position = index + 1
    if position == 1:
        return "1st"
    if position == 2:
        return "2nd"
    if position == 3:
        return "3rd"
    return f"{position}th"


class EventApplier:
    event_type: ClassVar[EventType]

    def __init__(self, repository: RaffleRepository) -> None:
        self._repo = repository

    def apply(self, event: ContractEvent, raffle: Raffle) -> ApplyOutcome:
        raise NotImplementedError

    def _reject(self, event: ContractEvent, raffle: Raffle, reason: str) -> ApplyError:
        return ApplyError(
            f"{event.event_type.value} for raffle {raffle.raffle_id}: {reason}",
            transaction_hash=event.transaction_hash,
        )


class EntrySubmittedApplier(EventApplier):
    event_type = EventType.ENTRY_SUBMITTED

    def apply(self, event: EntrySubmitted, raffle: Raffle) -> ApplyOutcome:
        existing = self._repo.get_entry_by_log(event.transaction_hash, event.log_index)
        if existing is not None:
            # Re-derive counters so an interrupted earlier cycle still converges.
            self._repo.refresh_entry_counters(raffle)
            logger.debug(
                "Entry {}#{} already mirrored for raffle {}",
                event.transaction_hash,
                event.log_index,
                raffle.raffle_id,
            )
            return ApplyOutcome.SKIPPED

        total_paid = int(raffle.entry_price or 0) * event.num_entries
        self._repo.add_entry(
            raffle,
            wallet_address=event.participant,
            num_entries=event.num_entries,
            total_paid=total_paid,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            block_number=event.block_number,
        )
        totals = self._repo.refresh_entry_counters(raffle)
        logger.info(
            "EntrySubmitted: raffle={} wallet={} entries={} (total {})",
            raffle.raffle_id,
            event.participant,
            event.num_entries,
            totals.total_tickets,
        )
        return ApplyOutcome.APPLIED


class DrawRequestedApplier(EventApplier):
    event_type = EventType.DRAW_REQUESTED

    def apply(self, event: DrawRequested, raffle: Raffle) -> ApplyOutcome:
        status = raffle.status_enum
        request_id = str(event.request_id)

        if status == RaffleStatus.DRAWING and raffle.draw_request_id == request_id:
            return ApplyOutcome.SKIPPED
        if status.is_terminal:
            raise self._reject(event, raffle, f"raffle is already {status.value}")

        if status == RaffleStatus.DRAWING:
            logger.warning(
                "Raffle {} draw request replaced: {} -> {}",
                raffle.raffle_id,
                raffle.draw_request_id,
                request_id,
            )
        else:
            self._repo.set_status(raffle, RaffleStatus.DRAWING)
        raffle.draw_request_id = request_id
        raffle.draw_requested_at = utcnow()
        logger.info("DrawRequested: raffle={} requestId={}", raffle.raffle_id, request_id)
        return ApplyOutcome.APPLIED


class WinnersSelectedApplier(EventApplier):
    """Record winners and the payouts the contract already made.

    The contract transfers prizes in the same transaction that selects the
    winners, so payouts are written directly as ``paid`` with the event's
    transaction hash. A failure part-way through raises ``ApplyError`` with
    the failing winner index.
    """

    event_type = EventType.WINNERS_SELECTED

    def apply(self, event: WinnersSelected, raffle: Raffle) -> ApplyOutcome:
        status = raffle.status_enum
        if status == RaffleStatus.CANCELLED:
            raise self._reject(event, raffle, "raffle is cancelled")

        total_tickets = self._repo.entry_totals(raffle.raffle_id).total_tickets
        total_winners = len(event.winners)
        prize = Decimal(event.prize_per_winner)
        created = 0

        for index, address in enumerate(event.winners):
            try:
                created += self._record_winner(
                    event,
                    raffle,
                    index=index,
                    address=address,
                    total_winners=total_winners,
                    total_tickets=total_tickets,
                    prize=prize,
                )
            except SQLAlchemyError as exc:
                raise ApplyError(
                    f"WinnersSelected for raffle {raffle.raffle_id}: winner {index} "
                    f"({address}) of {total_winners} failed: {exc}",
                    transaction_hash=event.transaction_hash,
                    winner_index=index,
                ) from exc

        raffle.total_prize = Decimal(event.total_prize)
        raffle.protocol_fee = Decimal(event.protocol_fee)
        if status != RaffleStatus.COMPLETED:
            self._repo.set_status(raffle, RaffleStatus.COMPLETED)
            raffle.completed_at = utcnow()
        elif not created:
            return ApplyOutcome.SKIPPED

        logger.info(
            "WinnersSelected: raffle={} winners={} prize_per_winner={} total_tickets={}",
            raffle.raffle_id,
            total_winners,
            event.prize_per_winner,
            total_tickets,
        )
        return ApplyOutcome.APPLIED

    def _record_winner(
        self,
        event: WinnersSelected,
        raffle: Raffle,
        *,
        index: int,
        address: str,
        total_winners: int,
        total_tickets: int,
        prize: Decimal,
    ) -> int:
        winner = self._repo.get_winner_by_log(event.transaction_hash, event.log_index, index)
        created = 0
        if winner is None:
            winner = self._repo.add_winner(
                raffle,
                wallet_address=address,
                tier=tier_label(index, total_winners),
                prize=prize,
                # Array position, not the drawn ticket index.
                ticket_number=index + 1,
                total_tickets=total_tickets,
                position=index,
                transaction_hash=event.transaction_hash,
                log_index=event.log_index,
            )
            created = 1
        if self._repo.get_payout_for_winner(winner.winner_id) is None:
            self._repo.record_paid_payout(
                winner, amount=prize, transaction_hash=event.transaction_hash
            )
            created = 1
        return created


class RaffleCancelledApplier(EventApplier):
    event_type = EventType.RAFFLE_CANCELLED

    def apply(self, event: RaffleCancelled, raffle: Raffle) -> ApplyOutcome:
        status = raffle.status_enum
        if status == RaffleStatus.CANCELLED:
            return ApplyOutcome.SKIPPED
        if not status.can_transition_to(RaffleStatus.CANCELLED):
            raise self._reject(event, raffle, f"raffle is already {status.value}")

        reason = event.reason.strip() or "Unknown"
        self._repo.set_status(raffle, RaffleStatus.CANCELLED)
        raffle.cancel_reason = reason
        raffle.cancelled_at = utcnow()
        refunded = self._repo.mark_entries_refunded(raffle.raffle_id)
        logger.info(
            "RaffleCancelled: raffle={} reason={} refunded_entries={}",
            raffle.raffle_id,
            reason,
            refunded,
        )
        return ApplyOutcome.APPLIED


__all__ = [
    "ApplyOutcome",
    "DrawRequestedApplier",
    "EntrySubmittedApplier",
    "EventApplier",
    "RaffleCancelledApplier",
    "WinnersSelectedApplier",
    "tier_label",
]
