"""Cycle-based synchronization of raffle contract events into the mirror database."""

from __future__ import annotations

import argparse
import json
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, get_settings
from app.db import SessionFactory, SessionLocal, init_db
from app.domain import (
    ApplyError,
    CheckpointStoreError,
    EventType,
    FATAL_SYNC_ERRORS,
    MirrorStoreError,
    SyncError,
)
from app.models import RaffleStatus
from app.repositories import Checkpoint, CheckpointStore, RaffleRepository, RaffleTarget
from ingestion.client import LedgerClient, Web3LedgerClient
from ingestion.decoder import EventDecoder
from ingestion.fetcher import LogFetcher

from .appliers import (
    DrawRequestedApplier,
    EntrySubmittedApplier,
    EventApplier,
    RaffleCancelledApplier,
    WinnersSelectedApplier,
)


@dataclass(slots=True)
class EventCounts:
    entries: int = 0
    draws: int = 0
    winners: int = 0
    cancellations: int = 0

    def increment(self, counter: str) -> None:
        setattr(self, counter, getattr(self, counter) + 1)

    def merge(self, other: EventCounts) -> None:
        self.entries += other.entries
        self.draws += other.draws
        self.winners += other.winners
        self.cancellations += other.cancellations

    @property
    def total(self) -> int:
        return self.entries + self.draws + self.winners + self.cancellations

    def to_dict(self) -> dict[str, int]:
        return {
            "entries": self.entries,
            "draws": self.draws,
            "winners": self.winners,
            "cancellations": self.cancellations,
        }


@dataclass(slots=True)
class SyncFailure:
    event_ref: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"eventRef": self.event_ref, "message": self.message}


@dataclass(slots=True)
class SyncSummary:
    from_block: int = 0
    to_block: int = 0
    counts: EventCounts = field(default_factory=EventCounts)
    errors: list[SyncFailure] = field(default_factory=list)
    duration_ms: int = 0
    success: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromBlock": self.from_block,
            "toBlock": self.to_block,
            "counts": self.counts.to_dict(),
            "errors": [error.to_dict() for error in self.errors],
            "durationMs": self.duration_ms,
            "success": self.success,
        }


@dataclass(frozen=True, slots=True)
class SyncPhase:
    """One fetch → decode → apply step of the per-raffle pipeline."""

    event_type: EventType
    applier: type[EventApplier]
    counter: str


# Entries must land before WinnersSelected computes ticket totals, so phases
# run in this order within a raffle regardless of block interleaving.
SYNC_PHASES: tuple[SyncPhase, ...] = (
    SyncPhase(EventType.ENTRY_SUBMITTED, EntrySubmittedApplier, "entries"),
    SyncPhase(EventType.DRAW_REQUESTED, DrawRequestedApplier, "draws"),
    SyncPhase(EventType.WINNERS_SELECTED, WinnersSelectedApplier, "winners"),
    SyncPhase(EventType.RAFFLE_CANCELLED, RaffleCancelledApplier, "cancellations"),
)


@dataclass(slots=True)
class RaffleSyncOutcome:
    raffle_id: str
    counts: EventCounts = field(default_factory=EventCounts)
    errors: list[SyncFailure] = field(default_factory=list)


def _parse_contract_raffle_id(value: str) -> int:
    text = value.strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text)


class EventSyncPipeline:
    """Drive one synchronization cycle from the checkpoint up to the chain head."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        ledger: LedgerClient | None = None,
        session_factory: SessionFactory | None = None,
        fetcher: LogFetcher | None = None,
        decoder: EventDecoder | None = None,
        checkpoint_store: CheckpointStore | None = None,
        phases: Sequence[SyncPhase] = SYNC_PHASES,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._ledger = ledger or Web3LedgerClient(settings=self.settings)
        self._session_factory = session_factory or SessionLocal
        if fetcher is None:
            if not self.settings.raffle_contract_address:
                raise ValueError("RAFFLE_CONTRACT_ADDRESS must be configured to sync events")
            fetcher = LogFetcher(self._ledger, self.settings.raffle_contract_address)
        self._fetcher = fetcher
        self._decoder = decoder or EventDecoder()
        self._checkpoints = checkpoint_store or CheckpointStore(
            self._session_factory, chain_id=self.settings.chain_id
        )
        self._phases = tuple(phases)
        self._sleep = sleep

    def run_cycle(self) -> SyncSummary:
        started = time.monotonic()
        summary = SyncSummary()

        to_block = self._ledger.get_latest_block_height()
        checkpoint = self._checkpoints.read()
        from_block = max(checkpoint.last_synced_block + 1, self.settings.sync_start_block)
        summary.from_block = from_block
        summary.to_block = to_block

        if from_block > to_block:
            logger.info("No new blocks to sync (checkpoint {}, head {})", checkpoint.last_synced_block, to_block)
            summary.success = True
            summary.duration_ms = _elapsed_ms(started)
            return summary

        logger.info(
            "Syncing blocks {} to {} ({} blocks)", from_block, to_block, to_block - from_block + 1
        )

        targets = self._load_targets()
        logger.info("Found {} raffles to sync", len(targets))

        for outcome in self._sync_raffles(targets, from_block, to_block):
            summary.counts.merge(outcome.counts)
            summary.errors.extend(outcome.errors)

        note = f"{len(summary.errors)} errors occurred" if summary.errors else None
        self._advance_checkpoint(to_block, note)

        summary.success = not summary.errors
        summary.duration_ms = _elapsed_ms(started)
        logger.info(
            "Sync complete: {} events processed in {}ms", summary.counts.total, summary.duration_ms
        )
        if summary.errors:
            logger.warning("Sync completed with {} errors", len(summary.errors))
        return summary

    # ------------------------------------------------------------------
    # Raffle fan-out

    def _load_targets(self) -> list[RaffleTarget]:
        session = self._session_factory()
        try:
            candidates = RaffleRepository(session).list_sync_targets(RaffleStatus.non_terminal())
        except SQLAlchemyError as exc:
            raise MirrorStoreError(f"failed to list raffles to sync: {exc}") from exc
        finally:
            session.close()

        targets: list[RaffleTarget] = []
        for target in candidates:
            if not target.contract_raffle_id:
                logger.warning("Raffle {} missing contract_raffle_id, skipping", target.raffle_id)
                continue
            targets.append(target)
        return targets

    def _sync_raffles(
        self, targets: list[RaffleTarget], from_block: int, to_block: int
    ) -> list[RaffleSyncOutcome]:
        if not targets:
            return []

        outcomes: list[RaffleSyncOutcome] = []
        workers = min(self.settings.sync_max_workers, len(targets))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="raffle-sync") as executor:
            futures: list[tuple[RaffleTarget, Future[RaffleSyncOutcome]]] = [
                (target, executor.submit(self.sync_raffle, target, from_block, to_block))
                for target in targets
            ]
            for target, future in futures:
                try:
                    outcomes.append(future.result())
                except FATAL_SYNC_ERRORS:
                    for _, pending in futures:
                        pending.cancel()
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Error syncing raffle {}", target.raffle_id)
                    outcomes.append(
                        RaffleSyncOutcome(
                            raffle_id=target.raffle_id,
                            errors=[SyncFailure(f"Raffle:{target.raffle_id}", str(exc))],
                        )
                    )
        return outcomes

    def sync_raffle(self, target: RaffleTarget, from_block: int, to_block: int) -> RaffleSyncOutcome:
        """Run every phase for one raffle in order, committing each event on its own."""

        outcome = RaffleSyncOutcome(raffle_id=target.raffle_id)
        external_id = _parse_contract_raffle_id(target.contract_raffle_id or "")
        session = self._session_factory()
        try:
            repo = RaffleRepository(session)
            for phase in self._phases:
                raw_logs = self._fetcher.fetch(phase.event_type, from_block, to_block, external_id)
                if not raw_logs:
                    continue
                applier = phase.applier(repo)
                for raw_log in raw_logs:
                    event_ref = f"{phase.event_type.value}:{raw_log.transaction_hash}"
                    try:
                        event = self._decoder.decode(raw_log, phase.event_type)
                        raffle = repo.get_raffle(target.raffle_id)
                        if raffle is None:
                            raise ApplyError(
                                f"raffle {target.raffle_id} no longer exists",
                                transaction_hash=raw_log.transaction_hash,
                            )
                        applier.apply(event, raffle)
                        session.commit()
                    except FATAL_SYNC_ERRORS:
                        session.rollback()
                        raise
                    except Exception as exc:  # noqa: BLE001
                        session.rollback()
                        if isinstance(exc, SyncError):
                            logger.warning("Error handling {}: {}", event_ref, exc)
                        else:
                            logger.exception("Error handling {}", event_ref)
                        outcome.errors.append(SyncFailure(event_ref, str(exc)))
                        continue
                    outcome.counts.increment(phase.counter)
        finally:
            session.close()
        return outcome

    # ------------------------------------------------------------------
    # Checkpoint

    def _advance_checkpoint(self, to_block: int, note: str | None) -> Checkpoint:
        attempts = self.settings.sync_checkpoint_write_attempts
        attempt = 1
        while True:
            try:
                return self._checkpoints.write(to_block, note)
            except CheckpointStoreError as exc:
                if attempt >= attempts:
                    logger.error("Checkpoint write failed after {} attempts: {}", attempts, exc)
                    raise
                logger.warning(
                    "Checkpoint write attempt {}/{} failed: {}; retrying", attempt, attempts, exc
                )
                self._sleep(self.settings.sync_checkpoint_retry_backoff_seconds)
                attempt += 1


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Mirror raffle contract events into the database",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Keep running, starting a new cycle this many seconds after the previous one ends",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where the JSON summary of the last cycle will be written",
    )
    return parser.parse_args()


def _write_summary(summary: SyncSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.info("Sync summary written to {}", path)


def main() -> SyncSummary:
    args = _parse_args()
    settings = get_settings()
    init_db()
    pipeline = EventSyncPipeline(settings)

    while True:
        summary = pipeline.run_cycle()
        print(json.dumps(summary.to_dict(), sort_keys=True))
        if args.summary_path:
            _write_summary(summary, args.summary_path)
        if args.interval is None:
            return summary
        time.sleep(args.interval)


if __name__ == "__main__":
    main()
