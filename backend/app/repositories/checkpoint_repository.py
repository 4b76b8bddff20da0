"""Persistence of the per-chain sync checkpoint."""

from __future__ import annotations

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.db import SessionFactory, session_scope
from app.domain import CheckpointStoreError
from app.models import SyncCheckpoint, utcnow

from .types import Checkpoint


class CheckpointStore:
    """Read and advance the last synced block for one chain.

    Every call runs in its own short-lived session so the checkpoint write is
    a single-row commit independent of the raffle workers' sessions.
    """

    def __init__(self, session_factory: SessionFactory, *, chain_id: int) -> None:
        self._session_factory = session_factory
        self._chain_id = chain_id

    def read(self) -> Checkpoint:
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(SyncCheckpoint, self._chain_id)
                if record is None:
                    return Checkpoint()
                return Checkpoint(
                    last_synced_block=int(record.last_synced_block),
                    last_error=record.last_error,
                    updated_at=record.updated_at,
                )
        except SQLAlchemyError as exc:
            raise CheckpointStoreError(f"failed to read checkpoint: {exc}") from exc

    def write(self, block: int, error_note: str | None = None) -> Checkpoint:
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(SyncCheckpoint, self._chain_id)
                if record is None:
                    record = SyncCheckpoint(chain_id=self._chain_id, last_synced_block=0)
                    session.add(record)

                current = int(record.last_synced_block or 0)
                if block < current:
                    logger.warning(
                        "Refusing to move checkpoint backwards for chain {} ({} -> {})",
                        self._chain_id,
                        current,
                        block,
                    )
                record.last_synced_block = max(current, block)
                record.last_error = error_note
                record.updated_at = utcnow()
                session.flush()
                return Checkpoint(
                    last_synced_block=int(record.last_synced_block),
                    last_error=record.last_error,
                    updated_at=record.updated_at,
                )
        except SQLAlchemyError as exc:
            raise CheckpointStoreError(f"failed to write checkpoint: {exc}") from exc
