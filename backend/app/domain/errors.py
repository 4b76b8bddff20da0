"""Error taxonomy shared by the ledger, decoding, applying and checkpoint layers."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every failure raised by the event sync engine."""


class ChainUnavailableError(SyncError):
    """The ledger node could not be reached or failed to answer. Fatal to a cycle."""


class RangeTooWideError(SyncError):
    """The ledger provider rejected the requested block range. Fatal to a cycle."""

    def __init__(self, from_block: int, to_block: int, detail: str | None = None) -> None:
        message = f"provider rejected block range {from_block}-{to_block}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.from_block = from_block
        self.to_block = to_block


class MalformedEventError(SyncError):
    """A raw log does not match the expected shape of its event type."""

    def __init__(self, message: str, *, transaction_hash: str, log_index: int | None = None) -> None:
        super().__init__(message)
        self.transaction_hash = transaction_hash
        self.log_index = log_index


class ApplyError(SyncError):
    """Applying a decoded event to the mirror store failed."""

    def __init__(
        self,
        message: str,
        *,
        transaction_hash: str | None = None,
        winner_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.transaction_hash = transaction_hash
        self.winner_index = winner_index


class CheckpointStoreError(SyncError):
    """The checkpoint record could not be read or written. Fatal to a cycle."""


class MirrorStoreError(SyncError):
    """The mirror store could not be queried for raffles to sync. Fatal to a cycle."""


FATAL_SYNC_ERRORS: tuple[type[SyncError], ...] = (
    ChainUnavailableError,
    RangeTooWideError,
    CheckpointStoreError,
    MirrorStoreError,
)


__all__ = [
    "ApplyError",
    "ChainUnavailableError",
    "CheckpointStoreError",
    "FATAL_SYNC_ERRORS",
    "MalformedEventError",
    "MirrorStoreError",
    "RangeTooWideError",
    "SyncError",
]
