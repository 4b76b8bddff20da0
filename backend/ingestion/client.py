from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

import requests
from loguru import logger
from web3 import Web3
from web3.exceptions import Web3Exception

from app.core.config import Settings, settings as default_settings
from app.domain import ChainUnavailableError, RangeTooWideError


# Error fragments providers use when a log query spans too many blocks or results.
RANGE_REJECTION_MARKERS = (
    "query returned more than",
    "block range",
    "range too large",
    "range is too large",
    "too many",
    "limit exceeded",
    "response size exceeded",
    "exceed maximum block range",
)


class LedgerClient(Protocol):
    """Read-only capability the sync engine needs from a ledger node."""

    def get_latest_block_height(self) -> int:
        """Return the current chain head."""
        raise NotImplementedError

    def get_logs(
        self,
        *,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[Mapping[str, Any]]:
        """Return raw logs emitted by ``address`` matching ``topics`` in the inclusive range."""
        raise NotImplementedError


def _is_range_rejection(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in RANGE_REJECTION_MARKERS)


class Web3LedgerClient:
    """Thin wrapper around a web3 HTTP provider."""

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        timeout: float | None = None,
        web3: Web3 | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or default_settings
        self.rpc_url = rpc_url or (str(settings.rpc_url) if settings.rpc_url else None)
        self.timeout = timeout or settings.rpc_timeout_seconds
        if web3 is None:
            if not self.rpc_url:
                raise ValueError("RPC_URL must be configured to reach the ledger node")
            web3 = Web3(
                Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.timeout})
            )
        self.web3 = web3

    @contextmanager
    def _translate_errors(
        self,
        operation: str,
        *,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> Iterator[None]:
        try:
            yield
        except requests.exceptions.RequestException as exc:
            logger.error("Ledger {} failed: node unreachable ({})", operation, exc)
            raise ChainUnavailableError(f"ledger node unreachable during {operation}: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            if from_block is not None and to_block is not None and _is_range_rejection(exc):
                logger.error(
                    "Ledger {} rejected block range {}-{}: {}", operation, from_block, to_block, exc
                )
                raise RangeTooWideError(from_block, to_block, str(exc)) from exc
            logger.error("Ledger {} failed: {}", operation, exc)
            raise ChainUnavailableError(f"ledger {operation} failed: {exc}") from exc

    def get_latest_block_height(self) -> int:
        with self._translate_errors("get_block_number"):
            return int(self.web3.eth.block_number)

    def get_logs(
        self,
        *,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int,
    ) -> list[Mapping[str, Any]]:
        params: dict[str, Any] = {
            "address": Web3.to_checksum_address(address),
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": list(topics),
        }
        logger.debug("eth_getLogs {} {}-{} topics={}", address, from_block, to_block, params["topics"])
        with self._translate_errors("get_logs", from_block=from_block, to_block=to_block):
            return list(self.web3.eth.get_logs(params))

