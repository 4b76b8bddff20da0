from __future__ import annotations

import secrets
import threading
from typing import Annotated, Callable

from fastapi import Depends, FastAPI, Header, status
from fastapi.responses import JSONResponse
from loguru import logger

from . import schemas
from .core.config import Settings, get_settings, settings
from .db import init_db
from .domain import FATAL_SYNC_ERRORS
from pipelines.event_sync import EventSyncPipeline

app = FastAPI(title="Raffle Event Sync", version="0.1.0", debug=settings.debug)

SYNC_ROUTE = "/api/cron/sync-blockchain-events"

# Cycles must never overlap within this process.
_sync_lock = threading.Lock()


@app.on_event("startup")
def on_startup() -> None:
    """Create mirror tables when the API boots."""

    init_db()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _settings() -> Settings:
    return get_settings()


PipelineFactory = Callable[[Settings], EventSyncPipeline]


def _sync_pipeline_factory() -> PipelineFactory:
    """Provide the factory that wires a sync pipeline to the configured ledger and database."""

    return EventSyncPipeline


def _failure(status_code: int, message: str) -> JSONResponse:
    body = schemas.SyncFailureResponse(error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _authorized(provided: str | None, expected: str) -> bool:
    if not provided:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@app.post(
    SYNC_ROUTE,
    response_model=schemas.SyncResult,
    responses={
        207: {"model": schemas.SyncResult, "description": "Cycle finished with per-event errors"},
        401: {"model": schemas.UnauthorizedResponse},
        409: {"model": schemas.SyncFailureResponse},
        500: {"model": schemas.SyncFailureResponse},
    },
    tags=["sync"],
)
def trigger_sync(
    x_api_key: Annotated[str | None, Header()] = None,
    config: Settings = Depends(_settings),
    pipeline_factory: PipelineFactory = Depends(_sync_pipeline_factory),
):
    """Run one synchronization cycle and report its summary."""

    if not config.sync_api_key:
        logger.error("SYNC_API_KEY not configured; refusing to run sync")
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")

    if not _authorized(x_api_key, config.sync_api_key):
        logger.warning("Unauthorized sync trigger attempt")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=schemas.UnauthorizedResponse().model_dump(),
        )

    if not _sync_lock.acquire(blocking=False):
        logger.warning("Sync trigger rejected: a cycle is already running")
        return _failure(status.HTTP_409_CONFLICT, "Sync already in progress")

    try:
        try:
            pipeline = pipeline_factory(config)
        except ValueError as exc:
            logger.error("Sync pipeline misconfigured: {}", exc)
            return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")
        summary = pipeline.run_cycle()
    except FATAL_SYNC_ERRORS as exc:
        logger.error("Sync cycle aborted: {}", exc)
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Sync cycle failed unexpectedly")
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or type(exc).__name__)
    finally:
        _sync_lock.release()

    result = schemas.SyncResult.model_validate(summary.to_dict())
    status_code = status.HTTP_200_OK if result.success else status.HTTP_207_MULTI_STATUS
    return JSONResponse(status_code=status_code, content=result.model_dump(by_alias=True))


@app.get(SYNC_ROUTE, response_model=schemas.SyncProbe, tags=["sync"])
def sync_probe() -> schemas.SyncProbe:
    """Liveness probe for the scheduler that calls the trigger."""

    return schemas.SyncProbe(message="Blockchain event sync endpoint is ready. Use POST to trigger sync.")
