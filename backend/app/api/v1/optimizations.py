r"""backend\app\api\v1\optimizations.py

Job queue control, cached optimization results and user notifications.

Enqueue and resume return immediately; the queue drains in a background task
on the server's event loop.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.errors import DataUnavailableError
from ...models.schemas import (
    CacheEntry,
    EnqueueResponse,
    Method,
    Notification,
    OptimizationRecord,
    QueueReason,
    QueueStatus,
    SearchMethod,
)
from ...services.fingerprint import EMPTY_DIGEST
from ...services.method_resolver import resolve_method
from ...services.optimization_engine import get_engine

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/optimizations")


def _error_payload(code: str, message: str) -> dict[str, str]:
    return {"error": code, "message": message}


def _not_found(exc: DataUnavailableError) -> HTTPException:
    code = "model_not_found" if exc.model_id else "sku_not_found"
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_error_payload(code, str(exc)))


class EnqueueRequest(BaseModel):
    skus: Optional[List[str]] = Field(None, description="Defaults to every SKU needing optimization")
    methods: Optional[List[SearchMethod]] = None
    model_ids: Optional[List[str]] = None
    reason: QueueReason = "manual"
    force: bool = False


class SelectionUpdate(BaseModel):
    method: Optional[Method] = Field(None, description="null clears the explicit choice")


class ManualParameters(BaseModel):
    parameters: Dict[str, float]


class CacheView(BaseModel):
    sku: str
    data_hash: str
    version: int
    entries: Dict[str, CacheEntry]
    effective: Dict[str, Method]


# ---------------------------------------------------------------------------
# Queue


@router.post("/jobs", response_model=EnqueueResponse)
async def enqueue(body: EnqueueRequest) -> EnqueueResponse:
    engine = get_engine()
    try:
        response = engine.enqueue(
            skus=body.skus,
            methods=body.methods,
            model_ids=body.model_ids,
            reason=body.reason,
            force=body.force,
        )
    except DataUnavailableError as exc:
        raise _not_found(exc) from exc
    engine.schedule_processing()
    LOGGER.info("Enqueued %s jobs, skipped %s", len(response.queued), len(response.skipped))
    return response


@router.get("/queue", response_model=QueueStatus)
async def queue_status() -> QueueStatus:
    engine = get_engine()
    # restart a drain that was interrupted (e.g. queue restored at startup)
    engine.schedule_processing()
    return engine.processor.status()


@router.post("/queue/pause", response_model=QueueStatus)
async def pause() -> QueueStatus:
    engine = get_engine()
    engine.pause()
    return engine.processor.status()


@router.post("/queue/resume", response_model=QueueStatus)
async def resume() -> QueueStatus:
    engine = get_engine()
    engine.resume()
    return engine.processor.status()


@router.post("/queue/clear")
async def clear() -> Dict[str, Any]:
    removed = get_engine().clear_queue()
    return {"removed": removed}


# ---------------------------------------------------------------------------
# Cache


@router.get("/cache/{sku}", response_model=CacheView)
def cache_for_sku(sku: str) -> CacheView:
    engine = get_engine()
    digest = engine.data.digest_for(sku)
    if digest == EMPTY_DIGEST and sku not in engine.store.skus():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("sku_not_found", f"No data or cached results for SKU '{sku}'"),
        )
    ai_enabled = engine.processor.ai_enabled
    entries = {model.id: engine.store.entry(sku, model.id) for model in engine.catalogue()}
    effective = {
        model_id: resolve_method(engine.store, sku, model_id, digest, ai_enabled) for model_id in entries
    }
    return CacheView(
        sku=sku,
        data_hash=digest,
        version=engine.store.version,
        entries={k: v for k, v in entries.items() if not v.is_empty()},
        effective=effective,
    )


@router.put("/cache/{sku}/{model_id}/selected", response_model=CacheEntry)
def select_method(sku: str, model_id: str, body: SelectionUpdate) -> CacheEntry:
    try:
        return get_engine().select_method(sku, model_id, body.method)
    except DataUnavailableError as exc:
        raise _not_found(exc) from exc


@router.put("/cache/{sku}/{model_id}/manual", response_model=OptimizationRecord)
def save_manual(sku: str, model_id: str, body: ManualParameters) -> OptimizationRecord:
    try:
        return get_engine().save_manual(sku, model_id, body.parameters)
    except DataUnavailableError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_parameters", str(exc)),
        ) from exc


# ---------------------------------------------------------------------------
# AI + notifications


@router.post("/ai/enable", response_model=QueueStatus)
def reenable_ai() -> QueueStatus:
    engine = get_engine()
    engine.reenable_ai()
    return engine.processor.status()


@router.get("/notifications", response_model=List[Notification])
def notifications(after: int = Query(0, ge=0, description="Return notifications with id > after")) -> List[Notification]:
    return get_engine().notifications.since(after)
