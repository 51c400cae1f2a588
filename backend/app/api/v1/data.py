r"""backend\app\api\v1\data.py

Sales data upload, inspection and cleaning edits.

Replacing or editing data invalidates the optimization results of every SKU
whose series changed and queues fresh grid/AI jobs for them in the
background.
"""

from __future__ import annotations

import io
import logging
from datetime import date
from typing import Any, Dict, List

from fastapi import APIRouter, File, HTTPException, UploadFile, status
from pydantic import BaseModel, Field

from ...core.errors import DataUnavailableError
from ...models.schemas import EnqueueResponse
from ...services.io_utils import read_sales_csv
from ...services.optimization_engine import get_engine
from ...services.validation_service import ValidationService

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _error_payload(code: str, message: str) -> dict[str, str]:
    return {"error": code, "message": message}


class UploadResponse(BaseModel):
    rows: int
    skus: int
    changed_skus: List[str]
    jobs: EnqueueResponse


class PointUpdate(BaseModel):
    date: date
    value: float = Field(..., ge=0.0)


@router.get("/data/validate")
def validate() -> dict:
    return ValidationService(get_engine().data).run()


@router.get("/data/skus")
def list_skus() -> Dict[str, Any]:
    data = get_engine().data
    return {"skus": [{"sku": sku, "points": data.point_count(sku)} for sku in data.skus()]}


@router.post("/data/upload", response_model=UploadResponse)
async def upload(file: UploadFile = File(...)) -> UploadResponse:
    """Replace the sales dataset with an uploaded ``sku,date,sales`` CSV."""

    raw = await file.read()
    try:
        frame = read_sales_csv(io.BytesIO(raw))
    except ValueError as exc:
        LOGGER.warning("Rejected sales upload %s: %s", file.filename, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_csv", str(exc)),
        ) from exc

    engine = get_engine()
    changed, jobs = engine.upload(frame, reason="csv_upload")
    engine.schedule_processing()
    return UploadResponse(
        rows=len(frame),
        skus=len(engine.data.skus()),
        changed_skus=changed,
        jobs=jobs,
    )


@router.put("/data/{sku}/points", response_model=EnqueueResponse)
async def update_point(sku: str, body: PointUpdate) -> EnqueueResponse:
    """Set the value of one period (cleaning edit) and re-optimize the SKU."""

    engine = get_engine()
    try:
        jobs = engine.edit_point(sku, body.date, body.value)
    except DataUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("sku_not_found", str(exc)),
        ) from exc
    engine.schedule_processing()
    return jobs
