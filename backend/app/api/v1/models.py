"""Forecasting model catalogue and per-SKU projected configuration."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from ...core.errors import DataUnavailableError
from ...models.schemas import ModelConfig
from ...services.optimization_engine import get_engine

router = APIRouter()


def _error_payload(code: str, message: str) -> dict[str, str]:
    return {"error": code, "message": message}


class ModelToggle(BaseModel):
    enabled: bool


@router.get("/models", response_model=List[ModelConfig])
def list_models() -> List[ModelConfig]:
    """Static defaults for every model."""
    return get_engine().catalogue()


@router.put("/models/{model_id}/enabled", response_model=ModelConfig)
def toggle_model(model_id: str, body: ModelToggle) -> ModelConfig:
    try:
        return get_engine().set_model_enabled(model_id, body.enabled)
    except DataUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("model_not_found", str(exc)),
        ) from exc


@router.get("/models/{sku}", response_model=List[ModelConfig])
def sku_models(sku: str) -> List[ModelConfig]:
    """Model configuration for ``sku`` as the forecasts will use it."""

    try:
        return get_engine().models_for(sku)
    except DataUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("sku_not_found", str(exc)),
        ) from exc
