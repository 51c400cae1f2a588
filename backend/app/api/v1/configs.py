"""API endpoints for reading and updating the optimization settings YAML."""

from __future__ import annotations

import os
import shutil
import tempfile
from typing import Any, Dict, Literal, Optional

import yaml
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field, ValidationError

from ...core.config import MetricWeights, OptimizationSettings, get_settings
from ...services.optimization_engine import get_engine

router = APIRouter()

CONFIG_DIR = get_settings().config_dir


def _settings_path() -> str:
    return os.path.join(CONFIG_DIR, "settings.yaml")


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _safe_write_yaml(path: str, payload: Dict[str, Any]) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".yaml", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False)
        shutil.move(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class BusinessContextUpdate(BaseModel):
    cost_of_error: Optional[Literal["low", "medium", "high"]] = None
    forecast_horizon: Optional[Literal["short", "medium", "long"]] = None
    update_frequency: Optional[Literal["daily", "weekly", "monthly"]] = None
    interpretability_needs: Optional[Literal["low", "medium", "high"]] = None


class SettingsUpdate(BaseModel):
    ai_enabled: Optional[bool] = None
    ai_failure_threshold: Optional[int] = Field(None, ge=1, le=100)
    cache_ttl_hours: Optional[float] = Field(None, gt=0.0, le=24 * 365)
    forecast_periods: Optional[int] = Field(None, ge=1, le=120)
    metric_weights: Optional[MetricWeights] = None
    business_context: Optional[BusinessContextUpdate] = None


def _merge_updates(original: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = original.copy()
    for key, value in updates.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = {**result[key], **{k: v for k, v in value.items() if v is not None}}
        else:
            result[key] = value
    return result


@router.get("/configs/settings")
def get_optimization_settings() -> Dict[str, Any]:
    """Effective settings: file values merged over the defaults."""

    try:
        current = _load_yaml(_settings_path())
    except FileNotFoundError:
        current = {}
    known = {key: current[key] for key in OptimizationSettings.model_fields if key in current}
    return OptimizationSettings.model_validate(known).model_dump()


@router.put("/configs/settings")
def put_optimization_settings(body: SettingsUpdate) -> Dict[str, Any]:
    try:
        current = _load_yaml(_settings_path())
    except FileNotFoundError:
        current = {}

    updated = _merge_updates(current, body.model_dump(exclude_none=True))
    try:
        typed = OptimizationSettings.model_validate(
            {key: updated[key] for key in OptimizationSettings.model_fields if key in updated}
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_settings", "message": str(exc)},
        ) from exc

    if updated != current:
        try:
            _safe_write_yaml(_settings_path(), updated)
        except OSError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={"error": "write_failed", "message": str(exc)},
            ) from exc

    get_engine().update_settings(typed)
    return typed.model_dump()
