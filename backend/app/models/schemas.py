r"""backend\app\models\schemas.py

Pydantic models used throughout the API and the optimization engine.

These models serve as request payload validators, response serialisation
schemas and the typed records persisted in the JSON state slots.  Using
typed models ensures that clients, servers and storage agree on the
structure of the data being exchanged.
"""

from __future__ import annotations

import time
from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Method = Literal["manual", "grid", "ai"]
SearchMethod = Literal["grid", "ai"]
JobState = Literal["queued", "running", "completed", "failed", "skipped"]
QueueReason = Literal[
    "csv_upload",
    "manual",
    "settings_change",
    "data_cleaning",
    "ai",
    "csv_upload_sales_data",
    "csv_upload_data_cleaning",
    "manual_edit_data_cleaning",
]

METHODS: tuple[Method, ...] = ("manual", "grid", "ai")


class OptimizationFactors(BaseModel):
    """Qualitative scores attached to a search result."""

    stability: float = 0.0
    interpretability: float = 0.0
    complexity: float = 0.0
    business_impact: str = ""


class OptimizationRecord(BaseModel):
    """One computed parameter set for a (SKU, model, method) triple."""

    parameters: Dict[str, float]
    confidence: Optional[float] = Field(None, ge=0.0, le=100.0)
    data_hash: str = Field(..., description="Digest of the series this record was computed from")
    fingerprint: Optional[str] = Field(
        None, description="Job fingerprint (series, parameters, weights) at computation time"
    )
    reasoning: Optional[str] = None
    factors: Optional[OptimizationFactors] = None
    expected_accuracy: Optional[float] = None
    method: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)

    def is_expired(self, ttl_seconds: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current - self.timestamp > ttl_seconds


class CacheEntry(BaseModel):
    """Per (SKU, model) slot: one record per method plus the explicit choice."""

    manual: Optional[OptimizationRecord] = None
    grid: Optional[OptimizationRecord] = None
    ai: Optional[OptimizationRecord] = None
    selected: Optional[Method] = None

    def record(self, method: Method) -> Optional[OptimizationRecord]:
        return getattr(self, method)

    def is_empty(self) -> bool:
        return self.manual is None and self.grid is None and self.ai is None and self.selected is None


class SearchResult(BaseModel):
    """Shape returned by the grid and AI search collaborators."""

    parameters: Dict[str, float]
    confidence: float = Field(..., ge=0.0, le=100.0)
    reasoning: Optional[str] = None
    factors: Optional[OptimizationFactors] = None
    expected_accuracy: Optional[float] = None
    accuracy: Optional[float] = None
    method: SearchMethod


class QueueItem(BaseModel):
    """A pending unit of optimization work.  Never mutated in place."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    sku: str = Field(..., min_length=1)
    model_id: str = Field(..., min_length=1)
    method: SearchMethod
    reason: QueueReason = "manual"
    data_hash: Optional[str] = Field(None, description="Series digest when the job was submitted")
    timestamp: float = Field(default_factory=time.time)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.sku, self.model_id, self.method)

    @property
    def dedup_key(self) -> tuple[str, str, str, Optional[str]]:
        """Jobs for the same slot collapse only when they target the same series."""
        return (self.sku, self.model_id, self.method, self.data_hash)


class ModelConfig(BaseModel):
    """Forecasting model configuration and its optimization overlay."""

    id: str
    name: str
    description: str = ""
    enabled: bool = True
    parameters: Dict[str, float] = Field(default_factory=dict)
    is_seasonal: bool = False

    optimized_parameters: Optional[Dict[str, float]] = None
    optimization_confidence: Optional[float] = None
    optimization_reasoning: Optional[str] = None
    optimization_factors: Optional[OptimizationFactors] = None
    expected_accuracy: Optional[float] = None
    optimization_method: Optional[str] = None

    @property
    def effective_parameters(self) -> Dict[str, float]:
        """Parameters fed to the forecasting function."""
        if self.optimized_parameters:
            return {**self.parameters, **self.optimized_parameters}
        return dict(self.parameters)


class ForecastPoint(BaseModel):
    """A single point in a model forecast."""

    date: date
    value: float = Field(..., description="Predicted sales for the period")
    lo: float = Field(..., description="Lower bound of the prediction band")
    hi: float = Field(..., description="Upper bound of the prediction band")


class ModelForecast(BaseModel):
    """Forecast produced by one model with its resolved parameters."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    method: Method
    parameters: Dict[str, float]
    confidence: Optional[float] = None
    forecast: List[ForecastPoint]


class ForecastResponse(BaseModel):
    """Forecasts for a given SKU from every enabled model."""

    sku: str
    periods: int
    data_hash: str
    models: List[ModelForecast]


class Notification(BaseModel):
    """A user-facing toast."""

    id: int
    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"
    timestamp: float = Field(default_factory=time.time)


class QueueStatus(BaseModel):
    """Snapshot of the job queue for the UI."""

    paused: bool
    processing: bool
    queued: int
    active: int
    completed: int
    failed: int
    skipped: int
    ai_enabled: bool
    ai_failure_count: int
    items: List[QueueItem]


class EnqueueResponse(BaseModel):
    queued: List[QueueItem]
    skipped: List[QueueItem]
