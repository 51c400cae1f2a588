r"""backend\app\services\optimization_engine.py

Composition root for the optimization subsystem.

One :class:`OptimizationEngine` owns the cache store, the job queue, the
circuit breaker, the sales data and the synchronizer, and hands the same
instances to every consumer.  API routers obtain it through
:func:`get_engine`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ..core.config import OptimizationSettings, Settings, get_settings, load_optimization_settings
from ..core.errors import DataUnavailableError
from ..models.schemas import (
    CacheEntry,
    EnqueueResponse,
    ForecastResponse,
    Method,
    ModelConfig,
    OptimizationRecord,
    QueueReason,
    SearchMethod,
)
from .cache_store import CacheStore
from .circuit_breaker import AICircuitBreaker
from .forecast_models import get_default_models
from .forecasting_service import ForecastingService
from .grid_search import GridSearchOptimizer
from .job_queue import JobQueue
from .llm_service import optimize_parameters
from .model_sync import ModelStateSynchronizer
from .notifications import NotificationCenter
from .queue_processor import MIN_POINTS_FOR_OPTIMIZATION, AISearch, QueueProcessor
from .sales_data import SalesDataStore
from .storage import JsonSlotStorage

LOGGER = logging.getLogger(__name__)

MANUAL_SAVE_REASONING = "Parameters set manually"


class OptimizationEngine:
    """Wire the optimization services together around one cache store."""

    def __init__(
        self,
        settings: Settings | None = None,
        optimization: OptimizationSettings | None = None,
        storage: JsonSlotStorage | None = None,
        data: SalesDataStore | None = None,
        ai_search: AISearch = optimize_parameters,
        persist_data: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        self.optimization = optimization or load_optimization_settings(self.settings.config_dir)
        self.storage = storage if storage is not None else JsonSlotStorage(self.settings.state_dir)
        self.persist_data = persist_data

        self.store = CacheStore(self.storage, ttl_hours=self.optimization.cache_ttl_hours)
        self.queue = JobQueue(self.storage)
        self.breaker = AICircuitBreaker(self.optimization.ai_failure_threshold, self.storage)
        self.data = data if data is not None else SalesDataStore.from_data_dir(self.settings.data_dir)
        self.notifications = NotificationCenter()
        self._catalogue: List[ModelConfig] = get_default_models()

        self.processor = QueueProcessor(
            store=self.store,
            queue=self.queue,
            breaker=self.breaker,
            data=self.data,
            grid=GridSearchOptimizer(metric_weights=self.optimization.metric_weights),
            ai_search=ai_search,
            notifications=self.notifications,
            settings=self.optimization,
            models_provider=self.catalogue,
            api_key=self.settings.gemini_api_key,
        )
        self.synchronizer = ModelStateSynchronizer(
            self.store,
            self.data,
            models_provider=self.catalogue,
            ai_enabled=lambda: self.processor.ai_enabled,
        )
        self.forecaster = ForecastingService(self.data)
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    def catalogue(self) -> List[ModelConfig]:
        """Static model configuration (defaults only, never optimized values)."""
        return [model.model_copy(deep=True) for model in self._catalogue]

    # ------------------------------------------------------------------
    def set_model_enabled(self, model_id: str, enabled: bool) -> ModelConfig:
        for model in self._catalogue:
            if model.id == model_id:
                model.enabled = enabled
                self.synchronizer.sync(force=True)
                return model.model_copy(deep=True)
        raise DataUnavailableError("*", model_id, f"Unknown model '{model_id}'")

    # ------------------------------------------------------------------
    def upload(self, frame: pd.DataFrame, reason: QueueReason = "csv_upload") -> tuple[list[str], EnqueueResponse]:
        """Replace the dataset and re-optimize the SKUs whose series changed."""

        changed = self.data.replace(frame)
        if self.persist_data:
            self.data.save(self.settings.data_dir)
        self.queue.remove_skus(changed)
        for sku in changed:
            self.store.clear_for_sku(sku)

        targets = [
            sku
            for sku in changed
            if self.data.has_sku(sku) and self.data.point_count(sku) >= MIN_POINTS_FOR_OPTIMIZATION
        ]
        response = self.processor.submit(self.processor.build_items(targets, reason))
        return changed, response

    # ------------------------------------------------------------------
    def edit_point(self, sku: str, when: date | str, value: float) -> EnqueueResponse:
        """Apply a cleaning edit; stale results for ``sku`` are dropped and re-queued."""

        if not self.data.set_point(sku, when, value):
            return EnqueueResponse(queued=[], skipped=[])
        if self.persist_data:
            self.data.save(self.settings.data_dir)
        self.queue.remove_skus([sku])
        self.store.clear_for_sku(sku)
        if self.data.point_count(sku) < MIN_POINTS_FOR_OPTIMIZATION:
            return EnqueueResponse(queued=[], skipped=[])
        return self.processor.submit(
            self.processor.build_items([sku], "manual_edit_data_cleaning")
        )

    # ------------------------------------------------------------------
    def enqueue(
        self,
        skus: Sequence[str] | None = None,
        methods: Sequence[SearchMethod] | None = None,
        model_ids: Sequence[str] | None = None,
        reason: QueueReason = "manual",
        force: bool = False,
    ) -> EnqueueResponse:
        """Queue jobs for ``skus`` (default: every SKU that needs optimization)."""

        targets = list(skus) if skus else self.processor.skus_needing_optimization()
        for sku in targets:
            if not self.data.has_sku(sku):
                raise DataUnavailableError(sku)
        if model_ids:
            known = {model.id for model in self._catalogue}
            for model_id in model_ids:
                if model_id not in known:
                    raise DataUnavailableError(targets[0] if targets else "*", model_id, f"Unknown model '{model_id}'")
        items = self.processor.build_items(targets, reason, methods, model_ids)
        return self.processor.submit(items, force=force)

    # ------------------------------------------------------------------
    def select_method(self, sku: str, model_id: str, method: Optional[Method]) -> CacheEntry:
        self._require(sku, model_id)
        self.store.set_selected_method(sku, model_id, method)
        return self.store.entry(sku, model_id)

    # ------------------------------------------------------------------
    def save_manual(self, sku: str, model_id: str, parameters: Dict[str, float]) -> OptimizationRecord:
        """Store user-edited parameters and make ``manual`` the explicit choice."""

        model = self._require(sku, model_id)
        unknown = sorted(set(parameters) - set(model.parameters))
        if unknown:
            raise ValueError(f"Model '{model_id}' has no parameters named {unknown}")
        record = OptimizationRecord(
            parameters={**model.parameters, **{k: float(v) for k, v in parameters.items()}},
            data_hash=self.data.digest_for(sku),
            reasoning=MANUAL_SAVE_REASONING,
            method="manual",
        )
        self.store.set(sku, model_id, "manual", record)
        self.store.set_selected_method(sku, model_id, "manual")
        return record

    # ------------------------------------------------------------------
    def reenable_ai(self) -> None:
        self.breaker.reenable()
        self.store.bump_version()
        self.notifications.notify("AI Optimization Enabled", "AI optimization was re-enabled.")

    # ------------------------------------------------------------------
    def update_settings(self, optimization: OptimizationSettings) -> None:
        """Apply new business rules to the running services."""

        self.optimization = optimization
        self.processor.settings = optimization
        self.processor.grid.metric_weights = optimization.metric_weights
        self.store.ttl_seconds = optimization.cache_ttl_hours * 3600.0
        self.breaker.threshold = optimization.ai_failure_threshold
        if not optimization.ai_enabled:
            self.queue.purge_method("ai")
        self.store.bump_version()

    # ------------------------------------------------------------------
    def models_for(self, sku: str) -> List[ModelConfig]:
        if not self.data.has_sku(sku):
            raise DataUnavailableError(sku)
        if self.synchronizer.active_sku != sku:
            return self.synchronizer.set_active_sku(sku)
        return self.synchronizer.sync()

    # ------------------------------------------------------------------
    def forecast(self, sku: str, periods: int | None = None) -> ForecastResponse:
        models = self.models_for(sku)
        return self.forecaster.forecast(sku, periods or self.optimization.forecast_periods, models)

    # ------------------------------------------------------------------
    def pause(self) -> None:
        self.queue.pause()

    def resume(self) -> Optional[asyncio.Task]:
        self.queue.resume()
        return self.schedule_processing()

    def clear_queue(self) -> int:
        removed = self.queue.clear()
        self.queue.reset_counts()
        return len(removed)

    # ------------------------------------------------------------------
    def schedule_processing(self) -> Optional[asyncio.Task]:
        """Start draining the queue in the background of the running loop."""

        if self.processor.processing or self.queue.paused or not len(self.queue):
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; queue will drain on the next request")
            return None
        if self._task is not None and not self._task.done() and self._task.get_loop() is loop:
            return self._task
        self._task = loop.create_task(self.processor.process())
        return self._task

    # ------------------------------------------------------------------
    def _require(self, sku: str, model_id: str) -> ModelConfig:
        if not self.data.has_sku(sku):
            raise DataUnavailableError(sku)
        for model in self._catalogue:
            if model.id == model_id:
                return model
        raise DataUnavailableError(sku, model_id, f"Unknown model '{model_id}'")


_ENGINE: Optional[OptimizationEngine] = None


def get_engine() -> OptimizationEngine:
    """Return the process-wide engine, creating it on first use."""

    global _ENGINE
    if _ENGINE is None:
        _ENGINE = OptimizationEngine()
    return _ENGINE
