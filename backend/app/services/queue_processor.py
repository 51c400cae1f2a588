r"""backend\app\services\queue_processor.py

Sequential drain loop for the optimization job queue.

Each dequeued item moves ``queued -> running -> completed | failed |
skipped``.  Only one job runs at a time and every job is awaited to its
terminal state before the next one starts, so no two jobs ever write the
same cache slot concurrently.  All AI failure handling (fallback to grid and
the circuit breaker) lives here and nowhere else.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

import pandas as pd

from ..core.config import OptimizationSettings
from ..core.errors import DataUnavailableError, SearchFailedError
from ..core.observability import record_job
from ..models.schemas import (
    EnqueueResponse,
    JobState,
    ModelConfig,
    OptimizationRecord,
    QueueItem,
    QueueReason,
    QueueStatus,
    SearchMethod,
    SearchResult,
)
from .cache_store import CacheStore
from .circuit_breaker import AICircuitBreaker
from .fingerprint import fingerprint
from .forecast_models import get_default_models, has_optimizable_parameters
from .grid_search import GridSearchOptimizer
from .job_queue import JobQueue
from .llm_service import optimize_parameters
from .notifications import NotificationCenter
from .sales_data import SalesDataStore

LOGGER = logging.getLogger(__name__)

AISearch = Callable[..., Awaitable[Optional[SearchResult]]]
ModelsProvider = Callable[[], List[ModelConfig]]

MIN_POINTS_FOR_OPTIMIZATION = 3
MANUAL_MIRROR_CONFIDENCE = 70.0
MANUAL_MIRROR_REASONING = "Manual parameters reset to Grid after optimization"


class QueueProcessor:
    """Drain :class:`JobQueue` one item at a time into :class:`CacheStore`."""

    def __init__(
        self,
        store: CacheStore,
        queue: JobQueue,
        breaker: AICircuitBreaker,
        data: SalesDataStore,
        grid: GridSearchOptimizer | None = None,
        ai_search: AISearch = optimize_parameters,
        notifications: NotificationCenter | None = None,
        settings: OptimizationSettings | None = None,
        models_provider: ModelsProvider = get_default_models,
        api_key: str | None = None,
    ) -> None:
        self.store = store
        self.queue = queue
        self.breaker = breaker
        self.data = data
        self.settings = settings or OptimizationSettings()
        self.grid = grid or GridSearchOptimizer(metric_weights=self.settings.metric_weights)
        self.ai_search = ai_search
        self.notifications = notifications or NotificationCenter()
        self.models_provider = models_provider
        self.api_key = api_key
        self._processing = False

    # ------------------------------------------------------------------
    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def ai_enabled(self) -> bool:
        return self.settings.ai_enabled and self.breaker.ai_forecast_model_optimization_enabled

    # ------------------------------------------------------------------
    def find_model(self, model_id: str) -> Optional[ModelConfig]:
        for model in self.models_provider():
            if model.id == model_id:
                return model
        return None

    # ------------------------------------------------------------------
    def job_fingerprint(self, item: QueueItem, model: ModelConfig, digest: str) -> str:
        return fingerprint(
            item.sku,
            item.model_id,
            item.method,
            model.parameters,
            self.settings.metric_weights,
            digest,
        )

    # ------------------------------------------------------------------
    def submit(self, items: Iterable[QueueItem], force: bool = False) -> EnqueueResponse:
        """Queue ``items`` after the deduplication pre-checks.

        AI items are skipped while AI is disabled.  Unless ``force`` is set,
        an item whose cached record is valid and was computed from the same
        fingerprint is skipped without ever reaching a search collaborator.
        Each item is stamped with the current series digest, and identical
        items for the same digest collapse into one queue entry.
        """

        candidates: list[QueueItem] = []
        skipped: list[QueueItem] = []
        for item in items:
            if item.data_hash is None and self.data.has_sku(item.sku):
                item = item.model_copy(update={"data_hash": self.data.digest_for(item.sku)})
            if item.method == "ai" and not self.ai_enabled:
                LOGGER.info("AI disabled; skipping job %s:%s", item.sku, item.model_id)
                self.queue.record_skip(item)
                skipped.append(item)
                continue
            if not force and self._already_optimized(item):
                LOGGER.info(
                    "Valid %s record already cached for %s:%s; skipping",
                    item.method,
                    item.sku,
                    item.model_id,
                )
                self.queue.record_skip(item)
                skipped.append(item)
                continue
            candidates.append(item)

        queued, collapsed = self.queue.enqueue(candidates)
        return EnqueueResponse(queued=queued, skipped=skipped + collapsed)

    # ------------------------------------------------------------------
    def build_items(
        self,
        skus: Iterable[str],
        reason: QueueReason,
        methods: Sequence[SearchMethod] | None = None,
        model_ids: Sequence[str] | None = None,
    ) -> list[QueueItem]:
        """One item per SKU, optimizable enabled model and method."""

        methods = list(methods or (["grid", "ai"] if self.ai_enabled else ["grid"]))
        models = [
            model
            for model in self.models_provider()
            if model.enabled
            and has_optimizable_parameters(model)
            and (model_ids is None or model.id in model_ids)
        ]
        return [
            QueueItem(sku=sku, model_id=model.id, method=method, reason=reason)
            for sku in skus
            for model in models
            for method in methods
        ]

    # ------------------------------------------------------------------
    def skus_needing_optimization(self) -> list[str]:
        """SKUs with enough data and at least one model lacking a valid result."""

        models = [m for m in self.models_provider() if m.enabled and has_optimizable_parameters(m)]
        needing: list[str] = []
        for sku in self.data.skus():
            if self.data.point_count(sku) < MIN_POINTS_FOR_OPTIMIZATION:
                LOGGER.info("SKU %s has too few points to optimize", sku)
                continue
            digest = self.data.digest_for(sku)
            for model in models:
                grid_ok = self.store.is_valid(sku, model.id, "grid", digest)
                ai_ok = not self.ai_enabled or self.store.is_valid(sku, model.id, "ai", digest)
                if not (grid_ok and ai_ok):
                    needing.append(sku)
                    break
        return needing

    # ------------------------------------------------------------------
    def status(self) -> QueueStatus:
        counts = self.queue.counts()
        return QueueStatus(
            paused=self.queue.paused,
            processing=self._processing,
            ai_enabled=self.ai_enabled,
            ai_failure_count=self.breaker.failure_count,
            items=list(self.queue.items),
            **counts,
        )

    # ------------------------------------------------------------------
    async def process(self) -> int:
        """Drain the queue; return the number of jobs brought to a terminal state."""

        if self._processing:
            LOGGER.debug("Queue processor already running")
            return 0
        self._processing = True
        handled = 0
        LOGGER.info("Queue processing started; %s jobs queued", len(self.queue))
        try:
            while True:
                if self.queue.paused:
                    LOGGER.info("Queue paused with %s jobs remaining", len(self.queue))
                    break
                item = self.queue.peek()
                if item is None:
                    break
                await self._run(item)
                handled += 1
                # let request handlers run between jobs
                await asyncio.sleep(0)
        finally:
            self._processing = False
            LOGGER.info("Queue processing ended after %s jobs", handled)
        return handled

    # ------------------------------------------------------------------
    async def _run(self, item: QueueItem) -> JobState:
        self.queue.start(item)
        started = time.perf_counter()
        state: JobState = "failed"
        try:
            state = await self._execute(item)
        except DataUnavailableError as exc:
            LOGGER.warning("Job %s:%s:%s failed: %s", item.sku, item.model_id, item.method, exc)
            self._notify_failure(item, str(exc))
        except Exception as exc:
            LOGGER.exception("Job %s:%s:%s failed", item.sku, item.model_id, item.method)
            self._notify_failure(item, str(exc) or exc.__class__.__name__)
        finally:
            self.queue.finish(item, state)
            record_job(item.method, state, time.perf_counter() - started)
            self.store.bump_version()
        return state

    # ------------------------------------------------------------------
    async def _execute(self, item: QueueItem) -> JobState:
        model = self.find_model(item.model_id)
        if model is None:
            raise DataUnavailableError(
                item.sku, item.model_id, f"Unknown model '{item.model_id}' for SKU '{item.sku}'"
            )
        series = self.data.series_for(item.sku)
        digest = self.data.digest_for(item.sku)

        if item.method == "ai" and not self.ai_enabled:
            LOGGER.info("AI disabled; skipping queued job %s:%s", item.sku, item.model_id)
            return "skipped"

        job_fp = self.job_fingerprint(item, model, digest)
        if item.method == "grid":
            self._run_grid(item.sku, model, series, digest, job_fp)
            self.notifications.notify(
                "Optimization Complete",
                f"Grid search finished for SKU: {item.sku}, Model: {model.name}.",
            )
            return "completed"
        return await self._run_ai(item, model, series, digest, job_fp)

    # ------------------------------------------------------------------
    def _run_grid(
        self,
        sku: str,
        model: ModelConfig,
        series: pd.Series,
        digest: str,
        job_fp: str,
    ) -> OptimizationRecord:
        result = self.grid.run(model, series, sku)
        record = self._record_from(result, digest, job_fp)
        self.store.set(sku, model.id, "grid", record)
        if self.store.entry(sku, model.id).selected == "manual":
            LOGGER.info("Manual parameters pinned for %s:%s; keeping them", sku, model.id)
            return record

        # grid output becomes the new manual baseline
        mirror = OptimizationRecord(
            parameters=dict(result.parameters),
            confidence=MANUAL_MIRROR_CONFIDENCE,
            data_hash=digest,
            reasoning=MANUAL_MIRROR_REASONING,
            factors=result.factors,
            expected_accuracy=result.expected_accuracy,
            method="manual",
        )
        self.store.set(sku, model.id, "manual", mirror)

        if self.ai_enabled and self.store.is_valid(sku, model.id, "ai", digest):
            self.store.set_selected_method(sku, model.id, "ai")
        else:
            self.store.set_selected_method(sku, model.id, "grid")
        return record

    # ------------------------------------------------------------------
    async def _run_ai(
        self,
        item: QueueItem,
        model: ModelConfig,
        series: pd.Series,
        digest: str,
        job_fp: str,
    ) -> JobState:
        error: Optional[BaseException] = None
        result: Optional[SearchResult] = None
        try:
            result = await self.ai_search(
                model,
                series,
                item.sku,
                self.settings.business_context,
                api_key=self.api_key,
                enabled=self.ai_enabled,
            )
        except Exception as exc:
            error = exc
            LOGGER.warning("AI search raised for %s:%s: %s", item.sku, model.id, exc)

        if result is not None and error is None:
            self.breaker.record_success()
            self.store.set(item.sku, model.id, "ai", self._record_from(result, digest, job_fp))
            if self.store.entry(item.sku, model.id).selected != "manual":
                self.store.set_selected_method(item.sku, model.id, "ai")
            self.notifications.notify(
                "Optimization Complete",
                f"AI optimization finished for SKU: {item.sku}, Model: {model.name}.",
            )
            return "completed"

        if self.breaker.record_failure():
            self._trip()
        self._fallback_to_grid(item, model, series, digest)
        if error is None:
            error = SearchFailedError("ai", item.sku, model.id, "no result")
        LOGGER.warning("AI job %s:%s failed: %s", item.sku, model.id, error)
        return "failed"

    # ------------------------------------------------------------------
    def _fallback_to_grid(
        self,
        item: QueueItem,
        model: ModelConfig,
        series: pd.Series,
        digest: str,
    ) -> None:
        if self.store.is_valid(item.sku, model.id, "grid", digest):
            self.notifications.notify(
                "AI Optimization Failed",
                f"Using cached Grid Search result for SKU: {item.sku}, Model: {model.name}.",
                "destructive",
            )
            return

        self.notifications.notify(
            "AI Optimization Failed",
            f"No cached Grid result found. Running Grid Search for SKU: {item.sku}, Model: {model.name}.",
            "destructive",
        )
        grid_item = QueueItem(sku=item.sku, model_id=item.model_id, method="grid", reason=item.reason)
        self._run_grid(item.sku, model, series, digest, self.job_fingerprint(grid_item, model, digest))

    # ------------------------------------------------------------------
    def _trip(self) -> None:
        removed = self.queue.purge_method("ai")
        LOGGER.error(
            "AI circuit breaker tripped after %s failures; removed %s AI jobs",
            self.breaker.threshold,
            len(removed),
        )
        self.notifications.notify(
            "AI Optimization Disabled",
            f"AI optimization was automatically disabled after {self.breaker.threshold} "
            "consecutive failures. Please check your API key or account.",
            "destructive",
        )

    # ------------------------------------------------------------------
    def _already_optimized(self, item: QueueItem) -> bool:
        if not self.data.has_sku(item.sku):
            return False
        model = self.find_model(item.model_id)
        if model is None:
            return False
        digest = self.data.digest_for(item.sku)
        if not self.store.is_valid(item.sku, item.model_id, item.method, digest):
            return False
        record = self.store.get(item.sku, item.model_id, item.method)
        return record is not None and record.fingerprint == self.job_fingerprint(item, model, digest)

    # ------------------------------------------------------------------
    def _notify_failure(self, item: QueueItem, reason: str) -> None:
        self.notifications.notify(
            "Optimization Failed",
            f"{item.method} optimization failed for SKU: {item.sku}, Model: {item.model_id}. {reason}",
            "destructive",
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _record_from(result: SearchResult, digest: str, job_fp: str) -> OptimizationRecord:
        return OptimizationRecord(
            parameters=dict(result.parameters),
            confidence=result.confidence,
            data_hash=digest,
            fingerprint=job_fp,
            reasoning=result.reasoning,
            factors=result.factors,
            expected_accuracy=result.expected_accuracy,
            method=result.method,
        )
