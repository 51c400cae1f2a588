r"""backend\app\services\model_sync.py

Projection of the cache store onto the forecasting-model configuration.

The configuration fed to the forecast functions is never authoritative: it is
recomputed from ``(CacheStore, current series digest)`` whenever the store's
version changes.  ``project_models`` is the pure part; the synchronizer only
remembers which SKU is active and which version it last projected.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from ..models.schemas import ModelConfig
from .cache_store import CacheStore
from .forecast_models import get_default_models
from .method_resolver import resolve_method
from .sales_data import SalesDataStore

LOGGER = logging.getLogger(__name__)

_OVERLAY_FIELDS = {
    "optimized_parameters": None,
    "optimization_confidence": None,
    "optimization_reasoning": None,
    "optimization_factors": None,
    "expected_accuracy": None,
    "optimization_method": None,
}


def project_models(
    store: CacheStore,
    sku: str,
    current_hash: str,
    models: Sequence[ModelConfig],
    ai_enabled: bool = True,
) -> List[ModelConfig]:
    """Return copies of ``models`` with the resolved optimization applied.

    ``models`` carry the static defaults.  A ``manual`` resolution restores
    the editable parameters from a valid manual record; ``grid``/``ai``
    overlay the optimized values and leave the editable parameters alone.
    Stale records are ignored, so the defaults apply.
    """

    projected: List[ModelConfig] = []
    for model in models:
        base = model.model_copy(update=_OVERLAY_FIELDS, deep=True)
        method = resolve_method(store, sku, model.id, current_hash, ai_enabled)
        valid = store.is_valid(sku, model.id, method, current_hash)
        record = store.get(sku, model.id, method) if valid else None

        if method == "manual":
            updates: dict = {"optimization_method": "manual"}
            if record is not None:
                updates["parameters"] = {**base.parameters, **record.parameters}
                updates["optimization_confidence"] = record.confidence
                updates["optimization_reasoning"] = record.reasoning
            projected.append(base.model_copy(update=updates))
            continue

        if record is None:
            # explicitly selected but stale: static defaults, no overlay
            projected.append(base.model_copy(update={"optimization_method": method}))
            continue

        projected.append(
            base.model_copy(
                update={
                    "optimized_parameters": dict(record.parameters),
                    "optimization_confidence": record.confidence,
                    "optimization_reasoning": record.reasoning,
                    "optimization_factors": record.factors,
                    "expected_accuracy": record.expected_accuracy,
                    "optimization_method": method,
                }
            )
        )
    return projected


class ModelStateSynchronizer:
    """Keep the active SKU's model configuration in step with the cache."""

    def __init__(
        self,
        store: CacheStore,
        data: SalesDataStore,
        models_provider: Callable[[], List[ModelConfig]] = get_default_models,
        ai_enabled: Callable[[], bool] = lambda: True,
    ) -> None:
        self.store = store
        self.data = data
        self.models_provider = models_provider
        self.ai_enabled = ai_enabled
        self._active_sku: Optional[str] = None
        self._models: List[ModelConfig] = []
        self._last_version: Optional[int] = None
        store.subscribe(self._on_version)

    # ------------------------------------------------------------------
    @property
    def active_sku(self) -> Optional[str]:
        return self._active_sku

    @property
    def models(self) -> List[ModelConfig]:
        return [model.model_copy(deep=True) for model in self._models]

    @property
    def last_version(self) -> Optional[int]:
        return self._last_version

    # ------------------------------------------------------------------
    def set_active_sku(self, sku: Optional[str]) -> List[ModelConfig]:
        if sku != self._active_sku:
            self._active_sku = sku
            self._models = []
        return self.sync(force=True)

    # ------------------------------------------------------------------
    def sync(self, force: bool = False) -> List[ModelConfig]:
        """Recompute the projection if the store version moved (or ``force``)."""

        version = self.store.version
        if not force and version == self._last_version:
            return self.models
        if self._active_sku is None:
            self._models = []
        else:
            self._models = project_models(
                self.store,
                self._active_sku,
                self.data.digest_for(self._active_sku),
                self.models_provider(),
                self.ai_enabled(),
            )
            LOGGER.debug("Projected %s models for %s at version %s", len(self._models), self._active_sku, version)
        self._last_version = version
        return self.models

    # ------------------------------------------------------------------
    def close(self) -> None:
        self.store.unsubscribe(self._on_version)

    # ------------------------------------------------------------------
    def _on_version(self, version: int) -> None:
        if version != self._last_version and self._active_sku is not None:
            self.sync()
