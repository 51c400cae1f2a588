r"""backend/tests/test_model_sync.py"""

from __future__ import annotations

import sys
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.models.schemas import OptimizationFactors, OptimizationRecord
from backend.app.services.cache_store import CacheStore
from backend.app.services.forecast_models import get_default_models
from backend.app.services.model_sync import ModelStateSynchronizer, project_models
from backend.app.services.sales_data import SalesDataStore


def _data() -> SalesDataStore:
    dates = pd.date_range("2022-01-01", periods=12, freq="MS")
    return SalesDataStore(
        pd.DataFrame({"sku": ["S1"] * 12, "date": dates, "sales": [float(10 + i) for i in range(12)]})
    )


def _record(digest: str, **params: float) -> OptimizationRecord:
    return OptimizationRecord(
        parameters=params,
        confidence=81.0,
        data_hash=digest,
        reasoning="because",
        factors=OptimizationFactors(stability=70, interpretability=60, complexity=40, business_impact="ok"),
        expected_accuracy=91.0,
    )


def _by_id(models):
    return {model.id: model for model in models}


def test_projection_is_pure_and_repeatable() -> None:
    data = _data()
    digest = data.digest_for("S1")
    store = CacheStore()
    store.set("S1", "exponential_smoothing", "ai", _record(digest, alpha=0.6))
    defaults = get_default_models()

    first = project_models(store, "S1", digest, defaults, ai_enabled=True)
    second = project_models(store, "S1", digest, defaults, ai_enabled=True)

    assert [m.model_dump() for m in first] == [m.model_dump() for m in second]
    # inputs are untouched
    assert _by_id(defaults)["exponential_smoothing"].optimized_parameters is None


def test_ai_overlay_keeps_editable_parameters() -> None:
    data = _data()
    digest = data.digest_for("S1")
    store = CacheStore()
    store.set("S1", "exponential_smoothing", "ai", _record(digest, alpha=0.6))

    model = _by_id(project_models(store, "S1", digest, get_default_models()))["exponential_smoothing"]

    assert model.parameters == {"alpha": 0.3}
    assert model.optimized_parameters == {"alpha": 0.6}
    assert model.optimization_method == "ai"
    assert model.optimization_confidence == 81.0
    assert model.expected_accuracy == 91.0
    assert model.optimization_factors is not None
    assert model.effective_parameters == {"alpha": 0.6}


def test_manual_restores_parameters_from_valid_record() -> None:
    data = _data()
    digest = data.digest_for("S1")
    store = CacheStore()
    store.set("S1", "moving_average", "manual", _record(digest, window=6))
    store.set_selected_method("S1", "moving_average", "manual")

    model = _by_id(project_models(store, "S1", digest, get_default_models()))["moving_average"]

    assert model.parameters == {"window": 6}
    assert model.optimized_parameters is None
    assert model.optimization_method == "manual"


def test_stale_explicit_selection_falls_back_to_defaults() -> None:
    data = _data()
    store = CacheStore()
    store.set("S1", "moving_average", "grid", _record("old-digest", window=9))
    store.set_selected_method("S1", "moving_average", "grid")

    model = _by_id(project_models(store, "S1", data.digest_for("S1"), get_default_models()))["moving_average"]

    assert model.optimization_method == "grid"
    assert model.optimized_parameters is None
    assert model.effective_parameters == {"window": 3}


def test_synchronizer_reacts_to_version_changes_only() -> None:
    data = _data()
    digest = data.digest_for("S1")
    store = CacheStore()
    calls = {"n": 0}

    def provider():
        calls["n"] += 1
        return get_default_models()

    sync = ModelStateSynchronizer(store, data, models_provider=provider)
    assert sync.models == []

    sync.set_active_sku("S1")
    assert calls["n"] == 1
    sync.sync()
    assert calls["n"] == 1  # same version, nothing recomputed

    store.set("S1", "moving_average", "grid", _record(digest, window=8))
    assert calls["n"] == 2
    assert _by_id(sync.models)["moving_average"].optimized_parameters == {"window": 8}
    assert sync.last_version == store.version

    sync.close()
    store.bump_version()
    assert calls["n"] == 2


def test_synchronizer_drops_overlay_after_data_edit() -> None:
    data = _data()
    store = CacheStore()
    sync = ModelStateSynchronizer(store, data)
    sync.set_active_sku("S1")
    digest = data.digest_for("S1")
    store.set("S1", "moving_average", "grid", _record(digest, window=8))

    data.set_point("S1", "2022-02-01", 99.0)
    store.clear_for_sku("S1")

    assert _by_id(sync.models)["moving_average"].optimized_parameters is None
