r"""backend/tests/test_grid_search.py"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.core.config import MetricWeights
from backend.app.services.forecast_models import get_default_models
from backend.app.services.grid_search import (
    GridSearchOptimizer,
    ValidationConfig,
    ValidationResult,
    calculate_metrics,
    walk_forward_validation,
    weighted_score,
)


def _model(model_id: str):
    return next(model for model in get_default_models() if model.id == model_id)


def _series(periods: int = 36) -> pd.Series:
    index = pd.date_range("2021-01-01", periods=periods, freq="MS")
    values = 200 + 40 * np.sin(2 * np.pi * np.arange(periods) / 12) + 2 * np.arange(periods)
    return pd.Series(values, index=index)


def test_calculate_metrics_perfect_and_zero_actuals() -> None:
    perfect = calculate_metrics(np.array([10.0, 20.0]), np.array([10.0, 20.0]))
    assert perfect.mape == 0.0
    assert perfect.accuracy == 100.0
    assert perfect.rmse == 0.0

    empty = calculate_metrics(np.array([0.0, 0.0]), np.array([1.0, 1.0]))
    assert empty.accuracy == 0.0


def test_walk_forward_needs_minimum_data() -> None:
    short = walk_forward_validation("moving_average", np.arange(1.0, 10.0), {"window": 3}, 12)
    assert short.accuracy == 0.0

    values = _series().to_numpy()
    scored = walk_forward_validation("moving_average", values, {"window": 3}, 12, ValidationConfig())
    assert 0 < scored.accuracy <= 100


def test_weighted_score_prefers_lower_error() -> None:
    weights = MetricWeights()
    good = ValidationResult(accuracy=95, mape=5, rmse=2, mae=1.5, confidence=90)
    bad = ValidationResult(accuracy=70, mape=30, rmse=12, mae=9, confidence=60)

    assert weighted_score(good, 100.0, weights) < weighted_score(bad, 100.0, weights)


def test_grid_search_returns_grid_result_within_grid() -> None:
    result = GridSearchOptimizer().run(_model("exponential_smoothing"), _series(), "S1")

    assert result.method == "grid"
    assert 60 <= result.confidence <= 95
    assert 0.05 <= result.parameters["alpha"] <= 0.95
    assert result.factors is not None
    assert result.reasoning


def test_grid_search_is_deterministic() -> None:
    optimizer = GridSearchOptimizer()
    first = optimizer.run(_model("moving_average"), _series(), "S1")
    second = optimizer.run(_model("moving_average"), _series(), "S1")

    assert first.parameters == second.parameters
    assert first.confidence == second.confidence


def test_short_series_falls_back_to_defaults() -> None:
    result = GridSearchOptimizer().run(_model("holt_winters"), _series(10), "S1")

    assert result.parameters == {"alpha": 0.3, "beta": 0.1, "gamma": 0.1}
    assert result.confidence == 60


def test_empty_series_raises() -> None:
    with pytest.raises(ValueError):
        GridSearchOptimizer().run(_model("moving_average"), pd.Series(dtype=float), "S1")
