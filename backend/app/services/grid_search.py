r"""backend\app\services\grid_search.py

Exhaustive parameter search scored by rolling-origin validation.

For each candidate parameter combination the model is refit on an expanding
training window and scored on the following ``test_size`` points.  The
weighted combination of MAPE, RMSE, MAE and accuracy (see
``MetricWeights``) picks the winner.  When a grid level yields no usable
candidate the search falls back to a coarser level, and finally to the
model's static defaults, so a well-formed request always produces a result.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from ..core.config import MetricWeights
from ..models.schemas import ModelConfig, OptimizationFactors, SearchResult
from .forecast_models import compute, detect_frequency

LOGGER = logging.getLogger(__name__)

_ALPHAS_FULL = [round(0.05 * i, 2) for i in range(1, 20)]

PARAMETER_GRIDS: Dict[str, Dict[int, Dict[str, List[float]]]] = {
    "moving_average": {
        1: {"window": list(range(2, 16))},
        2: {"window": [3, 5, 7, 10, 12]},
        3: {"window": [3, 5, 7]},
        4: {"window": [3]},
    },
    "seasonal_moving_average": {
        1: {"window": list(range(2, 13))},
        2: {"window": [3, 5, 7, 10, 12]},
        3: {"window": [3, 5, 7]},
        4: {"window": [3]},
    },
    "exponential_smoothing": {
        1: {"alpha": _ALPHAS_FULL},
        2: {"alpha": [0.1, 0.2, 0.3, 0.5, 0.7, 0.9]},
        3: {"alpha": [0.2, 0.3, 0.5]},
        4: {"alpha": [0.3]},
    },
    "holt_winters": {
        1: {
            "alpha": [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9],
            "beta": [0.05, 0.1, 0.2, 0.3],
            "gamma": [0.05, 0.1, 0.2, 0.3],
        },
        2: {"alpha": [0.1, 0.3, 0.5, 0.7], "beta": [0.1, 0.2], "gamma": [0.1, 0.2]},
        3: {"alpha": [0.2, 0.3, 0.5], "beta": [0.1], "gamma": [0.1]},
        4: {"alpha": [0.3], "beta": [0.1], "gamma": [0.1]},
    },
}

GRID_FACTORS = OptimizationFactors(
    stability=85,
    interpretability=90,
    complexity=45,
    business_impact="Systematic optimization ensuring reliable performance through comprehensive parameter testing",
)


@dataclass(frozen=True)
class ValidationConfig:
    min_validation_size: int = 12
    max_steps: int = 5
    test_size: int = 6


@dataclass(frozen=True)
class ValidationResult:
    accuracy: float
    mape: float
    rmse: float
    mae: float
    confidence: float


_EMPTY_RESULT = ValidationResult(accuracy=0.0, mape=100.0, rmse=0.0, mae=0.0, confidence=0.0)


def calculate_metrics(actual: np.ndarray, predicted: np.ndarray) -> ValidationResult:
    """Return accuracy/MAPE (percent), RMSE and MAE for aligned arrays."""

    length = min(len(actual), len(predicted))
    if length == 0:
        return _EMPTY_RESULT
    actual = np.asarray(actual[:length], dtype=float)
    predicted = np.asarray(predicted[:length], dtype=float)
    if not np.any(actual != 0):
        return _EMPTY_RESULT

    nonzero = actual != 0
    pct_errors = np.abs(actual[nonzero] - predicted[nonzero]) / np.abs(actual[nonzero])
    # a forecast of anything but zero against a zero actual counts as a full miss
    zero_misses = np.count_nonzero((~nonzero) & (predicted != 0))
    count = int(nonzero.sum()) + zero_misses
    mape = float((pct_errors.sum() + zero_misses) / count * 100.0)

    errors = actual - predicted
    rmse = float(np.sqrt(np.mean(errors**2)))
    mae = float(np.mean(np.abs(errors)))
    accuracy = max(0.0, 100.0 - mape)
    confidence = float(min(95.0, max(0.0, accuracy - mape * 0.2)))
    return ValidationResult(accuracy=accuracy, mape=mape, rmse=rmse, mae=mae, confidence=confidence)


def walk_forward_validation(
    model_id: str,
    values: np.ndarray,
    parameters: Mapping[str, float],
    seasonal_period: int,
    config: ValidationConfig = ValidationConfig(),
) -> ValidationResult:
    """Score ``parameters`` with an expanding-window rolling origin."""

    n = len(values)
    if n < config.min_validation_size:
        return _EMPTY_RESULT

    min_train = max(config.min_validation_size - config.test_size, int(n * 0.3))
    steps = min(config.max_steps, (n - min_train) // config.test_size)
    if steps <= 0:
        return _EMPTY_RESULT

    actual: List[float] = []
    predicted: List[float] = []
    for step in range(steps):
        train_size = min_train + step * config.test_size
        train = values[:train_size]
        test = values[train_size : train_size + config.test_size]
        if len(test) == 0:
            break
        forecast = compute(model_id, train, parameters, len(test), seasonal_period)
        actual.extend(float(v) for v in test)
        predicted.extend(float(v) for v in forecast)

    return calculate_metrics(np.asarray(actual), np.asarray(predicted))


def weighted_score(result: ValidationResult, scale: float, weights: MetricWeights) -> float:
    """Lower is better.  RMSE and MAE are expressed as a percent of ``scale``."""

    total = weights.mape + weights.rmse + weights.mae + weights.accuracy
    if total <= 0:
        return result.mape
    scale = scale if scale > 0 else 1.0
    return (
        weights.mape * result.mape
        + weights.rmse * (result.rmse / scale * 100.0)
        + weights.mae * (result.mae / scale * 100.0)
        + weights.accuracy * (100.0 - result.accuracy)
    ) / total


def _combinations(grid: Mapping[str, Iterable[float]]) -> List[Dict[str, float]]:
    names = list(grid)
    return [dict(zip(names, combo)) for combo in itertools.product(*(grid[name] for name in names))]


class GridSearchOptimizer:
    """Grid Search collaborator: ``run(model, series, sku) -> SearchResult``."""

    def __init__(
        self,
        metric_weights: MetricWeights | None = None,
        config: ValidationConfig | None = None,
    ) -> None:
        self.metric_weights = metric_weights or MetricWeights()
        self.config = config or ValidationConfig()

    # ------------------------------------------------------------------
    def run(self, model: ModelConfig, series: pd.Series, sku: str) -> SearchResult:
        if series is None or series.empty:
            raise ValueError(f"No data to optimize for SKU '{sku}'")

        values = series.astype(float).to_numpy()
        seasonal_period = detect_frequency(series.index).seasonal_period
        LOGGER.info("Grid search starting for %s:%s (%s points)", sku, model.id, len(values))

        if len(values) < self.config.min_validation_size * 2:
            LOGGER.info("Grid search for %s:%s has too little data; using defaults", sku, model.id)
            return self._fallback_result(model, values, seasonal_period)

        levels = PARAMETER_GRIDS.get(model.id)
        if not levels:
            return self._fallback_result(model, values, seasonal_period)

        for level in sorted(levels):
            best = self._search_level(model, values, seasonal_period, levels[level])
            if best is not None:
                params, validation = best
                LOGGER.info(
                    "Grid search level %s succeeded for %s:%s params=%s accuracy=%.1f",
                    level,
                    sku,
                    model.id,
                    params,
                    validation.accuracy,
                )
                return self._result(params, validation)
            LOGGER.warning("Grid search level %s found no candidate for %s:%s", level, sku, model.id)

        return self._fallback_result(model, values, seasonal_period)

    # ------------------------------------------------------------------
    def _search_level(
        self,
        model: ModelConfig,
        values: np.ndarray,
        seasonal_period: int,
        grid: Mapping[str, Iterable[float]],
    ) -> Optional[tuple[Dict[str, float], ValidationResult]]:
        scale = float(np.mean(np.abs(values)))
        best: Optional[tuple[float, Dict[str, float], ValidationResult]] = None
        for params in _combinations(grid):
            try:
                validation = walk_forward_validation(
                    model.id, values, params, seasonal_period, self.config
                )
            except ValueError:
                continue
            if validation.accuracy <= 0:
                continue
            score = weighted_score(validation, scale, self.metric_weights)
            # strict comparison keeps the earliest (simplest) candidate on ties
            if best is None or score < best[0]:
                best = (score, params, validation)
        if best is None:
            return None
        return best[1], best[2]

    # ------------------------------------------------------------------
    def _fallback_result(self, model: ModelConfig, values: np.ndarray, seasonal_period: int) -> SearchResult:
        params = dict(model.parameters)
        validation = walk_forward_validation(model.id, values, params, seasonal_period, self.config)
        return self._result(params, validation)

    # ------------------------------------------------------------------
    def _result(self, params: Mapping[str, float], validation: ValidationResult) -> SearchResult:
        accuracy = float(validation.accuracy)
        return SearchResult(
            parameters={name: float(value) for name, value in params.items()},
            confidence=max(60.0, min(95.0, validation.confidence)),
            accuracy=accuracy,
            expected_accuracy=accuracy,
            reasoning=(
                "Grid search systematically tested parameter combinations and selected the "
                f"configuration with the best weighted validation score ({accuracy:.1f}% accuracy)."
            ),
            factors=GRID_FACTORS,
            method="grid",
        )
