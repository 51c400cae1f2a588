r"""backend\app\services\forecast_models.py

Statistical forecasting models consumed as pure functions.

Each model is ``compute(values, parameters, periods, seasonal_period) ->
np.ndarray``: no caching, no I/O, no knowledge of how the parameters were
chosen.  The catalogue below also carries the static default parameters that
are used whenever no valid optimized record applies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping

import numpy as np
import pandas as pd

from ..models.schemas import ModelConfig

ModelFunction = Callable[[np.ndarray, Mapping[str, float], int, int], np.ndarray]


# ---------------------------------------------------------------------------
# Helper utilities


def _as_array(values) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        raise ValueError("values must be a one-dimensional series")
    if arr.size == 0:
        raise ValueError("values must contain at least one observation")
    if not np.all(np.isfinite(arr)):
        raise ValueError("values must be finite numbers")
    return arr


def _bounded(value: float, low: float = 0.01, high: float = 0.99) -> float:
    return float(min(max(value, low), high))


def _window(parameters: Mapping[str, float], length: int, default: int = 3) -> int:
    window = int(round(parameters.get("window", default)))
    return max(1, min(window, length))


@dataclass(frozen=True)
class Frequency:
    name: str
    seasonal_period: int
    offset: str


_FREQUENCIES = {
    "daily": Frequency("daily", 7, "D"),
    "weekly": Frequency("weekly", 52, "W"),
    "monthly": Frequency("monthly", 12, "MS"),
    "quarterly": Frequency("quarterly", 4, "QS"),
    "yearly": Frequency("yearly", 1, "YS"),
}


def detect_frequency(index: pd.Index) -> Frequency:
    """Guess the sampling frequency from the median gap between dates."""

    if len(index) < 2:
        return _FREQUENCIES["monthly"]
    dates = pd.DatetimeIndex(pd.to_datetime(index)).sort_values()
    gap_days = float(pd.Series(dates).diff().dropna().dt.days.median())
    if gap_days <= 1.5:
        return _FREQUENCIES["daily"]
    if gap_days <= 10:
        return _FREQUENCIES["weekly"]
    if gap_days <= 45:
        return _FREQUENCIES["monthly"]
    if gap_days <= 120:
        return _FREQUENCIES["quarterly"]
    return _FREQUENCIES["yearly"]


# ---------------------------------------------------------------------------
# Model implementations


def moving_average(values, parameters: Mapping[str, float], periods: int, seasonal_period: int = 12) -> np.ndarray:
    arr = _as_array(values)
    window = _window(parameters, len(arr))
    level = float(arr[-window:].mean())
    return np.full(periods, max(level, 0.0))


def exponential_smoothing(values, parameters: Mapping[str, float], periods: int, seasonal_period: int = 12) -> np.ndarray:
    arr = _as_array(values)
    alpha = _bounded(float(parameters.get("alpha", 0.3)))
    level = arr[0]
    for value in arr[1:]:
        level = alpha * value + (1 - alpha) * level
    return np.full(periods, max(float(level), 0.0))


def linear_trend(values, parameters: Mapping[str, float], periods: int, seasonal_period: int = 12) -> np.ndarray:
    arr = _as_array(values)
    if len(arr) == 1:
        return np.full(periods, max(float(arr[0]), 0.0))
    x = np.arange(len(arr), dtype=float)
    slope, intercept = np.polyfit(x, arr, 1)
    future_x = np.arange(len(arr), len(arr) + periods, dtype=float)
    return np.clip(intercept + slope * future_x, 0.0, None)


def seasonal_moving_average(values, parameters: Mapping[str, float], periods: int, seasonal_period: int = 12) -> np.ndarray:
    arr = _as_array(values)
    window = _window(parameters, len(arr))
    season = max(int(seasonal_period), 1)
    overall = float(arr.mean())
    extended = list(arr)
    predictions = []
    for step in range(periods):
        season_index = (len(arr) + step) % season
        same_season = arr[np.arange(len(arr)) % season == season_index]
        seasonal_avg = float(same_season.mean()) if same_season.size else 0.0
        base = float(np.mean(extended[-window:]))
        factor = seasonal_avg / overall if overall > 0 else 1.0
        prediction = max(base * factor, 0.0)
        predictions.append(prediction)
        extended.append(prediction)
    return np.asarray(predictions, dtype=float)


def holt_winters(values, parameters: Mapping[str, float], periods: int, seasonal_period: int = 12) -> np.ndarray:
    """Multiplicative Holt-Winters with bounded smoothing constants."""

    arr = _as_array(values)
    alpha = _bounded(float(parameters.get("alpha", 0.3)))
    beta = _bounded(float(parameters.get("beta", 0.1)))
    gamma = _bounded(float(parameters.get("gamma", 0.1)))

    season = max(int(seasonal_period), 1)
    if len(arr) < season * 2:
        season = max(2, len(arr) // 2) if len(arr) >= 4 else 1

    first = arr[:season]
    level = float(first.mean())
    trend = 0.0
    seasonal = np.ones(season)
    if len(arr) >= season * 2 and level > 0:
        second = float(arr[season : season * 2].mean())
        trend = (second - level) / season
        seasonal = np.clip(first / level, 0.1, 10.0)
    elif arr.mean() > 0:
        seasonal = np.clip(np.resize(arr, season) / arr.mean(), 0.1, 10.0)

    for i in range(season, len(arr)):
        idx = i % season
        previous = level
        factor = seasonal[idx] if seasonal[idx] > 0 else 1.0
        level = alpha * (arr[i] / factor) + (1 - alpha) * (previous + trend)
        trend = beta * (level - previous) + (1 - beta) * trend
        if level > 0:
            seasonal[idx] = float(np.clip(gamma * (arr[i] / level) + (1 - gamma) * seasonal[idx], 0.1, 10.0))

    steps = np.arange(1, periods + 1, dtype=float)
    indices = (len(arr) + np.arange(periods)) % season
    forecast = (level + steps * trend) * seasonal[indices]
    fallback = max(float(arr[-1]), 0.0)
    forecast = np.where(np.isfinite(forecast), forecast, fallback)
    return np.clip(forecast, 0.0, None)


def seasonal_naive(values, parameters: Mapping[str, float], periods: int, seasonal_period: int = 12) -> np.ndarray:
    arr = _as_array(values)
    season = max(int(seasonal_period), 1)
    predictions = []
    for step in range(periods):
        season_index = (len(arr) + step) % season
        matches = np.flatnonzero(np.arange(len(arr)) % season == season_index)
        value = arr[matches[-1]] if matches.size else arr[-1]
        predictions.append(max(float(value), 0.0))
    return np.asarray(predictions, dtype=float)


MODEL_FUNCTIONS: Dict[str, ModelFunction] = {
    "moving_average": moving_average,
    "exponential_smoothing": exponential_smoothing,
    "linear_trend": linear_trend,
    "seasonal_moving_average": seasonal_moving_average,
    "holt_winters": holt_winters,
    "seasonal_naive": seasonal_naive,
}


def get_default_models() -> List[ModelConfig]:
    """Return fresh copies of the model catalogue with static defaults."""

    return [
        ModelConfig(
            id="moving_average",
            name="Simple Moving Average",
            description="Average of the last N data points",
            parameters={"window": 3},
        ),
        ModelConfig(
            id="exponential_smoothing",
            name="Exponential Smoothing",
            description="Weights recent observations more heavily",
            parameters={"alpha": 0.3},
        ),
        ModelConfig(
            id="linear_trend",
            name="Linear Trend",
            description="Least-squares line extrapolated forward",
            parameters={},
        ),
        ModelConfig(
            id="seasonal_moving_average",
            name="Seasonal Moving Average",
            description="Moving average scaled by the seasonal index",
            parameters={"window": 3},
            is_seasonal=True,
        ),
        ModelConfig(
            id="holt_winters",
            name="Holt-Winters (Triple Exponential)",
            description="Level, trend and seasonality smoothing",
            parameters={"alpha": 0.3, "beta": 0.1, "gamma": 0.1},
            is_seasonal=True,
        ),
        ModelConfig(
            id="seasonal_naive",
            name="Seasonal Naive",
            description="Repeats the value from the same period last season",
            parameters={},
            is_seasonal=True,
        ),
    ]


def has_optimizable_parameters(model: ModelConfig) -> bool:
    return bool(model.parameters)


def compute(model_id: str, values, parameters: Mapping[str, float], periods: int, seasonal_period: int = 12) -> np.ndarray:
    """Dispatch to the model function registered under ``model_id``."""

    if periods <= 0:
        raise ValueError("periods must be a positive integer")
    try:
        function = MODEL_FUNCTIONS[model_id]
    except KeyError as exc:
        raise ValueError(f"Unknown forecasting model '{model_id}'") from exc
    return function(values, parameters, periods, seasonal_period)
