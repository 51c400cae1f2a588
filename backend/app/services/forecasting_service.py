r"""backend\app\services\forecasting_service.py

Per-SKU forecasts from every enabled model.

The service knows nothing about caching or optimization: it receives the
model configuration already projected by the synchronizer and feeds each
model's effective parameters to the pure forecast functions.  Prediction
bands come from the spread of one-step in-sample residuals.
"""

from __future__ import annotations

import logging
from math import sqrt
from statistics import NormalDist
from typing import List, Sequence

import numpy as np
import pandas as pd
from pandas.tseries.frequencies import to_offset

from ..models.schemas import ForecastPoint, ForecastResponse, ModelConfig, ModelForecast
from .forecast_models import compute, detect_frequency
from .sales_data import SalesDataStore

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helper utilities (kept top-level for straightforward unit testing)


def compute_pi(
    mean_forecast: pd.Series,
    residuals: pd.Series,
    z_value: float,
) -> tuple[pd.Series, pd.Series]:
    """Compute prediction interval bounds from residuals."""

    if residuals.empty:
        spread = sqrt(max(mean_forecast.mean(), 1.0))
    else:
        spread = float(residuals.std(ddof=1))
        if np.isnan(spread) or spread == 0.0:
            spread = sqrt(max(mean_forecast.mean(), 1.0))

    lower = (mean_forecast - z_value * spread).clip(lower=0.0)
    upper = (mean_forecast + z_value * spread).clip(lower=0.0)
    return lower, upper


def future_dates(index: pd.Index, periods: int) -> pd.DatetimeIndex:
    """Return ``periods`` dates following the last observation."""

    frequency = detect_frequency(index)
    offset = to_offset(frequency.offset)
    last = pd.DatetimeIndex(index).max()
    return pd.date_range(start=last + offset, periods=periods, freq=offset)


def naive_residuals(series: pd.Series) -> pd.Series:
    """One-step residuals of a three-point moving average."""

    fitted = series.rolling(3, min_periods=1).mean().shift(1)
    return (series - fitted).dropna()


# ---------------------------------------------------------------------------
# Core service implementation


class ForecastingService:
    def __init__(self, data: SalesDataStore, service_level: float = 0.95) -> None:
        self.data = data
        self.service_level = min(max(service_level, 0.5), 0.995)
        self.z_value: float = NormalDist().inv_cdf(self.service_level)

    # ------------------------------------------------------------------
    def forecast(
        self,
        sku: str,
        periods: int,
        models: Sequence[ModelConfig],
    ) -> ForecastResponse:
        """Run every enabled model in ``models`` for ``sku``.

        Raises
        ------
        DataUnavailableError
            If there is no data for ``sku``.
        ValueError
            If ``periods`` is not positive.
        """

        if periods <= 0:
            raise ValueError("periods must be a positive integer")

        series = self.data.series_for(sku)
        seasonal_period = detect_frequency(series.index).seasonal_period
        dates = future_dates(series.index, periods)
        residuals = naive_residuals(series)
        values = series.to_numpy(dtype=float)

        results: List[ModelForecast] = []
        for model in models:
            if not model.enabled:
                continue
            parameters = model.effective_parameters
            try:
                mean = compute(model.id, values, parameters, periods, seasonal_period)
            except ValueError:
                LOGGER.exception("Model %s could not forecast sku=%s", model.id, sku)
                continue
            mean_series = pd.Series(mean, index=dates)
            lower, upper = compute_pi(mean_series, residuals, self.z_value)
            points = [
                ForecastPoint(
                    date=day.date(),
                    value=float(mean_series.iloc[i]),
                    lo=float(lower.iloc[i]),
                    hi=float(upper.iloc[i]),
                )
                for i, day in enumerate(dates)
            ]
            results.append(
                ModelForecast(
                    model_id=model.id,
                    method=model.optimization_method or "manual",
                    parameters=parameters,
                    confidence=model.optimization_confidence,
                    forecast=points,
                )
            )

        LOGGER.info("Forecast for sku=%s periods=%s models=%s", sku, periods, len(results))
        return ForecastResponse(
            sku=sku,
            periods=periods,
            data_hash=self.data.digest_for(sku),
            models=results,
        )
