"""Routes for sales forecasting."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, status

from ...core.errors import DataUnavailableError
from ...models import schemas
from ...services.optimization_engine import get_engine

LOGGER = logging.getLogger(__name__)

router = APIRouter()

MIN_FORECAST_PERIODS = 1
MAX_FORECAST_PERIODS = 120


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


def _parse_periods(raw_periods: int | None) -> int | None:
    """Validate the requested number of forecast periods."""

    if raw_periods is None:
        return None
    if raw_periods < MIN_FORECAST_PERIODS or raw_periods > MAX_FORECAST_PERIODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload(
                "invalid_periods",
                f"periods must be between {MIN_FORECAST_PERIODS} and {MAX_FORECAST_PERIODS}.",
            ),
        )
    return raw_periods


@router.get("/forecasts/{sku}", response_model=schemas.ForecastResponse)
async def get_forecast(
    sku: str,
    periods: int | None = Query(None, description="Number of future periods (default from settings)"),
) -> schemas.ForecastResponse:
    """Forecast ``sku`` with every enabled model and its resolved parameters."""

    LOGGER.info("Forecast request received for sku=%s periods=%s", sku, periods)
    horizon = _parse_periods(periods)
    engine = get_engine()

    if not engine.data.loaded:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload("data_unavailable", "No sales data loaded. Upload a CSV and retry."),
        )

    try:
        return engine.forecast(sku, horizon)
    except DataUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("sku_not_found", f"SKU '{sku}' was not found in the sales data."),
        ) from exc
    except ValueError as exc:
        LOGGER.warning("Forecasting rejected for sku=%s: %s", sku, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", str(exc)),
        ) from exc
    except Exception as exc:  # pragma: no cover - unexpected model failure
        LOGGER.exception("Unexpected error while forecasting sku=%s", sku)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("forecast_failed", "An unexpected error occurred while forecasting."),
        ) from exc
