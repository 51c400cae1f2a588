r"""backend/app/services/llm_service.py

AI-assisted parameter search backed by Google's Gemini API.

The collaborator sends the recent history, the model's current parameters and
the business context to Gemini and expects a JSON document with the
recommended parameters back.  It returns ``None`` when AI search is disabled
or no ``GEMINI_API_KEY`` is configured, and raises when the remote call fails
or the answer cannot be used.  Callers treat both outcomes as a failure;
retries and fallbacks belong to the queue processor, not here.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, Optional

import google.generativeai as genai
import pandas as pd

from ..core.config import BusinessContext
from ..core.errors import SearchFailedError
from ..models.schemas import ModelConfig, OptimizationFactors, SearchResult
from .forecast_models import detect_frequency

LOGGER = logging.getLogger(__name__)

_configured_key: Optional[str] = None

PARAMETER_BOUNDS: Dict[str, Dict[str, tuple[float, float]]] = {
    "moving_average": {"window": (1, 30)},
    "seasonal_moving_average": {"window": (1, 30)},
    "exponential_smoothing": {"alpha": (0.01, 1.0)},
    "holt_winters": {"alpha": (0.01, 1.0), "beta": (0.01, 1.0), "gamma": (0.01, 1.0)},
}

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def _get_model(api_key: str) -> Any:
    """Return a configured Gemini model handle for ``api_key``."""

    global _configured_key
    if _configured_key != api_key:
        genai.configure(api_key=api_key)
        _configured_key = api_key
    model_name = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    return genai.GenerativeModel(model_name)


def build_prompt(
    model: ModelConfig,
    series: pd.Series,
    business_context: BusinessContext,
) -> str:
    recent = ", ".join(f"{float(v):g}" for v in series.tail(20).tolist())
    frequency = detect_frequency(series.index)
    bounds = PARAMETER_BOUNDS.get(model.id, {})
    constraints = ", ".join(f"{name} ({low:g}-{high:g})" for name, (low, high) in bounds.items())
    return (
        "You are an expert time series forecasting analyst. "
        f"Optimize parameters for the {model.id} forecasting model.\n\n"
        f"Historical data (last 20 points): {recent}\n"
        f"Current parameters: {json.dumps(model.parameters)}\n"
        f"Frequency: {frequency.name} (seasonal period {frequency.seasonal_period})\n"
        f"Allowed parameters: {constraints or 'none'}\n"
        f"Business context: {business_context.model_dump_json()}\n\n"
        "Only return parameters that exist for this model. Respond in JSON format:\n"
        '{"optimizedParameters": {"name": value}, "expectedAccuracy": percentage, '
        '"confidence": percentage, "reasoning": "explanation", '
        '"factors": {"stability": 0-100, "interpretability": 0-100, "complexity": 0-100, '
        '"businessImpact": "text"}}'
    )


def parse_response(model: ModelConfig, text: str, sku: str) -> SearchResult:
    """Turn Gemini's answer into a :class:`SearchResult` or raise."""

    match = _JSON_BLOCK.search(text or "")
    if match is None:
        raise SearchFailedError("ai", sku, model.id, "response did not contain JSON")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise SearchFailedError("ai", sku, model.id, f"malformed JSON: {exc}") from exc

    raw_params = payload.get("optimizedParameters") or {}
    bounds = PARAMETER_BOUNDS.get(model.id, {})
    parameters: Dict[str, float] = {}
    for name, value in raw_params.items():
        if name not in bounds:
            continue
        try:
            low, high = bounds[name]
            parameters[name] = float(min(max(float(value), low), high))
        except (TypeError, ValueError):
            continue
    if bounds and not parameters:
        raise SearchFailedError("ai", sku, model.id, "no usable parameters in response")

    factors = None
    raw_factors = payload.get("factors")
    if isinstance(raw_factors, dict):
        factors = OptimizationFactors(
            stability=float(raw_factors.get("stability", 0) or 0),
            interpretability=float(raw_factors.get("interpretability", 0) or 0),
            complexity=float(raw_factors.get("complexity", 0) or 0),
            business_impact=str(raw_factors.get("businessImpact", "")),
        )

    raw_confidence = payload.get("confidence")
    confidence = 75.0 if raw_confidence is None else float(raw_confidence)
    expected = payload.get("expectedAccuracy")
    return SearchResult(
        parameters=parameters,
        confidence=min(max(confidence, 0.0), 100.0),
        reasoning=payload.get("reasoning"),
        factors=factors,
        expected_accuracy=float(expected) if expected is not None else None,
        accuracy=float(expected) if expected is not None else None,
        method="ai",
    )


async def optimize_parameters(
    model: ModelConfig,
    series: pd.Series,
    sku: str,
    business_context: BusinessContext | None = None,
    api_key: str | None = None,
    enabled: bool = True,
) -> Optional[SearchResult]:
    """AI Search collaborator.  ``None`` means "no result"; errors propagate."""

    if not enabled:
        return None
    key = api_key or os.getenv("GEMINI_API_KEY")
    if not key:
        LOGGER.warning("AI search requested for %s:%s but GEMINI_API_KEY is not set", sku, model.id)
        return None

    prompt = build_prompt(model, series, business_context or BusinessContext())
    LOGGER.info("Calling Gemini for %s:%s", sku, model.id)
    gemini = _get_model(key)
    response = await gemini.generate_content_async(prompt)
    text = getattr(response, "text", None)
    if not isinstance(text, str) or not text.strip():
        raise SearchFailedError("ai", sku, model.id, "empty response")
    return parse_response(model, text, sku)
