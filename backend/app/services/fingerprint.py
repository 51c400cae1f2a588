r"""backend\app\services\fingerprint.py

Deterministic content hashes used as cache keys and job-deduplication keys.

``series_digest`` summarises a SKU's ordered ``(date, value)`` history so that
any edit, addition or removal yields a different digest.  ``fingerprint``
combines that digest with the optimization inputs (SKU, model, method,
parameters and scoring weights).
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Tuple, Union

import pandas as pd

EMPTY_DIGEST = "empty"

SeriesLike = Union[pd.Series, Iterable[Tuple[Any, float]]]


def _date_key(value: Any) -> str:
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _number_key(value: Any) -> str:
    number = float(value)
    if math.isnan(number):
        return "nan"
    # repr keeps full precision so tiny edits still change the digest
    return repr(number + 0.0)


def _pairs(series: SeriesLike) -> list[tuple[str, str]]:
    if isinstance(series, pd.Series):
        items = zip(series.index, series.values)
    else:
        items = iter(series)
    pairs = [(_date_key(day), _number_key(value)) for day, value in items]
    pairs.sort(key=lambda pair: pair[0])
    return pairs


def series_digest(series: SeriesLike) -> str:
    """Return the sha256 digest of the ordered ``(date, value)`` pairs."""

    pairs = _pairs(series)
    if not pairs:
        return EMPTY_DIGEST
    hasher = hashlib.sha256()
    for day, value in pairs:
        hasher.update(f"{day}={value};".encode("utf-8"))
    return f"v2-{len(pairs)}-{hasher.hexdigest()}"


def _canonical(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
    if hasattr(value, "model_dump"):
        return _canonical(value.model_dump())
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return _number_key(value)
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return str(value)


def fingerprint(
    sku: str,
    model_id: str,
    method: str,
    parameters: Mapping[str, float] | None,
    metric_weights: Any,
    digest: str,
) -> str:
    """Return a stable hash over every input that affects an optimization."""

    document = {
        "sku": str(sku),
        "model_id": str(model_id),
        "method": str(method),
        "parameters": _canonical(parameters or {}),
        "metric_weights": _canonical(metric_weights or {}),
        "series": digest,
    }
    payload = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
