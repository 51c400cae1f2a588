"""Decide which optimization method drives a model's active parameters."""

from __future__ import annotations

from ..models.schemas import Method
from .cache_store import CacheStore


def best_automatic_method(
    store: CacheStore,
    sku: str,
    model_id: str,
    current_hash: str,
    ai_enabled: bool = True,
) -> Method:
    """Return the best valid method in the fixed order AI > Grid > Manual."""

    if ai_enabled and store.is_valid(sku, model_id, "ai", current_hash):
        return "ai"
    if store.is_valid(sku, model_id, "grid", current_hash):
        return "grid"
    return "manual"


def resolve_method(
    store: CacheStore,
    sku: str,
    model_id: str,
    current_hash: str,
    ai_enabled: bool = True,
) -> Method:
    """Return the effective method for ``(sku, model_id)``.

    An explicit user selection always wins, even when that method's record is
    stale; consumers then fall back to the model's static defaults.
    """

    selected = store.entry(sku, model_id).selected
    if selected is not None:
        return selected
    return best_automatic_method(store, sku, model_id, current_hash, ai_enabled)
