r"""backend/tests/test_method_resolver.py"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.models.schemas import OptimizationRecord
from backend.app.services.cache_store import CacheStore
from backend.app.services.method_resolver import best_automatic_method, resolve_method

HASH = "v2-3-current"


def _record(data_hash: str = HASH) -> OptimizationRecord:
    return OptimizationRecord(parameters={"window": 4}, confidence=75, data_hash=data_hash)


def _store(*methods: str, data_hash: str = HASH) -> CacheStore:
    store = CacheStore()
    for method in methods:
        store.set("S1", "moving_average", method, _record(data_hash))  # type: ignore[arg-type]
    return store


def test_ai_wins_over_grid() -> None:
    assert resolve_method(_store("grid", "ai"), "S1", "moving_average", HASH) == "ai"


def test_grid_when_only_grid_valid() -> None:
    assert resolve_method(_store("grid"), "S1", "moving_average", HASH) == "grid"


def test_manual_when_nothing_valid() -> None:
    assert resolve_method(_store(), "S1", "moving_average", HASH) == "manual"
    # records computed from another series do not count
    assert resolve_method(_store("grid", "ai", data_hash="old"), "S1", "moving_average", HASH) == "manual"


def test_disabled_ai_is_ignored() -> None:
    store = _store("grid", "ai")
    assert best_automatic_method(store, "S1", "moving_average", HASH, ai_enabled=False) == "grid"


def test_explicit_selection_overrides_everything() -> None:
    store = _store("grid", "ai")
    store.set_selected_method("S1", "moving_average", "manual")
    assert resolve_method(store, "S1", "moving_average", HASH) == "manual"

    # even when the selected method's own record is stale
    stale = _store("ai", data_hash="old")
    stale.set("S1", "moving_average", "grid", _record())
    stale.set_selected_method("S1", "moving_average", "ai")
    assert resolve_method(stale, "S1", "moving_average", HASH) == "ai"


def test_clearing_selection_restores_automatic_choice() -> None:
    store = _store("grid")
    store.set_selected_method("S1", "moving_average", "manual")
    store.set_selected_method("S1", "moving_average", None)
    assert resolve_method(store, "S1", "moving_average", HASH) == "grid"
