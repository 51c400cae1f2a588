r"""backend\app\services\cache_store.py

Versioned store of optimization results.

The store maps ``sku -> model_id -> CacheEntry`` and carries a global
``version`` counter.  Every mutating operation applies the change, persists
the whole mapping to the ``optimization_cache`` slot and only then bumps the
version and notifies subscribers, so a listener never observes a version
without the corresponding content.
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from ..models.schemas import METHODS, CacheEntry, Method, OptimizationRecord
from .storage import CACHE_SLOT, JsonSlotStorage

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24.0

VersionListener = Callable[[int], None]


class CacheStore:
    """Single source of truth for optimization records."""

    def __init__(
        self,
        storage: JsonSlotStorage | None = None,
        ttl_hours: float = DEFAULT_TTL_HOURS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self.ttl_seconds = float(ttl_hours) * 3600.0
        self._clock = clock
        self._entries: Dict[str, Dict[str, CacheEntry]] = {}
        self._version = 0
        self._listeners: List[VersionListener] = []
        if storage is not None:
            self._entries = self._load()

    # ------------------------------------------------------------------
    @property
    def version(self) -> int:
        return self._version

    # ------------------------------------------------------------------
    def subscribe(self, listener: VersionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    # ------------------------------------------------------------------
    def unsubscribe(self, listener: VersionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    def get(self, sku: str, model_id: str, method: Method) -> Optional[OptimizationRecord]:
        entry = self._entries.get(sku, {}).get(model_id)
        if entry is None:
            return None
        return entry.record(method)

    # ------------------------------------------------------------------
    def entry(self, sku: str, model_id: str) -> CacheEntry:
        """Return a copy of the entry (empty when nothing is cached)."""
        entry = self._entries.get(sku, {}).get(model_id)
        return entry.model_copy(deep=True) if entry is not None else CacheEntry()

    # ------------------------------------------------------------------
    def skus(self) -> list[str]:
        return sorted(self._entries)

    # ------------------------------------------------------------------
    def set(self, sku: str, model_id: str, method: Method, record: OptimizationRecord) -> int:
        """Replace the ``method`` slot for ``(sku, model_id)``."""
        if method not in METHODS:
            raise ValueError(f"Unknown optimization method '{method}'")
        entry = self._entries.setdefault(sku, {}).setdefault(model_id, CacheEntry())
        setattr(entry, method, record.model_copy(deep=True))
        return self._commit()

    # ------------------------------------------------------------------
    def set_selected_method(self, sku: str, model_id: str, method: Optional[Method]) -> int:
        """Record the user's explicit method choice, or clear it with ``None``."""
        if method is not None and method not in METHODS:
            raise ValueError(f"Unknown optimization method '{method}'")
        entry = self._entries.setdefault(sku, {}).setdefault(model_id, CacheEntry())
        entry.selected = method
        return self._commit()

    # ------------------------------------------------------------------
    def clear_for_sku(self, sku: str) -> int:
        self._entries.pop(sku, None)
        return self._commit()

    # ------------------------------------------------------------------
    def bump_version(self) -> int:
        """Signal consumers to resynchronise without changing content."""
        return self._commit()

    # ------------------------------------------------------------------
    def is_valid(self, sku: str, model_id: str, method: Method, current_hash: str) -> bool:
        record = self.get(sku, model_id, method)
        if record is None:
            return False
        if record.data_hash != current_hash:
            return False
        return not record.is_expired(self.ttl_seconds, now=self._clock())

    # ------------------------------------------------------------------
    def snapshot(self) -> dict:
        """Return the whole mapping as plain JSON-able dictionaries."""
        return {
            sku: {
                model_id: entry.model_dump(mode="json", exclude_none=True)
                for model_id, entry in models.items()
            }
            for sku, models in self._entries.items()
        }

    # ------------------------------------------------------------------
    def _commit(self) -> int:
        self._persist()
        self._version += 1
        version = self._version
        for listener in list(self._listeners):
            try:
                listener(version)
            except Exception:  # pragma: no cover - listener bugs must not corrupt the store
                LOGGER.exception("Cache version listener failed at version %s", version)
        return version

    # ------------------------------------------------------------------
    def _persist(self) -> None:
        if self._storage is None:
            return
        self._storage.write(CACHE_SLOT, copy.deepcopy(self.snapshot()))

    # ------------------------------------------------------------------
    def _load(self) -> Dict[str, Dict[str, CacheEntry]]:
        assert self._storage is not None
        raw = self._storage.read(CACHE_SLOT)
        if not isinstance(raw, dict):
            return {}

        now = self._clock()
        loaded: Dict[str, Dict[str, CacheEntry]] = {}
        for sku, models in raw.items():
            if not isinstance(models, dict):
                continue
            for model_id, payload in models.items():
                try:
                    entry = CacheEntry.model_validate(payload)
                except ValidationError:
                    LOGGER.warning("Dropping unreadable cache entry %s:%s", sku, model_id)
                    continue
                for method in METHODS:
                    record = entry.record(method)
                    if record is not None and record.is_expired(self.ttl_seconds, now=now):
                        setattr(entry, method, None)
                if not entry.is_empty():
                    loaded.setdefault(str(sku), {})[str(model_id)] = entry
        LOGGER.info("Loaded optimization cache with %s SKUs", len(loaded))
        return loaded
