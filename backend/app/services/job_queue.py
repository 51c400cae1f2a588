r"""backend\app\services\job_queue.py

Ordered list of pending optimization jobs.

The queue only tracks work in progress; results live in the cache store.
Jobs for the same ``(sku, model_id, method)`` slot and the same series digest
collapse into a single entry, and
the queue (items plus the pause flag) is persisted to the
``optimization_queue`` slot after every mutation so that work can resume on
the next start.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from ..models.schemas import JobState, QueueItem, SearchMethod
from .storage import QUEUE_SLOT, JsonSlotStorage

LOGGER = logging.getLogger(__name__)

JobKey = Tuple[str, str, str]
DedupKey = Tuple[str, str, str, Optional[str]]

TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed", "skipped"})


class JobQueue:
    """FIFO of :class:`QueueItem` with deduplication and outcome counters."""

    def __init__(self, storage: JsonSlotStorage | None = None) -> None:
        self._storage = storage
        self._items: List[QueueItem] = []
        self._paused = False
        self._running: Optional[QueueItem] = None
        self._states: Dict[JobKey, JobState] = {}
        self._outcomes: Counter[str] = Counter()
        if storage is not None:
            self._load()

    # ------------------------------------------------------------------
    @property
    def items(self) -> tuple[QueueItem, ...]:
        return tuple(self._items)

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def running(self) -> Optional[QueueItem]:
        return self._running

    def __len__(self) -> int:
        return len(self._items)

    # ------------------------------------------------------------------
    def state_of(self, sku: str, model_id: str, method: str) -> Optional[JobState]:
        return self._states.get((sku, model_id, method))

    # ------------------------------------------------------------------
    def counts(self) -> dict[str, int]:
        return {
            "queued": len(self._items) - (1 if self._running is not None else 0),
            "active": 1 if self._running is not None else 0,
            "completed": self._outcomes["completed"],
            "failed": self._outcomes["failed"],
            "skipped": self._outcomes["skipped"],
        }

    # ------------------------------------------------------------------
    def reset_counts(self) -> None:
        self._outcomes.clear()

    # ------------------------------------------------------------------
    def enqueue(self, items: Iterable[QueueItem]) -> tuple[list[QueueItem], list[QueueItem]]:
        """Append ``items``; duplicates of queued or in-flight jobs are skipped.

        An in-flight job only absorbs a new item computed from the same series
        digest, so a job queued after a data change still runs.
        """

        queued: list[QueueItem] = []
        skipped: list[QueueItem] = []
        keys: set[DedupKey] = {existing.dedup_key for existing in self._items}
        for item in items:
            if item.dedup_key in keys:
                skipped.append(item)
                self._outcomes["skipped"] += 1
                LOGGER.info("Skipping duplicate job %s:%s:%s", item.sku, item.model_id, item.method)
                continue
            keys.add(item.dedup_key)
            self._items.append(item)
            self._states[item.key] = "queued"
            queued.append(item)

        if queued:
            LOGGER.info(
                "Queued %s jobs (ai=%s, grid=%s); queue size now %s",
                len(queued),
                sum(1 for item in queued if item.method == "ai"),
                sum(1 for item in queued if item.method == "grid"),
                len(self._items),
            )
            self._persist()
        return queued, skipped

    # ------------------------------------------------------------------
    def record_skip(self, item: QueueItem) -> None:
        """Count a job that reached ``skipped`` without entering the queue."""
        self._states[item.key] = "skipped"
        self._outcomes["skipped"] += 1

    # ------------------------------------------------------------------
    def peek(self) -> Optional[QueueItem]:
        return self._items[0] if self._items else None

    # ------------------------------------------------------------------
    def start(self, item: QueueItem) -> None:
        if self._running is not None:
            raise RuntimeError("Another job is already running")
        self._running = item
        self._states[item.key] = "running"

    # ------------------------------------------------------------------
    def finish(self, item: QueueItem, state: JobState) -> None:
        """Record the terminal ``state`` and drop ``item`` from the queue."""

        if state not in TERMINAL_STATES:
            raise ValueError(f"'{state}' is not a terminal job state")
        self._items = [existing for existing in self._items if existing is not item]
        if self._running is item:
            self._running = None
        if any(existing.key == item.key for existing in self._items):
            # a newer job for the same slot is still waiting
            self._states[item.key] = "queued"
        else:
            self._states[item.key] = state
        self._outcomes[state] += 1
        self._persist()

    # ------------------------------------------------------------------
    def remove_skus(self, skus: Iterable[str]) -> list[QueueItem]:
        """Drop not-yet-started jobs for ``skus``."""
        targets = set(skus)
        return self._drop(lambda item: item.sku in targets)

    # ------------------------------------------------------------------
    def purge_method(self, method: SearchMethod) -> list[QueueItem]:
        """Drop every not-yet-started job using ``method``."""
        removed = self._drop(lambda item: item.method == method)
        if removed:
            LOGGER.info("Removed %s pending %s jobs", len(removed), method)
        return removed

    # ------------------------------------------------------------------
    def clear(self) -> list[QueueItem]:
        """Discard all not-yet-started jobs; the in-flight job is kept."""
        removed = self._drop(lambda item: True)
        self._paused = False
        self._persist()
        return removed

    # ------------------------------------------------------------------
    def pause(self) -> None:
        self._paused = True
        self._persist()

    # ------------------------------------------------------------------
    def resume(self) -> None:
        self._paused = False
        self._persist()

    # ------------------------------------------------------------------
    def _drop(self, predicate) -> list[QueueItem]:
        removed = [
            item for item in self._items if item is not self._running and predicate(item)
        ]
        if not removed:
            return []
        self._items = [item for item in self._items if item not in removed]
        for item in removed:
            self._states.pop(item.key, None)
        self._persist()
        return removed

    # ------------------------------------------------------------------
    def _persist(self) -> None:
        if self._storage is None:
            return
        self._storage.write(
            QUEUE_SLOT,
            {
                "paused": self._paused,
                "items": [item.model_dump(mode="json") for item in self._items],
            },
        )

    # ------------------------------------------------------------------
    def _load(self) -> None:
        assert self._storage is not None
        raw = self._storage.read(QUEUE_SLOT)
        if not isinstance(raw, dict):
            return
        self._paused = bool(raw.get("paused", False))
        seen: set[DedupKey] = set()
        for payload in raw.get("items") or []:
            try:
                item = QueueItem.model_validate(payload)
            except ValidationError:
                LOGGER.warning("Dropping unreadable queue item: %s", payload)
                continue
            if item.dedup_key in seen:
                continue
            seen.add(item.dedup_key)
            self._items.append(item)
            self._states[item.key] = "queued"
        if self._items:
            LOGGER.info("Resuming %s queued optimization jobs", len(self._items))
