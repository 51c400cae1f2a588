r"""backend\app\services\circuit_breaker.py

Consecutive-failure counter that disables AI parameter search.

The breaker state (failure count and the global
``ai_forecast_model_optimization_enabled`` flag) is persisted to the
``ai_circuit_breaker`` slot so a restart does not silently re-enable a
dependency that was tripped.
"""

from __future__ import annotations

import logging

from .storage import BREAKER_SLOT, JsonSlotStorage

LOGGER = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5


class AICircuitBreaker:
    """Track consecutive AI failures and trip once ``threshold`` is reached."""

    def __init__(
        self,
        threshold: int = DEFAULT_FAILURE_THRESHOLD,
        storage: JsonSlotStorage | None = None,
        enabled: bool = True,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be a positive integer")
        self.threshold = int(threshold)
        self._storage = storage
        self.failure_count = 0
        self.enabled = enabled
        if storage is not None:
            raw = storage.read(BREAKER_SLOT)
            if isinstance(raw, dict):
                try:
                    self.failure_count = max(int(raw.get("failure_count", 0)), 0)
                except (TypeError, ValueError):
                    self.failure_count = 0
                self.enabled = bool(raw.get("enabled", enabled))

    # ------------------------------------------------------------------
    @property
    def ai_forecast_model_optimization_enabled(self) -> bool:
        return self.enabled

    # ------------------------------------------------------------------
    def record_success(self) -> None:
        if self.failure_count:
            LOGGER.info("AI search succeeded; resetting failure count from %s", self.failure_count)
        self.failure_count = 0
        self._persist()

    # ------------------------------------------------------------------
    def record_failure(self) -> bool:
        """Count a failure; return ``True`` only on the call that trips the breaker."""

        self.failure_count += 1
        LOGGER.warning("AI failure count increased to %s/%s", self.failure_count, self.threshold)
        tripped = self.enabled and self.failure_count >= self.threshold
        if tripped:
            self.enabled = False
            LOGGER.error(
                "AI optimization disabled after %s consecutive failures", self.failure_count
            )
        self._persist()
        return tripped

    # ------------------------------------------------------------------
    def reenable(self) -> None:
        """Manual re-enable: clear the counter and turn AI back on."""
        self.failure_count = 0
        self.enabled = True
        self._persist()

    # ------------------------------------------------------------------
    def disable(self) -> None:
        self.enabled = False
        self._persist()

    # ------------------------------------------------------------------
    def _persist(self) -> None:
        if self._storage is None:
            return
        self._storage.write(
            BREAKER_SLOT,
            {"failure_count": self.failure_count, "enabled": self.enabled},
        )
