r"""backend\app\services\sales_data.py

In-memory holder for the cleaned sales history of every SKU.

The frame uses the long ``sku, date, sales`` layout.  All consumers read a
SKU's history through :meth:`SalesDataStore.series_for`, which returns a
date-indexed ``pd.Series``; the digest of that series is what optimization
records are validated against.
"""

from __future__ import annotations

import logging
import os
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ..core.errors import DataUnavailableError
from .fingerprint import EMPTY_DIGEST, series_digest
from .io_utils import SALES_COLUMNS, normalise_sales_frame, read_sales_csv

LOGGER = logging.getLogger(__name__)

SALES_FILENAME = "sales.csv"


class SalesDataStore:
    """Current cleaned data, one series per SKU."""

    def __init__(self, frame: Optional[pd.DataFrame] = None) -> None:
        self._frame = pd.DataFrame(columns=SALES_COLUMNS)
        self._digests: Dict[str, str] = {}
        if frame is not None:
            self.replace(frame)

    # ------------------------------------------------------------------
    @classmethod
    def from_data_dir(cls, data_dir: str) -> "SalesDataStore":
        """Load ``<data_dir>/sales.csv`` when present, else start empty."""

        path = Path(data_dir) / SALES_FILENAME
        store = cls()
        if path.exists():
            try:
                store.replace(read_sales_csv(path))
            except (OSError, ValueError):
                LOGGER.exception("Could not load sales data from %s", path)
        return store

    # ------------------------------------------------------------------
    @property
    def loaded(self) -> bool:
        return not self._frame.empty

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    # ------------------------------------------------------------------
    def skus(self) -> List[str]:
        return sorted(self._digests)

    # ------------------------------------------------------------------
    def has_sku(self, sku: str) -> bool:
        return sku in self._digests

    # ------------------------------------------------------------------
    def point_count(self, sku: str) -> int:
        return int((self._frame["sku"] == sku).sum()) if self.loaded else 0

    # ------------------------------------------------------------------
    def series_for(self, sku: str) -> pd.Series:
        """Return the date-indexed sales series for ``sku``.

        Raises
        ------
        DataUnavailableError
            If no data is loaded for ``sku``.
        """

        if sku not in self._digests:
            raise DataUnavailableError(sku, message=f"No cleaned data available for SKU '{sku}'")
        rows = self._frame[self._frame["sku"] == sku]
        series = pd.Series(
            rows["sales"].astype(float).to_numpy(),
            index=pd.DatetimeIndex(rows["date"], name="date"),
            name=sku,
        )
        return series.sort_index()

    # ------------------------------------------------------------------
    def digest_for(self, sku: str) -> str:
        return self._digests.get(sku, EMPTY_DIGEST)

    # ------------------------------------------------------------------
    def replace(self, frame: pd.DataFrame) -> List[str]:
        """Swap in a new dataset; return the SKUs whose series changed."""

        frame = normalise_sales_frame(frame)
        previous = dict(self._digests)
        self._frame = frame
        self._digests = self._compute_digests(frame)

        changed = sorted(
            sku
            for sku in set(previous) | set(self._digests)
            if previous.get(sku) != self._digests.get(sku)
        )
        LOGGER.info(
            "Loaded sales data: %s rows, %s SKUs, %s changed",
            len(frame),
            len(self._digests),
            len(changed),
        )
        return changed

    # ------------------------------------------------------------------
    def set_point(self, sku: str, when: date | str, value: float) -> bool:
        """Set (or add) the value for ``sku`` on ``when``; return whether it changed."""

        if sku not in self._digests:
            raise DataUnavailableError(sku, message=f"Unknown SKU '{sku}'")
        timestamp = pd.Timestamp(when).normalize()
        mask = (self._frame["sku"] == sku) & (self._frame["date"] == timestamp)
        if mask.any():
            self._frame.loc[mask, "sales"] = float(value)
        else:
            extra = pd.DataFrame({"sku": [sku], "date": [timestamp], "sales": [float(value)]})
            self._frame = (
                pd.concat([self._frame, extra], ignore_index=True)
                .sort_values(["sku", "date"])
                .reset_index(drop=True)
            )

        before = self._digests[sku]
        self._digests[sku] = series_digest(self.series_for(sku))
        return before != self._digests[sku]

    # ------------------------------------------------------------------
    def save(self, data_dir: str) -> Path:
        os.makedirs(data_dir, exist_ok=True)
        path = Path(data_dir) / SALES_FILENAME
        out = self._frame.copy()
        out["date"] = out["date"].dt.strftime("%Y-%m-%d")
        out.to_csv(path, index=False)
        return path

    # ------------------------------------------------------------------
    @staticmethod
    def _compute_digests(frame: pd.DataFrame) -> Dict[str, str]:
        digests: Dict[str, str] = {}
        for sku, rows in frame.groupby("sku", sort=True):
            series = pd.Series(
                rows["sales"].astype(float).to_numpy(),
                index=pd.DatetimeIndex(rows["date"]),
            )
            digests[str(sku)] = series_digest(series)
        return digests
