r"""backend\app\services\validation_service.py"""

from __future__ import annotations

import pandas as pd

from .sales_data import SalesDataStore

MIN_POINTS_PER_SKU = 3


class ValidationService:
    def __init__(self, data: SalesDataStore):
        self.data = data

    def run(self) -> dict:
        checks = []

        def add(name: str, ok: bool, msg: str = "") -> None:
            checks.append({"name": name, "ok": bool(ok), "message": msg})

        frame = self.data.frame
        add("data_loaded", self.data.loaded, f"{len(frame)} rows")
        if self.data.loaded:
            counts = frame.groupby("sku")["date"].count()
            short = sorted(str(sku) for sku, n in counts.items() if n < MIN_POINTS_PER_SKU)
            add(
                "min_points_per_sku",
                not short,
                f"SKUs with fewer than {MIN_POINTS_PER_SKU} points: {short[:8]}" if short else "",
            )
            negative = int((frame["sales"] < 0).sum())
            add("non_negative_sales", negative == 0, f"{negative} negative values")

            gaps = []
            for sku, rows in frame.groupby("sku"):
                dates = pd.DatetimeIndex(rows["date"]).sort_values()
                if len(dates) < 3:
                    continue
                deltas = pd.Series(dates).diff().dropna().dt.days
                if deltas.max() > deltas.median() * 2:
                    gaps.append(str(sku))
            add("regular_spacing", not gaps, f"SKUs with gaps: {gaps[:8]}" if gaps else "")

        overall = all(x["ok"] for x in checks)
        return {"ok": overall, "checks": checks}
