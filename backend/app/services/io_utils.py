from __future__ import annotations

from pathlib import Path
from typing import IO, Any, Dict, Union

import pandas as pd

SALES_COLUMNS = ["sku", "date", "sales"]

_COLUMN_ALIASES: Dict[str, str] = {
    "sku_id": "sku",
    "item_id": "sku",
    "product": "sku",
    "ds": "date",
    "period": "date",
    "quantity": "sales",
    "qty": "sales",
    "units": "sales",
    "demand": "sales",
    "value": "sales",
}


def normalise_sales_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Return ``frame`` reduced to the canonical ``sku, date, sales`` schema.

    Column names are matched case-insensitively and a handful of common
    aliases (``item_id``, ``quantity`` ...) are accepted.  Rows with an
    unparsable date or value are dropped; duplicate ``(sku, date)`` pairs
    keep the last occurrence.
    """

    renamed: Dict[str, str] = {}
    for column in frame.columns:
        key = str(column).strip().lower()
        key = _COLUMN_ALIASES.get(key, key)
        if key in SALES_COLUMNS and key not in renamed.values():
            renamed[column] = key
    frame = frame.rename(columns=renamed)

    missing = [column for column in SALES_COLUMNS if column not in frame.columns]
    if missing:
        raise ValueError(f"Sales data is missing required columns: {', '.join(missing)}")

    frame = frame[SALES_COLUMNS].copy()
    frame["sku"] = frame["sku"].astype(str).str.strip()
    frame["date"] = pd.to_datetime(frame["date"], errors="coerce").dt.normalize()
    frame["sales"] = pd.to_numeric(frame["sales"], errors="coerce")
    frame = frame.dropna(subset=["date", "sales"])
    frame = frame[frame["sku"] != ""]
    frame = frame.drop_duplicates(subset=["sku", "date"], keep="last")
    return frame.sort_values(["sku", "date"]).reset_index(drop=True)


def read_sales_csv(source: Union[str, Path, IO[Any]], **csv_kwargs: Any) -> pd.DataFrame:
    """Load a long-format sales CSV (``sku,date,sales``) from a path or buffer.

    Parameters
    ----------
    source:
        Path to a CSV file or an open binary/text buffer (e.g. an upload).
    csv_kwargs:
        Additional keyword arguments forwarded to :func:`pandas.read_csv`.
    """

    if isinstance(source, (str, Path)):
        csv_kwargs.setdefault("memory_map", True)
    return normalise_sales_frame(pd.read_csv(source, **csv_kwargs))
