from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd


CLOSE_COLUMNS = ["date", "close"]
ALIASES = {
    "datetime": "date",
    "timestamp": "date",
    "4._close": "close",
    "adj_close": "close",
    "adjclose": "close",
}


def empty_closes() -> pd.DataFrame:
    return pd.DataFrame(columns=CLOSE_COLUMNS)


def _norm_name(name: object) -> str:
    return str(name).strip().lower().replace(" ", "_")


def _flatten_columns(df: pd.DataFrame) -> pd.DataFrame:
    # yfinance returns (field, ticker) MultiIndex columns for single-ticker downloads.
    if not isinstance(df.columns, pd.MultiIndex):
        return df
    cols: list[str] = []
    for col in df.columns:
        parts = [_norm_name(x) for x in col if str(x).strip() and str(x).strip().lower() != "none"]
        known = [p for p in parts if p in CLOSE_COLUMNS or p in ALIASES]
        cols.append(known[0] if known else (parts[0] if parts else ""))
    out = df.copy()
    out.columns = cols
    return out


def _coerce_columns(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    names = [_norm_name(c) for c in out.columns]
    # Prefer a real "close" over an adjusted alias when both exist.
    if "close" in names:
        out.columns = names
    else:
        out.columns = [ALIASES.get(n, n) for n in names]
    return out.loc[:, ~out.columns.duplicated()]


def ensure_close_schema(
    df: pd.DataFrame | None,
    *,
    date_column: str | None = None,
) -> pd.DataFrame:
    """Normalise a provider frame to ``date``/``close`` rows, oldest first.

    Rows with an unparseable date, a non-finite close or a close <= 0 are
    dropped; duplicate dates keep the last row. Returns an empty frame when
    the input has no usable date or close column.
    """
    if df is None or df.empty:
        return empty_closes()

    work = _flatten_columns(df)
    if date_column and date_column in work.columns and date_column != "date":
        work = work.rename(columns={date_column: "date"})
    work = _coerce_columns(work)

    if "date" not in work.columns:
        if isinstance(work.index, pd.DatetimeIndex) or (
            work.index.name and _norm_name(work.index.name) in {"date", "datetime", "timestamp"}
        ):
            work = work.reset_index()
            work = work.rename(columns={work.columns[0]: "date"})

    if "date" not in work.columns or "close" not in work.columns:
        return empty_closes()

    work = work[CLOSE_COLUMNS].copy()
    work["date"] = pd.to_datetime(work["date"], errors="coerce")
    if getattr(work["date"].dt, "tz", None) is not None:
        work["date"] = work["date"].dt.tz_localize(None)
    work["close"] = pd.to_numeric(work["close"], errors="coerce")
    work = work[np.isfinite(work["close"]) & (work["close"] > 0)]

    work = (
        work.dropna(subset=["date"])
        .drop_duplicates(subset=["date"], keep="last")
        .sort_values("date")
        .reset_index(drop=True)
    )
    work["date"] = work["date"].dt.strftime("%Y-%m-%d")
    return work[CLOSE_COLUMNS].copy()


def closes_from_pairs(pairs: Iterable[tuple[str, float]]) -> pd.DataFrame:
    rows = list(pairs)
    if not rows:
        return empty_closes()
    return ensure_close_schema(pd.DataFrame(rows, columns=CLOSE_COLUMNS))
