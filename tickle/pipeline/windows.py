from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

# Trading-day approximations, not calendar-aligned.
ONE_MONTH_DAYS = 22
SIX_MONTH_DAYS = 132
ONE_YEAR_DAYS = 264
RETURN_MIN_POINTS = 260
RETURN_LOOKBACK = 253


@dataclass(frozen=True)
class Windows:
    one_month: list[float]
    six_month: list[float]
    one_year: list[float]

    def as_dict(self) -> dict[str, list[float]]:
        return {"1m": self.one_month, "6m": self.six_month, "1y": self.one_year}


def slice_last_n(values: Sequence[float], n: int) -> list[float]:
    seq = [float(v) for v in values]
    return seq if len(seq) <= n else seq[len(seq) - n :]


def build_windows(closes: Sequence[float]) -> Windows:
    """Trailing 1m/6m/1y windows; a series with fewer than two points yields empty windows."""
    if len(closes) < 2:
        return Windows([], [], [])
    return Windows(
        one_month=slice_last_n(closes, ONE_MONTH_DAYS),
        six_month=slice_last_n(closes, SIX_MONTH_DAYS),
        one_year=slice_last_n(closes, ONE_YEAR_DAYS),
    )


def last_close(windows: Windows) -> float:
    for w in (windows.one_year, windows.six_month, windows.one_month):
        if w:
            return float(w[-1])
    return 0.0


def compute_one_year_return(closes: Sequence[float]) -> float:
    if len(closes) < RETURN_MIN_POINTS:
        return 0.0
    last = float(closes[-1])
    prior = float(closes[-RETURN_LOOKBACK])
    if prior == 0:
        return 0.0
    return (last - prior) / prior * 100.0
