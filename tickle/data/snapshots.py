from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tickle.data.paths import DATA_DIR, read_json, snapshots_dir, write_json_atomic
from tickle.data.universe import ValidationError, today_key_utc

LOG = logging.getLogger("tickle.snapshots")

WINDOW_KEYS = ("1m", "6m", "1y")
MAX_NEWS_ITEMS = 3


@dataclass(frozen=True)
class NewsItem:
    headline: str
    source: str
    when: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return {"headline": self.headline, "source": self.source, "when": self.when, "url": self.url}


@dataclass(frozen=True)
class Snapshot:
    one_month: list[float]
    six_month: list[float]
    one_year: list[float]
    last_close: float
    one_year_return: float
    built_date_utc: str
    source: str
    insight: str = ""
    top_news: list[NewsItem] = field(default_factory=list)
    built_at: str | None = None
    symbol_used: str | None = None
    market_cap_b: float | None = None

    def window(self, key: str) -> list[float]:
        return {"1m": self.one_month, "6m": self.six_month, "1y": self.one_year}[key]

    def to_dict(self) -> dict[str, Any]:
        return {
            "builtAt": self.built_at,
            "builtDateUTC": self.built_date_utc,
            "source": self.source,
            "symbolUsed": self.symbol_used,
            "1m": list(self.one_month),
            "6m": list(self.six_month),
            "1y": list(self.one_year),
            "lastClose": self.last_close,
            "oneYearReturn": self.one_year_return,
            "marketCapB": self.market_cap_b,
            "topNews": [n.to_dict() for n in self.top_news[:MAX_NEWS_ITEMS]],
            "insight": self.insight,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "Snapshot":
        if not isinstance(raw, dict):
            raise ValidationError("snapshot must be an object")
        windows: dict[str, list[float]] = {}
        for key in WINDOW_KEYS:
            values = raw.get(key, [])
            if not isinstance(values, list):
                raise ValidationError(f"snapshot window {key} must be a list")
            try:
                windows[key] = [float(v) for v in values]
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"snapshot window {key} has non-numeric values") from exc
        last_close = raw.get("lastClose")
        if isinstance(last_close, bool) or not isinstance(last_close, (int, float)):
            raise ValidationError("snapshot lastClose must be a number")
        one_year_return = raw.get("oneYearReturn", 0)
        if isinstance(one_year_return, bool) or not isinstance(one_year_return, (int, float)):
            one_year_return = 0.0
        market_cap_b = raw.get("marketCapB")
        if isinstance(market_cap_b, bool) or not isinstance(market_cap_b, (int, float)) or not math.isfinite(market_cap_b):
            market_cap_b = None
        news = []
        for item in (raw.get("topNews") or [])[:MAX_NEWS_ITEMS]:
            if not isinstance(item, dict):
                continue
            news.append(
                NewsItem(
                    headline=str(item.get("headline") or ""),
                    source=str(item.get("source") or ""),
                    when=str(item.get("when") or ""),
                    url=str(item.get("url") or ""),
                )
            )
        return cls(
            one_month=windows["1m"],
            six_month=windows["6m"],
            one_year=windows["1y"],
            last_close=float(last_close),
            one_year_return=float(one_year_return),
            built_date_utc=str(raw.get("builtDateUTC") or ""),
            source=str(raw.get("source") or "unknown"),
            insight=str(raw.get("insight") or ""),
            top_news=news,
            built_at=raw.get("builtAt"),
            symbol_used=raw.get("symbolUsed"),
            market_cap_b=float(market_cap_b) if market_cap_b is not None else None,
        )


class SnapshotNotFound(LookupError):
    pass


class SnapshotStore:
    """One JSON snapshot per ticker under ``<data_dir>/snapshots/<TICKER>.json``."""

    def __init__(self, data_dir: Path | str = DATA_DIR) -> None:
        self.root = snapshots_dir(data_dir)

    def path_for(self, ticker: str) -> Path:
        return self.root / f"{ticker}.json"

    def exists(self, ticker: str) -> bool:
        return self.path_for(ticker).exists()

    def built_date(self, ticker: str) -> str | None:
        path = self.path_for(ticker)
        if not path.exists():
            return None
        try:
            raw = read_json(path)
        except (OSError, ValueError) as exc:
            LOG.warning("snapshot_unreadable ticker=%s path=%s err=%s", ticker, path, exc)
            return None
        if not isinstance(raw, dict):
            return None
        value = raw.get("builtDateUTC")
        return value if isinstance(value, str) else None

    def is_fresh(self, ticker: str, today: str | None = None) -> bool:
        # Only the embedded build date counts; file mtimes change on clone/checkout.
        return self.built_date(ticker) == (today or today_key_utc())

    def read(self, ticker: str) -> Snapshot:
        path = self.path_for(ticker)
        if not path.exists():
            raise SnapshotNotFound(ticker)
        try:
            raw = read_json(path)
        except ValueError as exc:
            raise ValidationError(f"{path} is not valid JSON: {exc}") from exc
        return Snapshot.from_dict(raw)

    def get(self, ticker: str) -> Snapshot | None:
        try:
            return self.read(ticker)
        except SnapshotNotFound:
            return None

    def write(self, ticker: str, snapshot: Snapshot) -> Path:
        path = self.path_for(ticker)
        write_json_atomic(path, snapshot.to_dict())
        return path


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
