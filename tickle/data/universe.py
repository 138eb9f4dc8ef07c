from __future__ import annotations

import datetime as dt
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from tickle.data.paths import DATA_DIR, daily_path, read_json, stocks_path, write_json_atomic

TICKER_RE = re.compile(r"^[A-Z]+$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ValidationError(ValueError):
    """Malformed universe, daily mapping or snapshot record."""


@dataclass(frozen=True)
class Stock:
    ticker: str
    name: str
    sector: str
    industry: str
    dividend: bool = False
    domain: str = ""
    tier: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> "Stock":
        if not isinstance(raw, dict):
            raise ValidationError(f"stock entry must be an object, got {type(raw).__name__}")
        ticker = str(raw.get("ticker") or "").strip()
        if not TICKER_RE.match(ticker):
            raise ValidationError(f"invalid ticker {raw.get('ticker')!r}")
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError(f"stock {ticker} has no name")
        return cls(
            ticker=ticker,
            name=name,
            sector=str(raw.get("sector") or "").strip(),
            industry=str(raw.get("industry") or "").strip(),
            dividend=bool(raw.get("dividend", False)),
            domain=str(raw.get("domain") or "").strip(),
            tier=str(raw.get("tier") or "").strip(),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_universe(raw: Any) -> list[Stock]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("stocks.json must be a non-empty list")
    stocks = [Stock.from_dict(item) for item in raw]
    seen: set[str] = set()
    for s in stocks:
        if s.ticker in seen:
            raise ValidationError(f"duplicate ticker {s.ticker} in universe")
        seen.add(s.ticker)
    return stocks


def load_universe(data_dir: Path | str = DATA_DIR) -> list[Stock]:
    path = stocks_path(data_dir)
    if not path.exists():
        raise ValidationError(f"Missing {path}")
    try:
        raw = read_json(path)
    except ValueError as exc:
        raise ValidationError(f"{path} is not valid JSON: {exc}") from exc
    return parse_universe(raw)


def write_universe(stocks: list[Stock], data_dir: Path | str = DATA_DIR) -> Path:
    path = stocks_path(data_dir)
    write_json_atomic(path, [s.to_dict() for s in stocks])
    return path


def find_stock(universe: list[Stock], ticker: str) -> Stock | None:
    for s in universe:
        if s.ticker == ticker:
            return s
    return None


def date_key(value: dt.date) -> str:
    return value.strftime("%Y-%m-%d")


def today_key_utc() -> str:
    return date_key(dt.datetime.now(dt.timezone.utc).date())


class DailyMapping:
    """Append-only ``YYYY-MM-DD -> ticker`` mapping persisted as ``daily.json``."""

    def __init__(self, entries: dict[str, str] | None = None, path: Path | None = None) -> None:
        self._entries: dict[str, str] = dict(entries or {})
        self.path = path

    @classmethod
    def load(cls, data_dir: Path | str = DATA_DIR) -> "DailyMapping":
        path = daily_path(data_dir)
        if not path.exists():
            return cls({}, path=path)
        try:
            raw = read_json(path)
        except ValueError as exc:
            raise ValidationError(f"{path} is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise ValidationError(f"{path} must be an object of date -> ticker")
        for key, value in raw.items():
            if not DATE_RE.match(str(key)):
                raise ValidationError(f"daily.json has malformed date key {key!r}")
            if not isinstance(value, str) or not TICKER_RE.match(value):
                raise ValidationError(f"daily.json has malformed ticker {value!r} on {key}")
        return cls(raw, path=path)

    def get(self, date: str) -> str | None:
        return self._entries.get(date)

    def __contains__(self, date: object) -> bool:
        return date in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def items(self):
        return self._entries.items()

    def record(self, date: str, ticker: str) -> None:
        existing = self._entries.get(date)
        if existing is not None and existing != ticker:
            raise ValueError(f"daily mapping for {date} is already {existing}; refusing to overwrite with {ticker}")
        self._entries[date] = ticker

    def to_dict(self) -> dict[str, str]:
        return dict(sorted(self._entries.items()))

    def save(self, path: Path | None = None) -> Path:
        target = path or self.path
        if target is None:
            raise ValueError("DailyMapping has no path to save to")
        write_json_atomic(target, self.to_dict())
        return target
