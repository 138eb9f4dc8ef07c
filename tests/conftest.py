"""Shared test fixtures. Nothing here touches the network."""

from __future__ import annotations

import pandas as pd
import pytest

from tickle.data.snapshots import Snapshot, SnapshotStore
from tickle.data.universe import Stock, write_universe
from tickle.providers.base import PriceProvider, ProviderError


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", payload=None, content: bytes = b"") -> None:
        self.status_code = status_code
        self.text = text
        self._payload = payload
        self.content = content or text.encode("utf-8")

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; *handler(url, params)* returns a response or an exception."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append((url, dict(params or {})))
        result = self.handler(url, dict(params or {}))
        if isinstance(result, Exception):
            raise result
        return result


class FakeProvider(PriceProvider):
    def __init__(self, name: str, closes: list[float] | None = None, error: Exception | None = None) -> None:
        self.name = name
        self.closes = closes or []
        self.error = error
        self.calls: list[str] = []

    def fetch_closes(self, ticker: str) -> pd.DataFrame:
        self.calls.append(ticker)
        if self.error is not None:
            raise self.error
        dates = pd.bdate_range(end="2024-01-02", periods=len(self.closes)).strftime("%Y-%m-%d")
        df = pd.DataFrame({"date": list(dates), "close": self.closes})
        df.attrs["symbol"] = ticker.lower()
        return df


def make_stock(ticker: str, **overrides) -> Stock:
    fields = {
        "ticker": ticker,
        "name": f"{ticker} Corp",
        "sector": "Information Technology",
        "industry": "Application Software",
        "dividend": False,
    }
    fields.update(overrides)
    return Stock(**fields)


def make_snapshot(last_close: float = 100.0, built: str = "2024-01-02", **overrides) -> Snapshot:
    fields = {
        "one_month": [last_close * 0.95, last_close],
        "six_month": [last_close * 0.9, last_close * 0.95, last_close],
        "one_year": [last_close * 0.8, last_close * 0.9, last_close * 0.95, last_close],
        "last_close": last_close,
        "one_year_return": 25.0,
        "built_date_utc": built,
        "source": "stooq",
        "insight": "Tracking test stock.",
    }
    fields.update(overrides)
    return Snapshot(**fields)


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def stock():
    return make_stock


@pytest.fixture
def snapshot():
    return make_snapshot


@pytest.fixture
def universe() -> list[Stock]:
    return [
        make_stock("AAPL", name="Apple Inc.", sector="Information Technology", industry="Technology Hardware", dividend=True),
        make_stock("MSFT", name="Microsoft", sector="Information Technology", industry="Systems Software", dividend=True),
        make_stock("NVDA", name="Nvidia", sector="Information Technology", industry="Semiconductors", dividend=True),
        make_stock("PYPL", name="PayPal", sector="Financials", industry="Transaction & Payment Processing Services"),
        make_stock("TSLA", name="Tesla, Inc.", sector="Consumer Discretionary", industry="Automobile Manufacturers"),
        make_stock("AMZN", name="Amazon", sector="Consumer Discretionary", industry="Broadline Retail"),
        make_stock("META", name="Meta Platforms", sector="Communication Services", industry="Interactive Media & Services", dividend=True),
        make_stock("ORCL", name="Oracle", sector="Information Technology", industry="Application Software", dividend=True),
        make_stock("IBM", name="IBM", sector="Information Technology", industry="IT Consulting & Other Services", dividend=True),
        make_stock("GOOGL", name="Alphabet", sector="Communication Services", industry="Interactive Media & Services"),
    ]


@pytest.fixture
def data_dir(tmp_path, universe):
    root = tmp_path / "data"
    write_universe(universe, root)
    return root


@pytest.fixture
def store(data_dir) -> SnapshotStore:
    return SnapshotStore(data_dir)


@pytest.fixture
def provider_error():
    return ProviderError
