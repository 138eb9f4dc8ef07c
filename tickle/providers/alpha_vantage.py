from __future__ import annotations

import os

import pandas as pd
import requests

from tickle.data.schema import closes_from_pairs
from tickle.providers.base import (
    LOG,
    HTTP_TIMEOUT_SEC,
    PriceProvider,
    ProviderError,
    ProviderErrorReason,
    http_get,
)

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
THROTTLE_KEYS = ("Note", "Information")


def alpha_vantage_key() -> str:
    return str(os.getenv("ALPHAVANTAGE_KEY", "") or "").strip()


class AlphaVantageProvider(PriceProvider):
    """TIME_SERIES_DAILY_ADJUSTED (full history) from Alpha Vantage."""

    name = "alpha_vantage"
    min_rows = 20

    def __init__(
        self,
        api_key: str | None = None,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT_SEC,
    ) -> None:
        self.api_key = alpha_vantage_key() if api_key is None else api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def symbol_candidates(self, ticker: str) -> list[str]:
        return [ticker, f"{ticker}.US"]

    def _query(self, symbol: str) -> dict:
        resp = http_get(
            self.session,
            ALPHA_VANTAGE_URL,
            params={
                "function": "TIME_SERIES_DAILY_ADJUSTED",
                "symbol": symbol,
                "outputsize": "full",
                "apikey": self.api_key,
            },
            timeout=self.timeout,
            provider=self.name,
        )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError(ProviderErrorReason.NO_DATA, f"alpha_vantage: invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ProviderError(ProviderErrorReason.NO_DATA, "alpha_vantage: unexpected payload")
        for key in THROTTLE_KEYS:
            if payload.get(key):
                raise ProviderError(ProviderErrorReason.RATE_LIMITED, f"alpha_vantage: {payload[key]}")
        return payload

    def fetch_closes(self, ticker: str) -> pd.DataFrame:
        if not self.enabled:
            raise ProviderError(ProviderErrorReason.NO_DATA, "alpha_vantage: ALPHAVANTAGE_KEY not configured")
        errors: list[ProviderError] = []
        for sym in self.symbol_candidates(ticker):
            try:
                payload = self._query(sym)
            except ProviderError as exc:
                # A throttled key is throttled for every symbol.
                if exc.reason == ProviderErrorReason.RATE_LIMITED:
                    raise
                LOG.debug("alpha_vantage_symbol_failed ticker=%s symbol=%s err=%s", ticker, sym, exc)
                errors.append(exc)
                continue
            if payload.get("Error Message"):
                continue
            series = payload.get("Time Series (Daily)")
            if not isinstance(series, dict) or not series:
                continue
            pairs = []
            for date, row in series.items():
                if isinstance(row, dict):
                    pairs.append((date, row.get("4. close")))
            df = self._check_rows(ticker, closes_from_pairs(pairs))
            df.attrs["symbol"] = sym
            return df
        if errors and len(errors) == len(self.symbol_candidates(ticker)) and all(
            e.reason == ProviderErrorReason.TRANSPORT for e in errors
        ):
            raise errors[-1]
        raise ProviderError(ProviderErrorReason.NO_DATA, f"alpha_vantage: no daily series for {ticker}")
