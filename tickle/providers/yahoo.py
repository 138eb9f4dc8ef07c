from __future__ import annotations

import random
import time

import pandas as pd
import yfinance as yf

from tickle.data.schema import ensure_close_schema
from tickle.providers.base import LOG, HTTP_TIMEOUT_SEC, PriceProvider, ProviderError, ProviderErrorReason


def _is_rate_limit(exc: Exception) -> bool:
    text = str(exc).lower()
    return type(exc).__name__ == "YFRateLimitError" or "too many requests" in text or "rate limit" in text


class YahooProvider(PriceProvider):
    """Yahoo Finance daily history via ``yfinance.download``."""

    name = "yahoo"
    min_rows = 50

    def __init__(
        self,
        period: str = "2y",
        timeout: float = HTTP_TIMEOUT_SEC,
        retry_attempts: int = 2,
    ) -> None:
        self.period = period
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)

    def _download(self, symbol: str) -> pd.DataFrame:
        last_err: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return yf.download(
                    tickers=symbol,
                    period=self.period,
                    interval="1d",
                    auto_adjust=False,
                    progress=False,
                    actions=False,
                    group_by="column",
                    threads=False,
                    timeout=self.timeout,
                )
            except Exception as exc:
                if _is_rate_limit(exc):
                    raise ProviderError(ProviderErrorReason.RATE_LIMITED, f"yahoo: {exc}") from exc
                last_err = exc
                if attempt >= self.retry_attempts:
                    break
                sleep_s = (1.8 ** (attempt - 1)) + random.uniform(0.0, 0.4)
                LOG.warning(
                    "yahoo_retry symbol=%s attempt=%s/%s err=%s sleep=%.2fs",
                    symbol,
                    attempt,
                    self.retry_attempts,
                    exc,
                    sleep_s,
                )
                time.sleep(sleep_s)
        raise ProviderError(ProviderErrorReason.TRANSPORT, f"yahoo: {last_err}") from last_err

    def fetch_closes(self, ticker: str) -> pd.DataFrame:
        last_no_data: ProviderError | None = None
        for sym in self.symbol_candidates(ticker):
            raw = self._download(sym)
            df = ensure_close_schema(raw)
            try:
                df = self._check_rows(ticker, df)
            except ProviderError as exc:
                last_no_data = exc
                continue
            df.attrs["symbol"] = sym
            return df
        raise last_no_data or ProviderError(ProviderErrorReason.NO_DATA, f"yahoo: no rows for {ticker}")
