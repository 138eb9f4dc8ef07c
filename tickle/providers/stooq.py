from __future__ import annotations

from io import StringIO

import pandas as pd
import requests

from tickle.data.schema import ensure_close_schema
from tickle.providers.base import (
    LOG,
    HTTP_TIMEOUT_SEC,
    PriceProvider,
    ProviderError,
    ProviderErrorReason,
    http_get,
)

STOOQ_URL = "https://stooq.com/q/d/l/"
CSV_HEADER = "Date,Open,High,Low,Close"


class StooqProvider(PriceProvider):
    """Daily CSV download from stooq.com (no key required)."""

    name = "stooq"
    min_rows = 50

    def __init__(self, session: requests.Session | None = None, timeout: float = HTTP_TIMEOUT_SEC) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def symbol_candidates(self, ticker: str) -> list[str]:
        t = ticker.lower()
        return [f"{t}.us", t]

    def fetch_closes(self, ticker: str) -> pd.DataFrame:
        errors: list[ProviderError] = []
        for sym in self.symbol_candidates(ticker):
            try:
                resp = http_get(
                    self.session,
                    STOOQ_URL,
                    params={"s": sym, "i": "d"},
                    timeout=self.timeout,
                    provider=self.name,
                )
            except ProviderError as exc:
                LOG.debug("stooq_symbol_failed ticker=%s symbol=%s err=%s", ticker, sym, exc)
                errors.append(exc)
                continue
            text = resp.text or ""
            if "exceeded the daily hits limit" in text.lower():
                raise ProviderError(ProviderErrorReason.RATE_LIMITED, "stooq: daily hits limit exceeded")
            if CSV_HEADER not in text:
                errors.append(ProviderError(ProviderErrorReason.NO_DATA, f"stooq: no CSV for {sym}"))
                continue
            try:
                raw = pd.read_csv(StringIO(text))
            except (ValueError, pd.errors.ParserError) as exc:
                errors.append(ProviderError(ProviderErrorReason.NO_DATA, f"stooq: unparseable CSV for {sym}: {exc}"))
                continue
            df = self._check_rows(ticker, ensure_close_schema(raw))
            df.attrs["symbol"] = sym
            return df

        if errors and all(e.reason == ProviderErrorReason.TRANSPORT for e in errors):
            raise errors[-1]
        if any(e.reason == ProviderErrorReason.RATE_LIMITED for e in errors):
            raise ProviderError(ProviderErrorReason.RATE_LIMITED, f"stooq: throttled for {ticker}")
        raise ProviderError(ProviderErrorReason.NO_DATA, f"stooq: no CSV for {ticker}")
