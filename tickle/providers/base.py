"""
Provider port and shared HTTP plumbing.

Every adapter returns a ``date``/``close`` frame (oldest first) or raises
``ProviderError``. Callers never see a ``requests`` exception.
"""

from __future__ import annotations

import enum
import logging
import os
from abc import ABC, abstractmethod

import pandas as pd
import requests

LOG = logging.getLogger("tickle.providers")

HTTP_TIMEOUT_SEC = float(os.getenv("TICKLE_HTTP_TIMEOUT_SEC", "20"))
USER_AGENT = "tickle-bot/1.0"


class ProviderErrorReason(str, enum.Enum):
    RATE_LIMITED = "RATE_LIMITED"
    NO_DATA = "NO_DATA"
    TRANSPORT = "TRANSPORT"


class ProviderError(Exception):
    def __init__(self, reason: ProviderErrorReason, message: str = "") -> None:
        super().__init__(f"{reason.value}: {message}" if message else reason.value)
        self.reason = reason
        self.message = message


class PriceProvider(ABC):
    name: str = "provider"
    min_rows: int = 2

    @abstractmethod
    def fetch_closes(self, ticker: str) -> pd.DataFrame:
        """Return ``date``/``close`` rows for *ticker*, oldest first."""

    def symbol_candidates(self, ticker: str) -> list[str]:
        return [ticker]

    def _check_rows(self, ticker: str, df: pd.DataFrame) -> pd.DataFrame:
        if df.empty or len(df) < self.min_rows:
            raise ProviderError(
                ProviderErrorReason.NO_DATA,
                f"{self.name}: {len(df)} usable rows for {ticker} (need {self.min_rows})",
            )
        return df


def http_get(
    session: requests.Session,
    url: str,
    *,
    params: dict | None = None,
    timeout: float = HTTP_TIMEOUT_SEC,
    provider: str = "http",
) -> requests.Response:
    """GET *url*, mapping transport failures and non-2xx codes onto ProviderError."""
    try:
        resp = session.get(url, params=params, timeout=timeout, headers={"User-Agent": USER_AGENT})
    except requests.RequestException as exc:
        raise ProviderError(ProviderErrorReason.TRANSPORT, f"{provider}: {exc}") from exc
    if resp.status_code == 429:
        raise ProviderError(ProviderErrorReason.RATE_LIMITED, f"{provider}: HTTP 429")
    if not 200 <= resp.status_code < 300:
        raise ProviderError(ProviderErrorReason.TRANSPORT, f"{provider}: HTTP {resp.status_code}")
    return resp
