"""
Best-effort extras for a snapshot: Finnhub company profile, cached logo and
recent headlines. Every function here degrades to ``None`` / ``[]`` / no-op
and logs a warning instead of raising.
"""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import Any

import requests

from tickle.data.paths import ASSETS_DIR, logos_dir, write_bytes_atomic
from tickle.data.snapshots import MAX_NEWS_ITEMS, NewsItem
from tickle.data.universe import Stock
from tickle.providers.base import HTTP_TIMEOUT_SEC, ProviderError, http_get

LOG = logging.getLogger("tickle.enrichment")

FINNHUB_PROFILE_URL = "https://finnhub.io/api/v1/stock/profile2"
NEWSAPI_URL = "https://newsapi.org/v2/everything"
FAVICON_URL = "https://www.google.com/s2/favicons"


def finnhub_key() -> str:
    return str(os.getenv("FINNHUB_KEY", "") or "").strip()


def newsapi_key() -> str:
    return str(os.getenv("NEWSAPI_KEY", "") or "").strip()


class Enricher:
    def __init__(
        self,
        session: requests.Session | None = None,
        assets_dir: Path | str = ASSETS_DIR,
        finnhub_api_key: str | None = None,
        news_api_key: str | None = None,
        timeout: float = HTTP_TIMEOUT_SEC,
    ) -> None:
        self.session = session or requests.Session()
        self.logo_dir = logos_dir(assets_dir)
        self.finnhub_api_key = finnhub_key() if finnhub_api_key is None else finnhub_api_key
        self.news_api_key = newsapi_key() if news_api_key is None else news_api_key
        self.timeout = timeout

    def profile(self, ticker: str) -> dict[str, Any] | None:
        if not self.finnhub_api_key:
            return None
        try:
            resp = http_get(
                self.session,
                FINNHUB_PROFILE_URL,
                params={"symbol": ticker, "token": self.finnhub_api_key},
                timeout=self.timeout,
                provider="finnhub",
            )
            payload = resp.json()
        except (ProviderError, ValueError) as exc:
            LOG.warning("profile_failed ticker=%s err=%s", ticker, exc)
            return None
        if isinstance(payload, dict) and payload:
            return payload
        return None

    def cache_logo(self, stock: Stock, profile: dict[str, Any] | None) -> Path | None:
        out_path = self.logo_dir / f"{stock.ticker}.png"
        if out_path.exists():
            return out_path

        sources: list[tuple[str, dict | None]] = []
        logo_url = (profile or {}).get("logo")
        if logo_url:
            sources.append((str(logo_url), None))
        if stock.domain:
            sources.append((FAVICON_URL, {"domain": stock.domain, "sz": "128"}))

        for url, params in sources:
            try:
                resp = http_get(self.session, url, params=params, timeout=self.timeout, provider="logo")
            except ProviderError as exc:
                LOG.warning("logo_fetch_failed ticker=%s url=%s err=%s", stock.ticker, url, exc)
                continue
            if not resp.content:
                continue
            try:
                write_bytes_atomic(out_path, resp.content)
            except OSError as exc:
                LOG.warning("logo_write_failed ticker=%s path=%s err=%s", stock.ticker, out_path, exc)
                return None
            return out_path
        return None

    def news(self, stock: Stock) -> list[NewsItem]:
        if not self.news_api_key:
            return []
        try:
            resp = http_get(
                self.session,
                NEWSAPI_URL,
                params={
                    "q": stock.name or stock.ticker,
                    "pageSize": str(MAX_NEWS_ITEMS),
                    "sortBy": "publishedAt",
                    "apiKey": self.news_api_key,
                },
                timeout=self.timeout,
                provider="newsapi",
            )
            payload = resp.json()
        except (ProviderError, ValueError) as exc:
            LOG.warning("news_failed ticker=%s err=%s", stock.ticker, exc)
            return []
        articles = payload.get("articles") if isinstance(payload, dict) else None
        out: list[NewsItem] = []
        for a in (articles or [])[:MAX_NEWS_ITEMS]:
            if not isinstance(a, dict):
                continue
            source = a.get("source") if isinstance(a.get("source"), dict) else {}
            out.append(
                NewsItem(
                    headline=str(a.get("title") or ""),
                    source=str(source.get("name") or ""),
                    when=str(a.get("publishedAt") or "")[:10],
                    url=str(a.get("url") or ""),
                )
            )
        return out


def market_cap_billions(profile: dict[str, Any] | None) -> float | None:
    # Finnhub reports marketCapitalization in millions.
    raw = (profile or {}).get("marketCapitalization")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw) or raw <= 0:
        return None
    return round(float(raw) / 1000.0, 1)
