from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np
import pandas as pd
import requests

from tickle.data.schema import CLOSE_COLUMNS
from tickle.data.universe import today_key_utc
from tickle.providers.alpha_vantage import AlphaVantageProvider
from tickle.providers.base import PriceProvider, ProviderError
from tickle.providers.stooq import StooqProvider
from tickle.providers.yahoo import YahooProvider

LOG = logging.getLogger("tickle.pipeline")

DEFAULT_PROVIDERS = os.getenv("TICKLE_PROVIDERS", "stooq,yahoo,alpha_vantage")
SYNTHETIC_SOURCE = "synthetic"
SYNTHETIC_POINTS = 300


@dataclass(frozen=True)
class SyntheticConfig:
    points: int = SYNTHETIC_POINTS
    start_low: float = 20.0
    start_high: float = 400.0
    drift: float = 0.0004
    volatility: float = 0.017


def synthetic_seed(ticker: str, date_key: str) -> int:
    # sha256 is stable across processes and platforms, unlike hash().
    digest = hashlib.sha256(f"{ticker}|{date_key}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def synthetic_closes(ticker: str, date_key: str, cfg: SyntheticConfig | None = None) -> pd.DataFrame:
    """Seeded random walk ending on *date_key*; identical inputs give identical output."""
    cfg = cfg or SyntheticConfig()
    rng = np.random.default_rng(synthetic_seed(ticker, date_key))
    start = rng.uniform(cfg.start_low, cfg.start_high)
    steps = rng.normal(cfg.drift, cfg.volatility, cfg.points - 1)
    path = start * np.cumprod(np.concatenate(([1.0], 1.0 + steps)))
    path = np.maximum(np.round(path, 2), 0.01)
    dates = pd.bdate_range(end=pd.Timestamp(date_key), periods=cfg.points)
    df = pd.DataFrame({"date": dates.strftime("%Y-%m-%d"), "close": path.astype(float)})[CLOSE_COLUMNS]
    df.attrs["symbol"] = ticker
    return df


@dataclass(frozen=True)
class ResolvedSeries:
    closes: pd.DataFrame
    provenance: str
    symbol_used: str | None = None
    failures: tuple[str, ...] = field(default_factory=tuple)

    @property
    def values(self) -> list[float]:
        return [float(v) for v in self.closes["close"].tolist()]


class FallbackChain:
    """Ordered providers, then a deterministic synthetic series as the terminal step."""

    def __init__(
        self,
        providers: Sequence[PriceProvider],
        synthetic: Callable[[str, str], pd.DataFrame] = synthetic_closes,
        today: Callable[[], str] = today_key_utc,
    ) -> None:
        self.providers = list(providers)
        self.synthetic = synthetic
        self.today = today

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.providers]

    def resolve_closes(self, ticker: str, date_key: str | None = None) -> ResolvedSeries:
        if not self.providers:
            raise ValueError("FallbackChain needs at least one provider")
        failures: list[str] = []
        for provider in self.providers:
            try:
                df = provider.fetch_closes(ticker)
            except ProviderError as exc:
                failures.append(f"{provider.name}:{exc.reason.value}")
                LOG.warning(
                    "provider_failed ticker=%s provider=%s reason=%s detail=%s",
                    ticker,
                    provider.name,
                    exc.reason.value,
                    exc.message,
                )
                continue
            LOG.info("provider_ok ticker=%s provider=%s rows=%s", ticker, provider.name, len(df))
            return ResolvedSeries(
                closes=df,
                provenance=provider.name,
                symbol_used=df.attrs.get("symbol"),
                failures=tuple(failures),
            )

        day = date_key or self.today()
        LOG.warning(
            "all_providers_failed ticker=%s failures=%s using=%s date=%s",
            ticker,
            ",".join(failures),
            SYNTHETIC_SOURCE,
            day,
        )
        df = self.synthetic(ticker, day)
        return ResolvedSeries(
            closes=df,
            provenance=SYNTHETIC_SOURCE,
            symbol_used=df.attrs.get("symbol"),
            failures=tuple(failures),
        )


def parse_provider_names(raw: str) -> list[str]:
    return [x.strip().lower() for x in raw.split(",") if x.strip()]


def build_providers(names: Sequence[str], session: requests.Session | None = None) -> list[PriceProvider]:
    session = session or requests.Session()
    out: list[PriceProvider] = []
    for name in names:
        if name == "stooq":
            out.append(StooqProvider(session=session))
        elif name == "yahoo":
            out.append(YahooProvider())
        elif name == "alpha_vantage":
            av = AlphaVantageProvider(session=session)
            if not av.enabled:
                LOG.info("provider_skipped provider=alpha_vantage reason=ALPHAVANTAGE_KEY not configured")
                continue
            out.append(av)
        else:
            raise ValueError(f"Unknown provider: {name}")
    return out


def build_default_chain(raw_names: str = DEFAULT_PROVIDERS) -> FallbackChain:
    return FallbackChain(build_providers(parse_provider_names(raw_names)))
