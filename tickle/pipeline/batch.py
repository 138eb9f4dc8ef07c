from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence, TypeVar

from tickle.data.snapshots import Snapshot, SnapshotStore, utc_now_iso
from tickle.data.universe import Stock, today_key_utc
from tickle.pipeline.fallback import FallbackChain
from tickle.pipeline.windows import build_windows, compute_one_year_return, last_close
from tickle.providers.enrichment import Enricher, market_cap_billions

LOG = logging.getLogger("tickle.batch")

DEFAULT_CONCURRENCY = max(1, int(os.getenv("TICKLE_BATCH_CONCURRENCY", "6")))

T = TypeVar("T")


def _best_effort(label: str, ticker: str, fn: Callable[[], T], default: T) -> T:
    try:
        return fn()
    except Exception as exc:
        LOG.warning("enrichment_failed step=%s ticker=%s err=%s", label, ticker, exc)
        return default


def build_insight(stock: Stock, one_year_return: float, source: str) -> str:
    text = f"Tracking {stock.name} ({stock.ticker})."
    if source != "synthetic" and one_year_return:
        direction = "up" if one_year_return > 0 else "down"
        text += f" Shares are {direction} {abs(one_year_return):.1f}% over the past year."
    return text


class SnapshotBuilder:
    """Resolve closes, derive windows and stats, enrich best-effort, persist."""

    def __init__(
        self,
        chain: FallbackChain,
        store: SnapshotStore,
        enricher: Enricher | None = None,
        today: Callable[[], str] = today_key_utc,
    ) -> None:
        self.chain = chain
        self.store = store
        self.enricher = enricher
        self.today = today

    def build(self, stock: Stock, day: str | None = None) -> Snapshot:
        day = day or self.today()
        resolved = self.chain.resolve_closes(stock.ticker, day)
        closes = resolved.values
        windows = build_windows(closes)
        one_year_return = compute_one_year_return(closes)

        profile = None
        news = []
        if self.enricher is not None:
            enricher = self.enricher
            profile = _best_effort("profile", stock.ticker, lambda: enricher.profile(stock.ticker), None)
            _best_effort("logo", stock.ticker, lambda: enricher.cache_logo(stock, profile), None)
            news = _best_effort("news", stock.ticker, lambda: enricher.news(stock), [])

        return Snapshot(
            one_month=windows.one_month,
            six_month=windows.six_month,
            one_year=windows.one_year,
            last_close=last_close(windows),
            one_year_return=round(one_year_return, 4),
            built_date_utc=day,
            source=resolved.provenance,
            insight=build_insight(stock, one_year_return, resolved.provenance),
            top_news=news,
            built_at=utc_now_iso(),
            symbol_used=resolved.symbol_used,
            market_cap_b=market_cap_billions(profile),
        )

    def build_and_write(self, stock: Stock, day: str | None = None) -> Snapshot:
        snap = self.build(stock, day)
        self.store.write(stock.ticker, snap)
        return snap


@dataclass
class BatchResult:
    total: int
    done: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)
    elapsed_sec: float = 0.0

    @property
    def built(self) -> int:
        return self.done - self.skipped

    @property
    def exit_code(self) -> int:
        return 1 if self.failed > 0 else 0


class _WorkCursor:
    """Shared index into the universe plus the run counters, guarded by one lock."""

    def __init__(self, total: int) -> None:
        self._lock = threading.Lock()
        self._next = 0
        self.result = BatchResult(total=total)

    def claim(self) -> int | None:
        with self._lock:
            if self._next >= self.result.total:
                return None
            i = self._next
            self._next += 1
            return i

    def mark_done(self, skipped: bool) -> BatchResult:
        with self._lock:
            self.result.done += 1
            if skipped:
                self.result.skipped += 1
            return self.result

    def mark_failed(self, ticker: str, err: str) -> None:
        with self._lock:
            self.result.failed += 1
            self.result.failures.append((ticker, err))


def run_batch(
    universe: Sequence[Stock],
    builder: SnapshotBuilder,
    concurrency: int = DEFAULT_CONCURRENCY,
    force: bool = False,
) -> BatchResult:
    """Build snapshots for every stale ticker with a fixed pool of workers.

    Workers pull the next index from a shared cursor, so a slow ticker never
    holds up a fixed partition. A failing ticker is counted and logged; the
    pass always covers the whole universe.
    """
    stocks = list(universe)
    cursor = _WorkCursor(len(stocks))
    today = builder.today()
    started = time.monotonic()

    def worker() -> None:
        while True:
            i = cursor.claim()
            if i is None:
                return
            stock = stocks[i]
            try:
                if not force and builder.store.is_fresh(stock.ticker, today):
                    skipped = True
                else:
                    builder.build_and_write(stock, today)
                    skipped = False
                res = cursor.mark_done(skipped)
                LOG.info(
                    "ticker=%s %s progress=%s/%s skipped=%s failed=%s",
                    stock.ticker,
                    "skipped_fresh" if skipped else "built",
                    res.done + res.failed,
                    res.total,
                    res.skipped,
                    res.failed,
                )
            except Exception as exc:
                cursor.mark_failed(stock.ticker, str(exc))
                LOG.exception("ticker=%s failed: %s", stock.ticker, exc)

    n_workers = max(1, min(int(concurrency), len(stocks) or 1))
    threads = [threading.Thread(target=worker, name=f"tickle-batch-{k}", daemon=True) for k in range(n_workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    result = cursor.result
    result.elapsed_sec = round(time.monotonic() - started, 2)
    LOG.info(
        "batch complete total=%s done=%s skipped=%s failed=%s sec=%.1f",
        result.total,
        result.done,
        result.skipped,
        result.failed,
        result.elapsed_sec,
    )
    return result
