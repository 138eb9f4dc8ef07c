from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Sequence

from tickle.data.snapshots import Snapshot
from tickle.data.universe import DailyMapping, Stock, ValidationError, find_stock
from tickle.pipeline.batch import SnapshotBuilder

LOG = logging.getLogger("tickle.daily")

MS_PER_DAY = 86_400_000
EPOCH = dt.date(1970, 1, 1)


def rotation_index(date_key: str, universe_size: int) -> int:
    """``floor(epoch_ms / 86_400_000) mod universe_size`` evaluated at UTC midnight of *date_key*."""
    if universe_size <= 0:
        raise ValidationError("universe is empty")
    day = dt.date.fromisoformat(date_key)
    epoch_ms = (day - EPOCH).days * MS_PER_DAY
    return (epoch_ms // MS_PER_DAY) % universe_size


def select_ticker(universe: Sequence[Stock], mapping: DailyMapping, date_key: str) -> str:
    existing = mapping.get(date_key)
    if existing is not None:
        return existing
    ticker = universe[rotation_index(date_key, len(universe))].ticker
    mapping.record(date_key, ticker)
    LOG.info("daily_selected date=%s ticker=%s universe_size=%s", date_key, ticker, len(universe))
    return ticker


@dataclass
class DailyUpdateResult:
    date: str
    ticker: str
    newly_selected: bool
    snapshot: Snapshot | None
    rebuilt: bool
    error: str | None = None


def update_daily(
    universe: Sequence[Stock],
    mapping: DailyMapping,
    builder: SnapshotBuilder,
    date_key: str | None = None,
    force: bool = False,
) -> DailyUpdateResult:
    """Pin today's answer in the mapping, then refresh its snapshot if stale.

    The mapping is saved before the snapshot build so a failed build never
    changes the answer on the next run.
    """
    day = date_key or builder.today()
    newly_selected = day not in mapping
    ticker = select_ticker(universe, mapping, day)
    if newly_selected and mapping.path is not None:
        mapping.save()

    stock = find_stock(list(universe), ticker)
    if stock is None:
        raise ValidationError(f"daily.json has unknown ticker {ticker} on {day}")

    if not force and builder.store.is_fresh(ticker, day):
        LOG.info("daily_snapshot_fresh date=%s ticker=%s", day, ticker)
        return DailyUpdateResult(day, ticker, newly_selected, builder.store.get(ticker), rebuilt=False)

    try:
        snap = builder.build_and_write(stock, day)
    except Exception as exc:
        LOG.exception("daily_snapshot_failed date=%s ticker=%s: %s", day, ticker, exc)
        return DailyUpdateResult(day, ticker, newly_selected, None, rebuilt=False, error=str(exc))
    LOG.info("daily_updated date=%s ticker=%s source=%s", day, ticker, snap.source)
    return DailyUpdateResult(day, ticker, newly_selected, snap, rebuilt=True)
