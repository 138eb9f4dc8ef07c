from __future__ import annotations

import argparse
import datetime as dt
import logging
import sys

import requests

from tickle.data.snapshots import SnapshotStore
from tickle.data.universe import DailyMapping, ValidationError, load_universe
from tickle.pipeline.batch import SnapshotBuilder
from tickle.pipeline.daily import update_daily
from tickle.pipeline.fallback import DEFAULT_PROVIDERS, FallbackChain, build_providers, parse_provider_names
from tickle.providers.enrichment import Enricher
from tickle.scripts.cli_common import add_common_args, setup_logging

LOG = logging.getLogger("tickle.daily")


def date_arg(value: str) -> str:
    try:
        return dt.date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def run(args: argparse.Namespace) -> int:
    try:
        universe = load_universe(args.data_dir)
        mapping = DailyMapping.load(args.data_dir)
    except ValidationError as exc:
        LOG.error("invalid data files: %s", exc)
        return 1

    session = requests.Session()
    chain = FallbackChain(build_providers(parse_provider_names(args.providers), session=session))
    if not chain.providers:
        LOG.error("no usable providers configured (providers=%s)", args.providers)
        return 1
    builder = SnapshotBuilder(
        chain,
        SnapshotStore(args.data_dir),
        enricher=Enricher(session=session, assets_dir=args.assets_dir),
    )
    try:
        result = update_daily(universe, mapping, builder, date_key=args.date, force=args.force)
    except ValidationError as exc:
        LOG.error("daily update aborted: %s", exc)
        return 1

    if result.error:
        # The mapping is pinned; the snapshot is retried on the next run.
        LOG.warning("daily update incomplete date=%s ticker=%s err=%s", result.date, result.ticker, result.error)
    else:
        LOG.info(
            "daily update date=%s ticker=%s new=%s rebuilt=%s",
            result.date,
            result.ticker,
            result.newly_selected,
            result.rebuilt,
        )
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Pin today's answer ticker and refresh its snapshot.")
    add_common_args(p, "update_daily")
    p.add_argument("--date", type=date_arg, default=None, help="UTC date YYYY-MM-DD (default: today).")
    p.add_argument("--providers", default=DEFAULT_PROVIDERS, help="Ordered provider chain.")
    p.add_argument("--force", action="store_true", help="Rebuild the snapshot even if fresh.")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
