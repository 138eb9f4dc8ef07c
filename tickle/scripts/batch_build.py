from __future__ import annotations

import argparse
import logging
import sys

import requests

from tickle.data.snapshots import SnapshotStore
from tickle.data.universe import ValidationError, load_universe
from tickle.pipeline.batch import DEFAULT_CONCURRENCY, SnapshotBuilder, run_batch
from tickle.pipeline.fallback import DEFAULT_PROVIDERS, FallbackChain, build_providers, parse_provider_names
from tickle.providers.enrichment import Enricher
from tickle.scripts.cli_common import add_common_args, setup_logging

LOG = logging.getLogger("tickle.batch")


def parse_tickers(raw: str) -> list[str]:
    return [x.strip().upper() for x in raw.split(",") if x.strip()]


def run(args: argparse.Namespace) -> int:
    try:
        universe = load_universe(args.data_dir)
    except ValidationError as exc:
        LOG.error("invalid universe: %s", exc)
        return 1

    if args.tickers:
        wanted = set(parse_tickers(args.tickers))
        universe = [s for s in universe if s.ticker in wanted]
        missing = wanted - {s.ticker for s in universe}
        if missing:
            LOG.warning("tickers not in universe: %s", ",".join(sorted(missing)))

    session = requests.Session()
    chain = FallbackChain(build_providers(parse_provider_names(args.providers), session=session))
    if not chain.providers:
        LOG.error("no usable providers configured (providers=%s)", args.providers)
        return 1
    enricher = None if args.no_enrich else Enricher(session=session, assets_dir=args.assets_dir)
    builder = SnapshotBuilder(chain, SnapshotStore(args.data_dir), enricher=enricher)

    LOG.info(
        "batch started tickers=%s concurrency=%s providers=%s force=%s",
        len(universe),
        args.concurrency,
        ",".join(chain.names) or "-",
        args.force,
    )
    result = run_batch(universe, builder, concurrency=args.concurrency, force=args.force)
    for ticker, err in result.failures:
        LOG.error("failed ticker=%s err=%s", ticker, err)
    return result.exit_code


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Build per-ticker price snapshots for the whole universe.")
    add_common_args(p, "batch_build")
    p.add_argument("--tickers", default="", help="Comma-separated subset of the universe.")
    p.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY)
    p.add_argument("--providers", default=DEFAULT_PROVIDERS, help="Ordered provider chain.")
    p.add_argument("--force", action="store_true", help="Rebuild snapshots that are already fresh.")
    p.add_argument("--no-enrich", action="store_true", help="Skip profile/logo/news lookups.")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
