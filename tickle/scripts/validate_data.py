from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from tickle.data.paths import daily_path, read_json
from tickle.data.snapshots import SnapshotStore
from tickle.data.universe import DailyMapping, ValidationError, load_universe
from tickle.scripts.cli_common import add_common_args, setup_logging

LOG = logging.getLogger("tickle.validate")


def validate(data_dir: Path | str) -> dict[str, int]:
    """Raise ValidationError on the first problem; return counts when everything checks out."""
    if not daily_path(data_dir).exists():
        raise ValidationError(f"Missing {daily_path(data_dir)}")
    universe = load_universe(data_dir)
    mapping = DailyMapping.load(data_dir)
    tickers = {s.ticker for s in universe}

    for date, ticker in mapping.items():
        if ticker not in tickers:
            raise ValidationError(f"daily.json has unknown ticker {ticker} on {date}")

    store = SnapshotStore(data_dir)
    mapped = sorted({t for _, t in mapping.items()})
    for ticker in mapped:
        path = store.path_for(ticker)
        if not path.exists():
            raise ValidationError(f"Missing snapshot: {path}")
        snap = store.read(ticker)
        if not isinstance(read_json(path).get("6m"), list):
            raise ValidationError(f"Snapshot {ticker} has no 6m window")
        for key in ("1m", "6m", "1y"):
            if len(snap.window(key)) == 1:
                raise ValidationError(f"Snapshot {ticker} window {key} has a single point")
    return {"stocks": len(universe), "days": len(mapping), "snapshots": len(mapped)}


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Check stocks.json, daily.json and the mapped snapshots.")
    add_common_args(p, "validate_data")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=None)
    try:
        counts = validate(args.data_dir)
    except ValidationError as exc:
        LOG.error("Validation failed: %s", exc)
        return 1
    LOG.info("Validation OK stocks=%s days=%s snapshots=%s", counts["stocks"], counts["days"], counts["snapshots"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
