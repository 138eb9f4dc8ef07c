from __future__ import annotations

import argparse
import logging
import random
import re
import sys
import time
from dataclasses import replace
from io import StringIO

import finviz
import pandas as pd
import requests

from tickle.data.universe import Stock, write_universe
from tickle.scripts.cli_common import add_common_args, setup_logging

LOG = logging.getLogger("tickle.universe")

SP500_URL = "https://en.wikipedia.org/wiki/List_of_S%26P_500_companies"

PINNED = [
    "MSFT", "AAPL", "AMZN", "GOOGL", "META", "NVDA", "TSLA",
    "AVGO", "AMD", "INTC", "QCOM", "TXN", "MU", "ADI", "LRCX", "AMAT", "KLAC",
    "CRM", "NOW", "ORCL", "PLTR", "SNOW", "DDOG", "NET", "CRWD", "PANW", "ZS",
    "ANET", "DELL", "SMCI", "IBM", "INTU", "ADBE", "CSCO", "UBER",
]
TECH_KEYWORDS = [
    "semiconductor", "chip", "electronics",
    "software", "application software", "systems software",
    "cloud", "data", "analytics", "ai", "artificial",
    "cyber", "security", "network", "infrastructure",
]
TARGET_SIZE = 400
TARGET_A = 140
TARGET_B = 220


def normalize_ticker(raw: object) -> str:
    t = str(raw or "").strip().upper()
    return t if re.fullmatch(r"[A-Z]+", t) else ""


def classify_tier(stock: Stock, pinned: set[str]) -> str:
    if stock.ticker in pinned:
        return "A"
    sector = stock.sector.lower()
    industry = stock.industry.lower()
    name = stock.name.lower()
    tech_like = "technology" in sector
    has_keyword = any(k in industry or k in name for k in TECH_KEYWORDS)
    return "B" if tech_like or has_keyword else "C"


def score_for_inclusion(stock: Stock) -> int:
    sector = stock.sector.lower()
    industry = stock.industry.lower()
    s = 0
    if "technology" in sector:
        s += 40
    if "semiconductor" in industry:
        s += 50
    if "software" in industry:
        s += 35
    if "it services" in industry:
        s += 25
    if "internet" in industry:
        s += 20
    if "data" in industry:
        s += 20
    if "cyber" in industry or "security" in industry:
        s += 30
    if "cloud" in industry:
        s += 25
    if "communication" in sector:
        s += 12
    if "consumer" in sector:
        s += 10
    if "financial" in sector:
        s += 8
    return s


def stocks_from_table(table: pd.DataFrame) -> list[Stock]:
    cols = {str(c).strip().lower(): c for c in table.columns}

    def find(fragment: str):
        for low, orig in cols.items():
            if fragment in low:
                return orig
        raise ValueError(f"Unexpected table columns (missing {fragment!r}); Wikipedia layout changed?")

    c_symbol, c_name = find("symbol"), find("security")
    c_sector, c_industry = find("gics sector"), find("gics sub-industry")

    by_ticker: dict[str, Stock] = {}
    for values in table.to_dict(orient="records"):
        ticker = normalize_ticker(values.get(c_symbol))
        name = str(values.get(c_name) or "").strip()
        sector = str(values.get(c_sector) or "").strip()
        industry = str(values.get(c_industry) or "").strip()
        if not ticker or not name or not sector or not industry:
            continue
        by_ticker[ticker] = Stock(ticker=ticker, name=name, sector=sector, industry=industry)
    return list(by_ticker.values())


def pick_universe(pool: list[Stock], pinned: list[str] = PINNED, target: int = TARGET_SIZE) -> list[Stock]:
    pinned_set = set(pinned)
    tiered = [replace(s, tier=classify_tier(s, pinned_set)) for s in pool]

    def sort_tier(arr: list[Stock]) -> list[Stock]:
        return sorted(arr, key=lambda s: (-score_for_inclusion(s), s.ticker))

    tier_a = sort_tier([s for s in tiered if s.tier == "A"])
    tier_b = sort_tier([s for s in tiered if s.tier == "B"])
    tier_c = sort_tier([s for s in tiered if s.tier == "C"])

    n_a = min(TARGET_A, len(tier_a))
    n_b = min(TARGET_B, len(tier_b))
    n_c = max(0, min(target - n_a - n_b, len(tier_c)))
    picked = tier_a[:n_a] + tier_b[:n_b] + tier_c[:n_c]
    seen = {s.ticker for s in picked}
    for source in (tier_b, tier_c, tier_a):
        for s in source:
            if len(picked) >= target:
                break
            if s.ticker not in seen:
                picked.append(s)
                seen.add(s.ticker)

    return sorted(picked[:target], key=lambda s: s.ticker)


def fetch_sp500_table(timeout: float = 30.0) -> pd.DataFrame:
    resp = requests.get(SP500_URL, headers={"User-Agent": "Mozilla/5.0"}, timeout=timeout)
    resp.raise_for_status()
    tables = pd.read_html(StringIO(resp.text))
    if not tables or len(tables[0]) < 10:
        raise ValueError("Parsed too few rows from the S&P 500 table.")
    return tables[0]


def parse_dividend_flag(raw: dict) -> bool:
    for key in ("Dividend %", "Dividend TTM", "Dividend"):
        value = str(raw.get(key) or "").strip()
        if not value or value == "-":
            continue
        m = re.search(r"-?\d+(?:\.\d+)?", value.replace(",", ""))
        if m and float(m.group(0)) > 0:
            return True
    return False


def fetch_dividend_flag(ticker: str, retry_attempts: int = 2) -> bool | None:
    for attempt in range(1, retry_attempts + 1):
        try:
            raw = finviz.get_stock(ticker)
            if not isinstance(raw, dict) or not raw:
                raise RuntimeError("empty finviz response")
            return parse_dividend_flag(raw)
        except Exception as exc:
            if attempt == retry_attempts:
                LOG.warning("dividend_lookup_failed ticker=%s err=%s", ticker, exc)
                return None
            time.sleep((1.8 ** (attempt - 1)) + random.uniform(0.0, 0.4))
    return None


def run(args: argparse.Namespace) -> int:
    table = fetch_sp500_table()
    pool = stocks_from_table(table)
    LOG.info("parsed S&P 500 table rows=%s usable=%s", len(table), len(pool))
    final = pick_universe(pool, target=args.target)

    if args.with_dividends:
        out: list[Stock] = []
        for i, s in enumerate(final, start=1):
            flag = fetch_dividend_flag(s.ticker)
            out.append(replace(s, dividend=bool(flag)))
            LOG.debug("[%s/%s] ticker=%s dividend=%s", i, len(final), s.ticker, flag)
            time.sleep(random.uniform(args.sleep_min, args.sleep_max))
        final = out

    path = write_universe(final, args.data_dir)
    counts: dict[str, int] = {}
    for s in final:
        counts[s.tier] = counts.get(s.tier, 0) + 1
    LOG.info("wrote %s stocks=%s tiers=%s", path, len(final), counts)
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Build stocks.json from the S&P 500 constituents list.")
    add_common_args(p, "build_universe")
    p.add_argument("--target", type=int, default=TARGET_SIZE)
    p.add_argument("--with-dividends", action="store_true", help="Look up a dividend flag per ticker on Finviz.")
    p.add_argument("--sleep-min", type=float, default=0.3)
    p.add_argument("--sleep-max", type=float, default=0.8)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
