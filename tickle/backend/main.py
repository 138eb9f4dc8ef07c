from __future__ import annotations

import datetime as dt
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import FileResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from tickle.data.paths import ASSETS_DIR, DATA_DIR, LOG_DIR, PROJECT_DIR, logos_dir
from tickle.data.snapshots import Snapshot, SnapshotStore
from tickle.data.universe import DailyMapping, Stock, ValidationError, find_stock, load_universe, today_key_utc
from tickle.game.evaluator import Evaluation, NumericResult
from tickle.game.session import MAX_ATTEMPTS, GameSession, GuessRejected, Reveal, SessionClock

LOG = logging.getLogger("tickle.api")
ROOT_LOGGER = logging.getLogger()
log_level = os.getenv("TICKLE_LOG_LEVEL", "INFO").upper()
log_format = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
if not ROOT_LOGGER.handlers:
    logging.basicConfig(level=log_level, format=log_format)
API_LOG_PATH = LOG_DIR / "api.log"
RUN_LOG_PATH = LOG_DIR / "scheduler.log"
if not any(
    isinstance(h, RotatingFileHandler) and Path(getattr(h, "baseFilename", "")) == API_LOG_PATH
    for h in ROOT_LOGGER.handlers
):
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(API_LOG_PATH, maxBytes=10_000_000, backupCount=3)
        file_handler.setFormatter(logging.Formatter(log_format))
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        ROOT_LOGGER.addHandler(file_handler)
    except OSError as exc:
        LOG.warning("Failed to attach rotating file logger at %s: %s", API_LOG_PATH, exc)

SCHEDULER_ENABLED = os.getenv("TICKLE_SCHEDULER_ENABLED", "1") == "1"
DAILY_CRON_HOUR = min(23, max(0, int(os.getenv("TICKLE_DAILY_CRON_HOUR", "0"))))
DAILY_CRON_MINUTE = 5
HINT_LOGO_ROUTE = "/api/hint/logo"


def _run_module(module: str) -> int:
    started = dt.datetime.now(dt.timezone.utc)
    LOG.info("Scheduler: starting %s (run_log=%s)", module, RUN_LOG_PATH)
    RUN_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    with RUN_LOG_PATH.open("a", encoding="utf-8") as log_file:
        result = subprocess.run(
            [sys.executable, "-m", module, "--data-dir", str(DATA_DIR)],
            cwd=str(PROJECT_DIR),
            stdout=log_file,
            stderr=subprocess.STDOUT,
            text=True,
        )
    elapsed = (dt.datetime.now(dt.timezone.utc) - started).total_seconds()
    if result.returncode == 0:
        LOG.info("Scheduler: %s completed OK (rc=%d, sec=%.1f)", module, result.returncode, elapsed)
    else:
        LOG.error("Scheduler: %s failed (rc=%d, sec=%.1f, run_log=%s)", module, result.returncode, elapsed, RUN_LOG_PATH)
    return result.returncode


def _run_daily_update() -> None:
    # The answer's snapshot first, then the rest of the universe.
    _run_module("tickle.scripts.update_daily")
    _run_module("tickle.scripts.batch_build")


_scheduler = BackgroundScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 3600,
    },
)
_scheduler.add_job(
    _run_daily_update,
    CronTrigger(hour=DAILY_CRON_HOUR, minute=DAILY_CRON_MINUTE, timezone="UTC"),
    id="daily_update",
    replace_existing=True,
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if SCHEDULER_ENABLED:
        _scheduler.start()
        LOG.info("Scheduler started: daily_update %02d:%02d UTC", DAILY_CRON_HOUR, DAILY_CRON_MINUTE)
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


_ALLOWED_ORIGIN = os.getenv("TICKLE_ALLOWED_ORIGIN", "*")

app = FastAPI(title="tickle API", version="0.1.0", docs_url=None, redoc_url=None, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[_ALLOWED_ORIGIN] if _ALLOWED_ORIGIN != "*" else ["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@dataclass
class Puzzle:
    date: str
    universe: list[Stock]
    answer: Stock
    snapshot: Snapshot
    store: SnapshotStore


def load_puzzle(date_key: str | None = None) -> Puzzle:
    day = date_key or today_key_utc()
    try:
        universe = load_universe(DATA_DIR)
        mapping = DailyMapping.load(DATA_DIR)
    except ValidationError as exc:
        LOG.error("puzzle data invalid: %s", exc)
        raise HTTPException(status_code=500, detail="Puzzle data is invalid") from exc
    ticker = mapping.get(day)
    answer = find_stock(universe, ticker) if ticker else None
    store = SnapshotStore(DATA_DIR)
    snapshot = store.get(answer.ticker) if answer else None
    if answer is None or snapshot is None:
        raise HTTPException(status_code=503, detail=f"Puzzle for {day} is not ready yet")
    return Puzzle(date=day, universe=universe, answer=answer, snapshot=snapshot, store=store)


def new_session(puzzle: Puzzle) -> GameSession:
    return GameSession(
        answer=puzzle.answer,
        answer_snapshot=puzzle.snapshot,
        universe=puzzle.universe,
        snapshot_lookup=puzzle.store.get,
        clock=SessionClock(on_tick=None),
        # Clients only ever see the opaque route, never the logo file name.
        logo_url=lambda _ticker: HINT_LOGO_ROUTE,
    )


def _numeric_payload(result: NumericResult) -> dict[str, str]:
    return {"band": result.band.value, "direction": result.direction.value}


def _evaluation_payload(ev: Evaluation) -> dict[str, Any]:
    return {
        "ticker": ev.ticker,
        "letters": [{"letter": x.letter, "mark": x.mark.value} for x in ev.letters],
        "sector": ev.sector.value,
        "industry": ev.industry.value,
        "dividend": ev.dividend.value,
        "lastClose": _numeric_payload(ev.last_close),
        "oneYearReturn": _numeric_payload(ev.one_year_return),
        "marketCap": _numeric_payload(ev.market_cap),
        "correct": ev.correct,
    }


def _reveal_payload(reveal: Reveal) -> dict[str, Any]:
    return {
        "won": reveal.won,
        "attempts": reveal.attempts,
        "ticker": reveal.ticker,
        "name": reveal.name,
        "lastClose": reveal.last_close,
        "marketCapB": reveal.market_cap_b,
        "insight": reveal.insight,
        "topNews": [n.to_dict() for n in reveal.top_news],
    }


class GuessRequest(BaseModel):
    guesses: list[str] = Field(default_factory=list, max_length=50)


@app.get("/api/health")
def health() -> dict[str, Any]:
    stocks_ok = (DATA_DIR / "stocks.json").exists()
    return {"ok": stocks_ok, "data_dir": str(DATA_DIR), "scheduler": _scheduler.running}


@app.get("/api/stocks")
def stocks() -> dict[str, Any]:
    try:
        universe = load_universe(DATA_DIR)
    except ValidationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {
        "count": len(universe),
        "stocks": [{"ticker": s.ticker, "name": s.name, "label": f"{s.ticker} — {s.name}"} for s in universe],
    }


@app.get("/api/today")
def today() -> dict[str, Any]:
    puzzle = load_puzzle()
    snap = puzzle.snapshot
    return {
        "date": puzzle.date,
        "tickerLength": len(puzzle.answer.ticker),
        "maxAttempts": MAX_ATTEMPTS,
        "windows": {"1m": snap.one_month, "6m": snap.six_month, "1y": snap.one_year},
    }


@app.post("/api/guess")
def guess(req: GuessRequest) -> dict[str, Any]:
    puzzle = load_puzzle()
    session = new_session(puzzle)
    results: list[dict[str, Any]] = []
    for text in req.guesses:
        try:
            outcome = session.submit_guess(text)
        except GuessRejected as exc:
            results.append({"input": text, "accepted": False, "reason": exc.reason.value, "notice": exc.notice})
            continue
        results.append(
            {
                "input": text,
                "accepted": True,
                "attempt": outcome.attempt,
                "name": outcome.stock.name,
                "evaluation": _evaluation_payload(outcome.evaluation),
            }
        )
    reveal = session.reveal
    return {
        "date": puzzle.date,
        "state": session.state.value,
        "attempts": session.attempts,
        "results": results,
        "reveal": _reveal_payload(reveal) if reveal else None,
    }


@app.get("/api/hint")
def hint(stage: int = Query(default=1, ge=1, le=3)) -> dict[str, Any]:
    puzzle = load_puzzle()
    session = new_session(puzzle)
    hints = []
    for _ in range(stage):
        h = session.reveal_hint()
        if h is None:
            break
        logo = f"{h.logo_path}?stage={h.stage}" if h.logo_path else None
        hints.append({"stage": h.stage, "kind": h.kind, "text": h.text, "logo": logo, "obscured": h.obscured})
    return {"hints": hints, "more": session.can_reveal_hint}


@app.get(HINT_LOGO_ROUTE)
def hint_logo(stage: int = Query(default=2, ge=2, le=3)) -> FileResponse:
    puzzle = load_puzzle()
    path = logos_dir(ASSETS_DIR) / f"{puzzle.answer.ticker}.png"
    if not path.exists():
        raise HTTPException(status_code=404, detail="No logo for today's puzzle")
    # stage only selects client-side blur; the bytes are the same.
    return FileResponse(path, media_type="image/png", headers={"Cache-Control": "no-store"})
