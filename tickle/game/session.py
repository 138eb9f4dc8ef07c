"""
Per-player game session: attempts, guessed tickers, elapsed-time clock and
hint stage. The UI talks to it through ``submit_guess`` / ``reveal_hint`` and
listens for events; nothing here touches rendering.
"""

from __future__ import annotations

import enum
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence, Union

from tickle.data.snapshots import NewsItem, Snapshot
from tickle.data.universe import Stock, ValidationError
from tickle.game.evaluator import ComparisonInput, Evaluation, comparison_input, evaluate_guess

LOG = logging.getLogger("tickle.game")

MAX_ATTEMPTS = 6
MAX_HINT_STAGE = 3
TICK_INTERVAL_SEC = 0.25
SELECTION_SEPARATOR = "—"


class GameState(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    WON = "WON"
    LOST = "LOST"

    @property
    def terminal(self) -> bool:
        return self in (GameState.WON, GameState.LOST)


class RejectReason(str, enum.Enum):
    WRONG_LENGTH = "WRONG_LENGTH"
    ALREADY_GUESSED = "ALREADY_GUESSED"
    NO_SELECTION = "NO_SELECTION"
    GAME_OVER = "GAME_OVER"
    BUSY = "BUSY"


NOTICES = {
    RejectReason.NO_SELECTION: "Pick a stock from the dropdown.",
    RejectReason.WRONG_LENGTH: "Wrong ticker length for today.",
    RejectReason.ALREADY_GUESSED: "You already guessed that one.",
    RejectReason.GAME_OVER: "Today's game is over.",
    RejectReason.BUSY: "Still checking your last guess.",
}


class GuessRejected(Exception):
    def __init__(self, reason: RejectReason) -> None:
        super().__init__(NOTICES[reason])
        self.reason = reason
        self.notice = NOTICES[reason]


@dataclass(frozen=True)
class HintReveal:
    stage: int
    kind: str
    text: str
    logo_path: str | None = None
    obscured: int = 0


@dataclass(frozen=True)
class Reveal:
    won: bool
    attempts: int
    elapsed_sec: float
    ticker: str
    name: str
    last_close: float
    market_cap_b: float | None
    insight: str
    top_news: list[NewsItem]


@dataclass(frozen=True)
class GuessOutcome:
    stock: Stock
    evaluation: Evaluation
    attempt: int
    state: GameState


@dataclass(frozen=True)
class GuessEvaluated:
    outcome: GuessOutcome


@dataclass(frozen=True)
class StateChanged:
    previous: GameState
    current: GameState


@dataclass(frozen=True)
class HintRevealed:
    hint: HintReveal


@dataclass(frozen=True)
class ClockTick:
    elapsed_sec: float


SessionEvent = Union[GuessEvaluated, StateChanged, HintRevealed, ClockTick]


def format_elapsed(seconds: float) -> str:
    s = int(max(0.0, seconds))
    return f"{s // 60}:{s % 60:02d}"


class SessionClock:
    """Elapsed-time clock with an optional periodic tick; stopping cancels it exactly once."""

    def __init__(
        self,
        now: Callable[[], float] = time.monotonic,
        on_tick: Callable[[float], None] | None = None,
        interval: float = TICK_INTERVAL_SEC,
    ) -> None:
        self._now = now
        self._on_tick = on_tick
        self._interval = interval
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self.started_at: float | None = None
        self.stopped_at: float | None = None

    @property
    def running(self) -> bool:
        return self.started_at is not None and self.stopped_at is None

    def start(self) -> None:
        with self._lock:
            if self.started_at is not None:
                return
            self.started_at = self._now()
            self._schedule()

    def stop(self) -> bool:
        with self._lock:
            if not self.running:
                return False
            self.stopped_at = self._now()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            return True

    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.stopped_at if self.stopped_at is not None else self._now()
        return max(0.0, end - self.started_at)

    def _schedule(self) -> None:
        if self._on_tick is None:
            return
        self._timer = threading.Timer(self._interval, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self) -> None:
        with self._lock:
            if not self.running:
                return
            self._schedule()
        if self._on_tick is not None:
            self._on_tick(self.elapsed())


def parse_selection(text: str | None, universe: Sequence[Stock]) -> Stock | None:
    raw = (text or "").strip()
    if not raw:
        return None
    head = raw.split(SELECTION_SEPARATOR)[0]
    ticker = re.sub(r"[^A-Z]", "", head.upper())
    if not ticker:
        return None
    for s in universe:
        if s.ticker == ticker:
            return s
    return None


class GameSession:
    def __init__(
        self,
        answer: Stock,
        answer_snapshot: Snapshot,
        universe: Sequence[Stock],
        snapshot_lookup: Callable[[str], Snapshot | None] | None = None,
        clock: SessionClock | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        logo_url: Callable[[str], str] | None = None,
    ) -> None:
        self.answer = answer
        self.answer_snapshot = answer_snapshot
        self.universe = list(universe)
        self.max_attempts = max_attempts
        self._lookup = snapshot_lookup
        self._logo_url = logo_url or (lambda t: f"assets/logos/{t}.png")
        self._answer_input: ComparisonInput = comparison_input(answer, answer_snapshot)
        self._listeners: list[Callable[[SessionEvent], None]] = []
        self._busy = threading.Lock()
        self.clock = clock or SessionClock(on_tick=lambda sec: self._emit(ClockTick(sec)))
        self.state = GameState.NOT_STARTED
        self.attempts = 0
        self.guessed: list[str] = []
        self.history: list[GuessOutcome] = []
        self.hint_stage = 0

    def subscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        self._listeners.append(listener)

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOG.exception("listener_failed event=%s", type(event).__name__)

    def _set_state(self, new_state: GameState) -> StateChanged | None:
        """Apply a transition without notifying; the caller emits the returned event."""
        previous = self.state
        if previous == new_state:
            return None
        self.state = new_state
        if new_state.terminal:
            self.clock.stop()
        LOG.debug("state %s -> %s attempts=%s", previous.value, new_state.value, self.attempts)
        return StateChanged(previous, new_state)

    @property
    def answer_length(self) -> int:
        return len(self.answer.ticker)

    @property
    def attempts_label(self) -> str:
        return f"{self.attempts} / {self.max_attempts}"

    @property
    def elapsed_sec(self) -> float:
        return self.clock.elapsed()

    @property
    def can_reveal_hint(self) -> bool:
        return self.hint_stage < MAX_HINT_STAGE

    def _snapshot_for(self, stock: Stock) -> Snapshot | None:
        if stock.ticker == self.answer.ticker:
            return self.answer_snapshot
        if self._lookup is None:
            return None
        try:
            return self._lookup(stock.ticker)
        except (ValidationError, OSError) as exc:
            LOG.warning("guess_snapshot_unavailable ticker=%s err=%s", stock.ticker, exc)
            return None

    def submit_guess(self, text: str | None) -> GuessOutcome:
        if not self._busy.acquire(blocking=False):
            raise GuessRejected(RejectReason.BUSY)
        try:
            if self.state.terminal:
                raise GuessRejected(RejectReason.GAME_OVER)
            stock = parse_selection(text, self.universe)
            if stock is None:
                raise GuessRejected(RejectReason.NO_SELECTION)
            if len(stock.ticker) != self.answer_length:
                raise GuessRejected(RejectReason.WRONG_LENGTH)
            if stock.ticker in self.guessed:
                raise GuessRejected(RejectReason.ALREADY_GUESSED)

            events: list[SessionEvent] = []
            if self.state == GameState.NOT_STARTED:
                self.clock.start()
                started = self._set_state(GameState.IN_PROGRESS)
                if started is not None:
                    events.append(started)
            self.guessed.append(stock.ticker)
            self.attempts += 1

            evaluation = evaluate_guess(comparison_input(stock, self._snapshot_for(stock)), self._answer_input)
            if evaluation.correct:
                next_state = GameState.WON
            elif self.attempts >= self.max_attempts:
                next_state = GameState.LOST
            else:
                next_state = GameState.IN_PROGRESS
            outcome = GuessOutcome(stock=stock, evaluation=evaluation, attempt=self.attempts, state=next_state)
            self.history.append(outcome)
            changed = self._set_state(next_state)
            events.append(GuessEvaluated(outcome))
            if changed is not None:
                events.append(changed)
            # Every counter and the state are settled before listeners run.
            for event in events:
                self._emit(event)
            return outcome
        finally:
            self._busy.release()

    def close(self) -> None:
        self.clock.stop()

    def reveal_hint(self) -> HintReveal | None:
        if not self.can_reveal_hint:
            return None
        self.hint_stage += 1
        logo = self._logo_url(self.answer.ticker)
        if self.hint_stage == 1:
            hint = HintReveal(stage=1, kind="category", text=f"Sector: {self.answer.sector} | Industry: {self.answer.industry}")
        elif self.hint_stage == 2:
            hint = HintReveal(stage=2, kind="logo", text="Logo: blurred", logo_path=logo, obscured=2)
        else:
            hint = HintReveal(stage=3, kind="logo", text="Logo: full", logo_path=logo, obscured=0)
        self._emit(HintRevealed(hint))
        return hint

    @property
    def reveal(self) -> Reveal | None:
        if not self.state.terminal:
            return None
        snap = self.answer_snapshot
        return Reveal(
            won=self.state == GameState.WON,
            attempts=self.attempts,
            elapsed_sec=round(self.elapsed_sec, 1),
            ticker=self.answer.ticker,
            name=self.answer.name,
            last_close=snap.last_close,
            market_cap_b=snap.market_cap_b,
            insight=snap.insight,
            top_news=list(snap.top_news),
        )
