import threading

import pytest

from tickle.game.session import (
    MAX_HINT_STAGE,
    ClockTick,
    GameSession,
    GameState,
    GuessEvaluated,
    GuessRejected,
    HintRevealed,
    RejectReason,
    SessionClock,
    StateChanged,
    format_elapsed,
    parse_selection,
)


class FakeNow:
    def __init__(self, start=1000.0):
        self.value = start

    def __call__(self):
        return self.value


@pytest.fixture
def now():
    return FakeNow()


@pytest.fixture
def session(universe, snapshot, now):
    answer = next(s for s in universe if s.ticker == "PYPL")
    return GameSession(
        answer=answer,
        answer_snapshot=snapshot(last_close=70.0, market_cap_b=75.0),
        universe=universe,
        snapshot_lookup=lambda t: snapshot(last_close=100.0),
        clock=SessionClock(now=now, on_tick=None),
    )


def test_parse_selection_accepts_label_and_bare_ticker(universe):
    assert parse_selection("AAPL — Apple Inc.", universe).ticker == "AAPL"
    assert parse_selection("  msft ", universe).ticker == "MSFT"
    assert parse_selection("", universe) is None
    assert parse_selection("ZZZZ — Nobody", universe) is None


def test_six_wrong_guesses_lose(session):
    for text in ["AAPL", "MSFT", "NVDA", "TSLA", "AMZN", "META"]:
        session.submit_guess(text)
    assert session.state == GameState.LOST
    assert session.attempts == 6
    with pytest.raises(GuessRejected) as exc:
        session.submit_guess("ORCL")
    assert exc.value.reason == RejectReason.GAME_OVER


def test_correct_guess_wins_and_locks(session):
    session.submit_guess("AAPL — Apple Inc.")
    outcome = session.submit_guess("PYPL — PayPal")
    assert outcome.evaluation.correct
    assert outcome.attempt == 2
    assert session.state == GameState.WON
    with pytest.raises(GuessRejected) as exc:
        session.submit_guess("MSFT")
    assert exc.value.reason == RejectReason.GAME_OVER
    assert session.attempts == 2


def test_win_on_last_attempt_is_won(session):
    for text in ["AAPL", "MSFT", "NVDA", "TSLA", "AMZN"]:
        session.submit_guess(text)
    session.submit_guess("PYPL")
    assert session.state == GameState.WON


@pytest.mark.parametrize(
    "first, second, reason",
    [
        (None, "IBM", RejectReason.WRONG_LENGTH),
        (None, "GOOGL", RejectReason.WRONG_LENGTH),
        (None, "", RejectReason.NO_SELECTION),
        (None, "ZZZZ", RejectReason.NO_SELECTION),
        ("AAPL", "AAPL — Apple Inc.", RejectReason.ALREADY_GUESSED),
    ],
)
def test_rejections_do_not_consume_attempts(session, first, second, reason):
    if first:
        session.submit_guess(first)
    before = session.attempts
    with pytest.raises(GuessRejected) as exc:
        session.submit_guess(second)
    assert exc.value.reason == reason
    assert exc.value.notice
    assert session.attempts == before


def test_rejection_before_first_guess_keeps_clock_idle(session):
    with pytest.raises(GuessRejected):
        session.submit_guess("IBM")
    assert session.state == GameState.NOT_STARTED
    assert not session.clock.running


def test_clock_starts_on_first_guess_and_stops_on_end(session, now):
    assert session.elapsed_sec == 0.0
    session.submit_guess("AAPL")
    assert session.clock.running
    now.value += 30.0
    session.submit_guess("PYPL")
    assert not session.clock.running
    now.value += 100.0
    assert session.elapsed_sec == pytest.approx(30.0)
    assert session.reveal.elapsed_sec == pytest.approx(30.0)


def test_clock_stop_is_once_only(now):
    clock = SessionClock(now=now, on_tick=None)
    assert clock.stop() is False
    clock.start()
    assert clock.stop() is True
    assert clock.stop() is False


def test_guess_uses_guessed_stock_snapshot(session):
    outcome = session.submit_guess("AAPL")
    # guess 100.0 vs answer 70.0 is more than 25% above
    assert outcome.evaluation.last_close.band.value == "OFF"
    assert outcome.evaluation.last_close.direction.value == "DOWN"


def test_missing_guess_snapshot_degrades_numeric_clues(universe, snapshot, now):
    answer = next(s for s in universe if s.ticker == "PYPL")
    s = GameSession(answer, snapshot(), universe, snapshot_lookup=None, clock=SessionClock(now=now, on_tick=None))
    outcome = s.submit_guess("AAPL")
    assert outcome.evaluation.last_close.band.value == "OFF"
    assert outcome.evaluation.last_close.direction.value == "NONE"


def test_events_are_emitted_in_order(session):
    events = []
    session.subscribe(events.append)
    session.submit_guess("PYPL")
    kinds = [type(e) for e in events]
    assert kinds == [StateChanged, GuessEvaluated, StateChanged]
    assert events[0].current == GameState.IN_PROGRESS
    assert events[-1].current == GameState.WON
    assert not any(isinstance(e, ClockTick) for e in events)


def test_hints_cap_at_three(session):
    events = []
    session.subscribe(events.append)
    hints = [session.reveal_hint() for _ in range(MAX_HINT_STAGE)]
    assert [h.stage for h in hints] == [1, 2, 3]
    assert hints[0].text == "Sector: Financials | Industry: Transaction & Payment Processing Services"
    assert hints[1].obscured > hints[2].obscured == 0
    assert hints[2].logo_path.endswith("PYPL.png")
    assert session.reveal_hint() is None
    assert not session.can_reveal_hint
    assert sum(isinstance(e, HintRevealed) for e in events) == 3


def test_busy_session_rejects_reentrant_guess(session):
    session._busy.acquire()
    try:
        with pytest.raises(GuessRejected) as exc:
            session.submit_guess("AAPL")
        assert exc.value.reason == RejectReason.BUSY
    finally:
        session._busy.release()
    assert session.attempts == 0


def test_reveal_only_after_game_ends(session):
    assert session.reveal is None
    session.submit_guess("PYPL")
    reveal = session.reveal
    assert reveal.won
    assert reveal.ticker == "PYPL"
    assert reveal.last_close == 70.0
    assert reveal.market_cap_b == 75.0


def test_attempts_label_and_format_elapsed(session):
    session.submit_guess("AAPL")
    assert session.attempts_label == "1 / 6"
    assert format_elapsed(75.9) == "1:15"
    assert format_elapsed(-3) == "0:00"


def test_failing_listener_does_not_break_attempt_limit(session):
    def explode(event):
        if isinstance(event, GuessEvaluated):
            raise RuntimeError("render failed")

    seen = []
    session.subscribe(explode)
    session.subscribe(seen.append)
    for text in ["AAPL", "MSFT", "NVDA", "TSLA", "AMZN", "META"]:
        session.submit_guess(text)
    assert session.state == GameState.LOST
    assert session.attempts == 6
    assert len(session.history) == 6
    assert not session.clock.running
    assert sum(isinstance(e, GuessEvaluated) for e in seen) == 6
    with pytest.raises(GuessRejected) as exc:
        session.submit_guess("ORCL")
    assert exc.value.reason == RejectReason.GAME_OVER
    assert session.attempts == 6


def test_listeners_see_settled_state(session):
    states = []
    session.subscribe(lambda e: states.append((type(e).__name__, session.state, session.attempts)))
    session.submit_guess("PYPL")
    assert ("GuessEvaluated", GameState.WON, 1) in states


def test_clock_ticks_while_running_and_stops_after_stop():
    ticks = []
    enough = threading.Event()

    def on_tick(elapsed):
        ticks.append(elapsed)
        if len(ticks) >= 3:
            enough.set()

    clock = SessionClock(on_tick=on_tick, interval=0.01)
    clock.start()
    try:
        assert enough.wait(timeout=5.0)
    finally:
        assert clock.stop() is True
    # one tick may already be past the running check when stop() lands
    threading.Event().wait(0.1)
    settled = len(ticks)
    threading.Event().wait(0.1)
    assert len(ticks) == settled
    assert ticks == sorted(ticks)
    assert clock.stop() is False


def test_clock_tick_reaches_session_subscribers(universe, snapshot):
    answer = next(s for s in universe if s.ticker == "PYPL")
    s = GameSession(answer, snapshot(), universe)
    got = threading.Event()
    s.subscribe(lambda e: got.set() if isinstance(e, ClockTick) else None)
    s.submit_guess("AAPL")
    try:
        assert got.wait(timeout=5.0)
    finally:
        s.close()
    assert not s.clock.running
