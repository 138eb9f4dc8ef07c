import math

import pytest

from tickle.game.evaluator import (
    Band,
    CategoryMatch,
    Direction,
    LetterMark,
    comparison_input,
    compare_category,
    compare_numeric,
    evaluate_guess,
    letter_feedback,
)

E, P, A = LetterMark.EXACT, LetterMark.PRESENT, LetterMark.ABSENT


def _marks(guess, answer):
    return [r.mark for r in letter_feedback(guess, answer)]


def test_letter_feedback_duplicate_letters():
    assert _marks("AABB", "ABBA") == [E, P, E, P]


def test_letter_feedback_exact_before_present():
    assert _marks("AAPL", "PYPL") == [A, A, E, E]


def test_letter_feedback_surplus_letters_are_absent():
    assert _marks("XXXY", "ABXX") == [P, A, E, A]


def test_letter_feedback_all_exact_and_letters_preserved():
    result = letter_feedback("MSFT", "MSFT")
    assert [r.mark for r in result] == [E, E, E, E]
    assert "".join(r.letter for r in result) == "MSFT"


def test_letter_feedback_rejects_length_mismatch():
    with pytest.raises(ValueError):
        letter_feedback("AAPL", "IBM")


def test_compare_category_ignores_case():
    assert compare_category("Information Technology", "information technology") == CategoryMatch.MATCH
    assert compare_category("Financials", "Energy") == CategoryMatch.NO_MATCH


@pytest.mark.parametrize(
    "guess, band, direction",
    [
        (103.0, Band.MATCH, Direction.NONE),
        (97.0, Band.MATCH, Direction.NONE),
        (110.0, Band.NEAR, Direction.DOWN),
        (90.0, Band.NEAR, Direction.UP),
        (80.0, Band.FAR, Direction.UP),
        (120.0, Band.FAR, Direction.DOWN),
        (50.0, Band.OFF, Direction.UP),
        (200.0, Band.OFF, Direction.DOWN),
    ],
)
def test_compare_numeric_bands(guess, band, direction):
    result = compare_numeric(guess, 100.0)
    assert result.band == band
    assert result.direction == direction


def test_compare_numeric_equal_values_match():
    assert compare_numeric(42.5, 42.5).band == Band.MATCH


def test_compare_numeric_far_edge_is_inclusive():
    assert compare_numeric(125.0, 100.0).band == Band.FAR
    assert compare_numeric(75.0, 100.0).band == Band.FAR


def test_compare_numeric_negative_answer_uses_magnitude():
    result = compare_numeric(-11.0, -10.0)
    assert result.band == Band.NEAR
    assert result.direction == Direction.UP


@pytest.mark.parametrize("guess, answer", [(10.0, 0), (None, 100.0), (100.0, None), (math.nan, 100.0), (True, 1.0)])
def test_compare_numeric_degenerate_inputs_are_off(guess, answer):
    result = compare_numeric(guess, answer)
    assert result.band == Band.OFF
    assert result.direction == Direction.NONE


def test_numbers_come_from_snapshot_not_stock(stock, snapshot):
    s = stock("AAPL")
    assert comparison_input(s, snapshot(last_close=150.0)).last_close == 150.0
    missing = comparison_input(s, None)
    assert missing.last_close is None
    assert missing.one_year_return is None
    assert missing.sector == s.sector


def test_evaluate_guess_full_record(stock, snapshot):
    answer = comparison_input(
        stock("PYPL", sector="Financials", industry="Payments", dividend=False),
        snapshot(last_close=100.0, one_year_return=10.0, market_cap_b=70.0),
    )
    guess = comparison_input(
        stock("AAPL", sector="Information Technology", industry="Hardware", dividend=True),
        snapshot(last_close=110.0, one_year_return=10.2, market_cap_b=None),
    )
    ev = evaluate_guess(guess, answer)
    assert ev.ticker == "AAPL"
    assert [r.mark for r in ev.letters] == [A, A, E, E]
    assert ev.sector == CategoryMatch.NO_MATCH
    assert ev.industry == CategoryMatch.NO_MATCH
    assert ev.dividend == CategoryMatch.NO_MATCH
    assert (ev.last_close.band, ev.last_close.direction) == (Band.NEAR, Direction.DOWN)
    assert ev.one_year_return.band == Band.MATCH
    assert ev.market_cap.band == Band.OFF
    assert ev.correct is False


def test_evaluate_guess_correct_when_tickers_equal(stock, snapshot):
    rec = comparison_input(stock("MSFT"), snapshot())
    ev = evaluate_guess(rec, rec)
    assert ev.correct is True
    assert all(r.mark == E for r in ev.letters)
    assert ev.dividend == CategoryMatch.MATCH
