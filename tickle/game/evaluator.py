from __future__ import annotations

import enum
import math
from dataclasses import dataclass

from tickle.data.snapshots import Snapshot
from tickle.data.universe import Stock

MATCH_PCT = 5.0
NEAR_PCT = 12.0
FAR_PCT = 25.0


class LetterMark(str, enum.Enum):
    EXACT = "EXACT"
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


class CategoryMatch(str, enum.Enum):
    MATCH = "MATCH"
    NO_MATCH = "NO_MATCH"


class Band(str, enum.Enum):
    MATCH = "MATCH"
    NEAR = "NEAR"
    FAR = "FAR"
    OFF = "OFF"


class Direction(str, enum.Enum):
    UP = "UP"
    DOWN = "DOWN"
    NONE = "NONE"


@dataclass(frozen=True)
class LetterResult:
    letter: str
    mark: LetterMark


@dataclass(frozen=True)
class NumericResult:
    band: Band
    direction: Direction


@dataclass(frozen=True)
class ComparisonInput:
    """Everything a guess is compared on. Numbers come from a snapshot, never the universe record."""

    ticker: str
    sector: str
    industry: str
    dividend: bool
    last_close: float | None
    one_year_return: float | None
    market_cap_b: float | None


@dataclass(frozen=True)
class Evaluation:
    ticker: str
    letters: list[LetterResult]
    sector: CategoryMatch
    industry: CategoryMatch
    dividend: CategoryMatch
    last_close: NumericResult
    one_year_return: NumericResult
    market_cap: NumericResult
    correct: bool


def comparison_input(stock: Stock, snapshot: Snapshot | None) -> ComparisonInput:
    # Built field by field: categorical values from the stock, numbers only from the snapshot.
    return ComparisonInput(
        ticker=stock.ticker,
        sector=stock.sector,
        industry=stock.industry,
        dividend=stock.dividend,
        last_close=snapshot.last_close if snapshot is not None else None,
        one_year_return=snapshot.one_year_return if snapshot is not None else None,
        market_cap_b=snapshot.market_cap_b if snapshot is not None else None,
    )


def letter_feedback(guess: str, answer: str) -> list[LetterResult]:
    if len(guess) != len(answer):
        raise ValueError(f"guess {guess!r} and answer have different lengths")
    marks = [LetterMark.ABSENT] * len(guess)
    used_answer = [False] * len(answer)
    used_guess = [False] * len(guess)

    for i, ch in enumerate(guess):
        if ch == answer[i]:
            marks[i] = LetterMark.EXACT
            used_answer[i] = True
            used_guess[i] = True

    for i, ch in enumerate(guess):
        if used_guess[i]:
            continue
        for j, a in enumerate(answer):
            if not used_answer[j] and a == ch:
                marks[i] = LetterMark.PRESENT
                used_answer[j] = True
                break

    return [LetterResult(letter=ch, mark=m) for ch, m in zip(guess, marks)]


def compare_category(guess: object, answer: object) -> CategoryMatch:
    return CategoryMatch.MATCH if str(guess).lower() == str(answer).lower() else CategoryMatch.NO_MATCH


def _finite_number(value: object) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float)) and math.isfinite(value)


def compare_numeric(guess: object, answer: object) -> NumericResult:
    if not _finite_number(guess) or not _finite_number(answer) or answer == 0:
        return NumericResult(Band.OFF, Direction.NONE)
    g = float(guess)
    a = float(answer)
    pct = abs((g - a) / a) * 100.0
    if pct <= MATCH_PCT:
        return NumericResult(Band.MATCH, Direction.NONE)
    if pct <= NEAR_PCT:
        band = Band.NEAR
    elif pct <= FAR_PCT:
        band = Band.FAR
    else:
        band = Band.OFF
    return NumericResult(band, Direction.UP if g < a else Direction.DOWN)


def dividend_text(flag: bool) -> str:
    return "Yes" if flag else "No"


def evaluate_guess(guess: ComparisonInput, answer: ComparisonInput) -> Evaluation:
    return Evaluation(
        ticker=guess.ticker,
        letters=letter_feedback(guess.ticker, answer.ticker),
        sector=compare_category(guess.sector, answer.sector),
        industry=compare_category(guess.industry, answer.industry),
        dividend=compare_category(dividend_text(guess.dividend), dividend_text(answer.dividend)),
        last_close=compare_numeric(guess.last_close, answer.last_close),
        one_year_return=compare_numeric(guess.one_year_return, answer.one_year_return),
        market_cap=compare_numeric(guess.market_cap_b, answer.market_cap_b),
        correct=guess.ticker == answer.ticker,
    )
