"""
Spaced Repetition System (SRS) for vocabulary mastery.

Every (learner, word) pair carries a mastery level between 0 and 100. A correct
answer raises mastery with diminishing returns as it approaches 100; a wrong
answer takes away a share proportional to how much was known. The next review
interval roughly doubles for every 20 points of mastery, starting at 4 hours,
and grows further with the number of reviews already done. Items answered
wrong twice in a row are pulled back to a short interval no matter how high
their mastery is.

All functions are pure: they never read the clock or the database.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from .exceptions import InvalidState


# Status constants
STATUS_LEARNING = 'LEARNING'
STATUS_MASTERED = 'MASTERED'
STATUS_FORGOTTEN = 'FORGOTTEN'

# Mastery constants
MIN_MASTERY = 0
MAX_MASTERY = 100
MASTERY_THRESHOLD = 80     # At or above: the word counts as mastered
FORGOTTEN_THRESHOLD = 20   # Below this, a previously known word is forgotten
CORRECT_GAIN_RATE = 0.25   # Share of the remaining distance gained when correct
MIN_CORRECT_GAIN = 1
WRONG_LOSS_RATE = 0.3      # Share of current mastery lost when wrong
MIN_WRONG_LOSS = 5

# Interval constants
BASE_INTERVAL_HOURS = 4    # Interval at mastery 0
MASTERY_BAND = 20          # Interval doubles per band
REVIEW_COUNT_BONUS = 0.15  # Extra retention per completed review
MAX_REVIEW_MULTIPLIER = 3.0
STRUGGLING_WRONG_STREAK = 2
STRUGGLING_INTERVAL_HOURS = 1
FORGET_WRONG_STREAK = 3


@dataclass(frozen=True)
class ReviewResult:
    """Immutable result of a review calculation."""
    mastery_level: int
    review_count: int
    correct_count: int
    wrong_count: int
    consecutive_wrong_count: int
    status: str
    interval_hours: int
    next_review_at: datetime


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _check_mastery(level) -> None:
    if level is None or isinstance(level, bool) or not isinstance(level, int):
        raise InvalidState(f"Mastery level must be an integer, got {level!r}")
    if level < MIN_MASTERY or level > MAX_MASTERY:
        raise InvalidState(f"Mastery level must be between 0 and 100, got {level}")


def _check_counter(name: str, value) -> None:
    if value is None or isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidState(f"{name} must be a non-negative integer, got {value!r}")


def update_mastery_level(current_level: int, is_correct: bool) -> int:
    """
    Apply one answer to a mastery level.

    Correct: gain = round((100 - level) * 0.25), at least 1 below 100.
    Wrong:   loss = round(level * 0.3), at least 5, never below 0.
    """
    _check_mastery(current_level)

    if is_correct:
        if current_level >= MAX_MASTERY:
            return MAX_MASTERY
        gain = max(MIN_CORRECT_GAIN, _round_half_up((MAX_MASTERY - current_level) * CORRECT_GAIN_RATE))
        return min(MAX_MASTERY, current_level + gain)

    loss = max(MIN_WRONG_LOSS, _round_half_up(current_level * WRONG_LOSS_RATE))
    return max(MIN_MASTERY, current_level - loss)


def calculate_review_interval(
    mastery_level: int,
    review_count: int,
    consecutive_wrong_count: int
) -> int:
    """
    Calculate the number of hours until the next review.

    interval = 4h * 2^(mastery / 20) * min(3, 1 + 0.15 * review_count)

    Two or more wrong answers in a row override this with a 1 hour interval.
    """
    _check_mastery(mastery_level)
    _check_counter('review_count', review_count)
    _check_counter('consecutive_wrong_count', consecutive_wrong_count)

    if consecutive_wrong_count >= STRUGGLING_WRONG_STREAK:
        return STRUGGLING_INTERVAL_HOURS

    mastery_factor = 2 ** (mastery_level / MASTERY_BAND)
    review_factor = min(MAX_REVIEW_MULTIPLIER, 1 + REVIEW_COUNT_BONUS * review_count)
    return max(1, _round_half_up(BASE_INTERVAL_HOURS * mastery_factor * review_factor))


def is_mastered(mastery_level: int) -> bool:
    _check_mastery(mastery_level)
    return mastery_level >= MASTERY_THRESHOLD


def determine_status(
    mastery_level: int,
    previous_status: str | None = None,
    consecutive_wrong_count: int = 0
) -> str:
    """
    Classify a mastery level.

    MASTERED at or above the threshold. Below 20, a word that was mastered
    (or already forgotten), or that was just missed three times in a row,
    is FORGOTTEN. Everything else is LEARNING.
    """
    _check_counter('consecutive_wrong_count', consecutive_wrong_count)

    if is_mastered(mastery_level):
        return STATUS_MASTERED
    if mastery_level < FORGOTTEN_THRESHOLD and (
        previous_status in (STATUS_MASTERED, STATUS_FORGOTTEN)
        or consecutive_wrong_count >= FORGET_WRONG_STREAK
    ):
        return STATUS_FORGOTTEN
    return STATUS_LEARNING


def calculate_review(
    mastery_level: int,
    review_count: int,
    correct_count: int,
    wrong_count: int,
    consecutive_wrong_count: int,
    status: str,
    is_correct: bool,
    review_time: datetime
) -> ReviewResult:
    """
    Calculate the complete review result for a word.

    This is the main entry point of the engine. It takes the current memory
    state and the answer outcome, returning the new state and the next due
    time. review_time must be supplied by the caller's clock.
    """
    _check_counter('review_count', review_count)
    _check_counter('correct_count', correct_count)
    _check_counter('wrong_count', wrong_count)
    if review_time is None:
        raise InvalidState("review_time is required")

    new_level = update_mastery_level(mastery_level, is_correct)
    new_review_count = review_count + 1

    if is_correct:
        correct_count += 1
        consecutive_wrong_count = 0
    else:
        wrong_count += 1
        consecutive_wrong_count += 1

    new_status = determine_status(new_level, status, consecutive_wrong_count)
    interval = calculate_review_interval(new_level, new_review_count, consecutive_wrong_count)

    return ReviewResult(
        mastery_level=new_level,
        review_count=new_review_count,
        correct_count=correct_count,
        wrong_count=wrong_count,
        consecutive_wrong_count=consecutive_wrong_count,
        status=new_status,
        interval_hours=interval,
        next_review_at=review_time + timedelta(hours=interval)
    )


def get_records_due(records, now: datetime):
    """
    Filter records that are due for review.

    Args:
        records: Iterable of objects with next_review_at and mastery_level
        now: Current time

    Returns:
        List of due records, most overdue first, weaker words first on ties
    """
    due = [r for r in records if r.next_review_at <= now]
    return sorted(due, key=lambda r: (r.next_review_at, r.mastery_level))
