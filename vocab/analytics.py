"""
Learning analytics.

Derives behavioral signals from a window of activity history: when the
learner studies, which topics they keep getting wrong, how many new words
they take on per day, and how their vocabulary grows over time.

The analysis functions only look at the records they are given. Records are
any objects with `occurred_at`, `is_correct`, `topic`, `item_id`, and (for
reviews) `mastery_after`, which ActivityLog rows provide.
"""

import zoneinfo
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone as dt_timezone

from . import srs
from .exceptions import InvalidState
from .models import ActivityLog, LearningProfile

MORNING = 'morning'
AFTERNOON = 'afternoon'
EVENING = 'evening'

MORNING_START_HOUR = 5
AFTERNOON_START_HOUR = 12
EVENING_START_HOUR = 18

WEAK_AREA_THRESHOLD = 0.40
DEFAULT_WINDOW_DAYS = 30

UTC = dt_timezone.utc


@dataclass(frozen=True)
class WeakArea:
    type: str
    error_rate: float
    total: int

    def as_dict(self):
        return {'type': self.type, 'error_rate': round(self.error_rate, 4), 'total': self.total}


@dataclass(frozen=True)
class ProgressCurve:
    """Three parallel per-day series, oldest day first."""
    dates: list
    cumulative_words: list
    mastered_words: list
    accuracy_rates: list


def _empty_time_preferences():
    return {MORNING: 0.0, AFTERNOON: 0.0, EVENING: 0.0}


def _time_bucket(hour):
    if MORNING_START_HOUR <= hour < AFTERNOON_START_HOUR:
        return MORNING
    if AFTERNOON_START_HOUR <= hour < EVENING_START_HOUR:
        return AFTERNOON
    return EVENING


def analyze_time_preferences(records, tz=UTC):
    """
    Share of activity in each local-time window.

    Morning is 05:00-12:00, afternoon 12:00-18:00 and evening the rest of the
    day. Fractions sum to 1.0; an empty history gives all zeros.
    """
    counts = _empty_time_preferences()
    total = 0
    for record in records:
        if record.occurred_at is None:
            continue
        counts[_time_bucket(record.occurred_at.astimezone(tz).hour)] += 1
        total += 1

    if total == 0:
        return _empty_time_preferences()
    return {bucket: count / total for bucket, count in counts.items()}


def identify_weak_areas(records, threshold=WEAK_AREA_THRESHOLD):
    """
    Topics with an error rate above `threshold`, worst first.

    Only graded activity (is_correct not None) with a topic is counted.
    """
    totals = defaultdict(int)
    wrong = defaultdict(int)
    for record in records:
        if record.is_correct is None or not record.topic:
            continue
        totals[record.topic] += 1
        if not record.is_correct:
            wrong[record.topic] += 1

    weak_areas = [
        WeakArea(type=topic, error_rate=wrong[topic] / total, total=total)
        for topic, total in totals.items()
        if wrong[topic] / total > threshold
    ]
    return sorted(weak_areas, key=lambda area: (-area.error_rate, area.type))


def calculate_learning_speed(records, tz=UTC):
    """
    Average number of distinct words studied per active day.

    Each word is counted once, on the first day it appears in the window.
    Returns 0.0 when there is no word activity.
    """
    first_seen = {}
    for record in records:
        if record.item_id is None or record.occurred_at is None:
            continue
        day = record.occurred_at.astimezone(tz).date()
        if record.item_id not in first_seen or day < first_seen[record.item_id]:
            first_seen[record.item_id] = day

    active_days = {
        record.occurred_at.astimezone(tz).date()
        for record in records
        if record.occurred_at is not None
    }
    if not first_seen or not active_days:
        return 0.0
    return len(first_seen) / len(active_days)


def build_progress_curve(records, days, today, tz=UTC):
    """
    Per-day progress for the `days` calendar days ending on `today`.

    `records` must include all history up to the end of `today` so cumulative
    counts start from the right baseline. A word counts as mastered on a day
    when the last review at or before that day left it at mastery >= 80.
    """
    if days is None or days <= 0:
        raise InvalidState(f"days must be positive, got {days!r}")

    first_day = today - timedelta(days=days - 1)
    ordered = sorted(
        (r for r in records if r.occurred_at is not None),
        key=lambda r: r.occurred_at,
    )

    seen = set()
    latest_mastery = {}
    daily_correct = defaultdict(int)
    daily_answered = defaultdict(int)
    cursor = 0

    dates, cumulative_words, mastered_words, accuracy_rates = [], [], [], []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)

        while cursor < len(ordered) and ordered[cursor].occurred_at < day_end:
            record = ordered[cursor]
            cursor += 1
            if record.item_id is not None:
                seen.add(record.item_id)
                if record.mastery_after is not None:
                    latest_mastery[record.item_id] = record.mastery_after
            if record.is_correct is not None:
                local_day = record.occurred_at.astimezone(tz).date()
                daily_answered[local_day] += 1
                if record.is_correct:
                    daily_correct[local_day] += 1

        answered = daily_answered[day]
        dates.append(day.isoformat())
        cumulative_words.append(len(seen))
        mastered_words.append(
            sum(1 for level in latest_mastery.values() if level >= srs.MASTERY_THRESHOLD)
        )
        accuracy_rates.append(round(daily_correct[day] / answered, 4) if answered else 0.0)

    return ProgressCurve(
        dates=dates,
        cumulative_words=cumulative_words,
        mastered_words=mastered_words,
        accuracy_rates=accuracy_rates,
    )


def generate_progress_curve(user, days, now):
    """Progress curve of a learner over the last `days` days, in their timezone."""
    if days is None or days <= 0:
        raise InvalidState(f"days must be positive, got {days!r}")

    profile = LearningProfile.objects.filter(user=user).first()
    tz = profile.get_timezone() if profile else zoneinfo.ZoneInfo('UTC')
    today = now.astimezone(tz).date()
    day_end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz)

    records = ActivityLog.objects.filter(user=user, occurred_at__lt=day_end).only(
        'occurred_at', 'is_correct', 'topic', 'item', 'mastery_after'
    )
    return build_progress_curve(records, days, today, tz)
