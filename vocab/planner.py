"""
Plan optimizer.

Turns a goal and a time budget into an ordered learning path and a daily
workload, then nudges that workload up or down from how much of the
recent daily tasks the learner actually completed.

Functions here are pure: the vocabulary pool and the learner profile are
passed in by the caller.
"""

import math
from collections import defaultdict
from dataclasses import dataclass

from .exceptions import InvalidState

MIN_DAILY_TASKS = 10
MAX_DAILY_TASKS = 50

HIGH_COMPLETION_THRESHOLD = 0.9   # At or above: learner is under-challenged
LOW_COMPLETION_THRESHOLD = 0.5    # Below: learner is overloaded
HIGH_ADJUSTMENT = 1.10
LOW_ADJUSTMENT = 0.80

FAST_SPEED_FACTOR = 1.2
SLOW_SPEED_FACTOR = 0.8
LOW_ACCURACY_THRESHOLD = 0.6
LOW_ACCURACY_FACTOR = 0.9

LEVEL_ORDER = ('BEGINNER', 'INTERMEDIATE', 'ADVANCED')

# Categories that matter most for each goal, most important first
GOAL_CATEGORIES = {
    'EXAM': ('CORE', 'ACADEMIC', 'HIGH_FREQUENCY', 'COMPLEX'),
    'TRAVEL': ('GREETING', 'TRANSPORTATION', 'ACCOMMODATION', 'DINING'),
    'BUSINESS': ('EMAIL', 'MEETING', 'TERMINOLOGY', 'NEGOTIATION'),
    'DAILY': ('CONVERSATION', 'LIFESTYLE', 'HOBBIES'),
}

# Estimated mastered words (30 days at the learner's pace) per phase
INTERMEDIATE_PHASE_WORDS = 100
ADVANCED_PHASE_WORDS = 500


@dataclass(frozen=True)
class WordSet:
    name: str
    category: str
    priority: int  # 1 = study first
    relevant: bool
    weak: bool
    item_ids: tuple

    def as_dict(self):
        return {
            'name': self.name,
            'category': self.category,
            'priority': self.priority,
            'relevant': self.relevant,
            'weak': self.weak,
            'item_ids': list(self.item_ids),
        }


@dataclass(frozen=True)
class LearningPath:
    word_sets: tuple
    priorities: tuple  # Categories in study order
    total_words: int

    def as_list(self):
        return [word_set.as_dict() for word_set in self.word_sets]


def clamp_task_count(count):
    return max(MIN_DAILY_TASKS, min(MAX_DAILY_TASKS, count))


def _level_rank(level):
    try:
        return LEVEL_ORDER.index(level)
    except ValueError:
        raise InvalidState(f"Unknown proficiency level: {level!r}") from None


def _goal_categories(goal_type):
    try:
        return GOAL_CATEGORIES[goal_type]
    except KeyError:
        raise InvalidState(f"Unknown goal type: {goal_type!r}") from None


def generate_learning_path(goal_type, target_date, current_level, pool, weak_topics=()):
    """
    Partition the vocabulary pool into word sets in study order.

    Words up to one level above `current_level` are included. Sets whose
    category serves the goal come first (in the goal's own order), and
    within each of those two groups the learner's weak topics are moved to
    the front. Words inside a set are ordered easiest first, then by id, so
    the same inputs always give the same path.

    `target_date` does not change the ordering; it is accepted so callers
    describe the whole goal in one call.
    """
    goal_categories = _goal_categories(goal_type)
    max_rank = _level_rank(current_level) + 1
    weak = set(weak_topics)

    by_category = defaultdict(list)
    for item in pool:
        rank = _level_rank(item.level)
        if rank <= max_rank:
            by_category[item.category].append((rank, item.pk))

    def sort_key(category):
        relevant = category in goal_categories
        goal_rank = goal_categories.index(category) if relevant else len(goal_categories)
        return (not relevant, category not in weak, goal_rank, category)

    word_sets = []
    for priority, category in enumerate(sorted(by_category, key=sort_key), start=1):
        items = sorted(by_category[category])
        word_sets.append(WordSet(
            name=category.replace('_', ' ').title(),
            category=category,
            priority=priority,
            relevant=category in goal_categories,
            weak=category in weak,
            item_ids=tuple(pk for _, pk in items),
        ))

    return LearningPath(
        word_sets=tuple(word_sets),
        priorities=tuple(word_set.category for word_set in word_sets),
        total_words=sum(len(word_set.item_ids) for word_set in word_sets),
    )


def calculate_daily_task_count(profile, remaining_days, target_word_count):
    """
    Words per day needed to reach the target, clamped to [10, 50].

    base = ceil(target / remaining_days), scaled by the learner's pace
    (FAST x1.2, SLOW x0.8) and by 0.9 when their accuracy is below 60%.
    """
    if remaining_days is None or remaining_days <= 0:
        raise InvalidState(f"Target date has passed (remaining_days={remaining_days!r})")
    if target_word_count is None or target_word_count < 0:
        raise InvalidState(f"target_word_count must be non-negative, got {target_word_count!r}")

    count = math.ceil(target_word_count / max(remaining_days, 1))

    if profile is not None:
        if profile.learning_speed_trend == 'FAST':
            count = math.ceil(count * FAST_SPEED_FACTOR)
        elif profile.learning_speed_trend == 'SLOW':
            count = math.floor(count * SLOW_SPEED_FACTOR)

        accuracy = profile.average_accuracy
        if accuracy is not None and accuracy < LOW_ACCURACY_THRESHOLD:
            count = math.floor(count * LOW_ACCURACY_FACTOR)

    return clamp_task_count(count)


def adjust_task_difficulty(recent_completion_rate, current_task_count):
    """
    Closed-loop load control.

    Completion >= 90%: +10%. Completion < 50%: -20%. Otherwise unchanged.
    The result is re-clamped to [10, 50].
    """
    if recent_completion_rate is None or not 0.0 <= recent_completion_rate <= 1.0:
        raise InvalidState(f"Completion rate must be between 0 and 1, got {recent_completion_rate!r}")
    if current_task_count is None or current_task_count <= 0:
        raise InvalidState(f"current_task_count must be positive, got {current_task_count!r}")

    if recent_completion_rate >= HIGH_COMPLETION_THRESHOLD:
        adjusted = int(math.floor(current_task_count * HIGH_ADJUSTMENT + 0.5))
    elif recent_completion_rate < LOW_COMPLETION_THRESHOLD:
        adjusted = int(math.floor(current_task_count * LOW_ADJUSTMENT + 0.5))
    else:
        adjusted = current_task_count

    return clamp_task_count(adjusted)


def describe_adjustment(recent_completion_rate):
    if recent_completion_rate >= HIGH_COMPLETION_THRESHOLD:
        return 'high completion'
    if recent_completion_rate < LOW_COMPLETION_THRESHOLD:
        return 'low completion'
    return 'on track'


def determine_phase(profile):
    """BEGINNER / INTERMEDIATE / ADVANCED from the learner's daily pace."""
    if profile is None:
        return 'BEGINNER'
    estimated_words = int(profile.average_daily_words * 30)
    if estimated_words < INTERMEDIATE_PHASE_WORDS:
        return 'BEGINNER'
    if estimated_words < ADVANCED_PHASE_WORDS:
        return 'INTERMEDIATE'
    return 'ADVANCED'
