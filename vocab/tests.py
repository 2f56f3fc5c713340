"""
Unit tests for the vocabulary learning application.

Test organization:
- SRS tests: Pure function tests for mastery and interval calculation
- Planner tests: Pure function tests for learning paths and daily load
- Analytics tests: Pure function tests over activity histories
- Store tests: Memory record queries, statistics and optimistic updates
- Coordinator tests: Reviews, plans, tasks and profiles end to end
- Achievement tests: Badges, streaks and the post-review signal
- View and command tests: JSON endpoints and refresh_study_plans
"""

import json
import threading
import zoneinfo
from datetime import date, datetime, timedelta, timezone as dt_timezone
from io import StringIO
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth.models import User
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import IntegrityError, OperationalError, connections, transaction
from django.db.models import F
from django.test import Client, TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from . import achievements, analytics, planner, srs, store
from .exceptions import ConcurrencyConflict, InvalidState, NotFound, UpstreamUnavailable
from .models import (
    Achievement,
    ActivityLog,
    DailyTask,
    LearningProfile,
    LearningStreak,
    MemoryRecord,
    StudyPlan,
    UserAchievement,
    VocabularyItem,
)
from .services import LearningCoordinator
from .views.helpers import error_response

NOW = datetime(2024, 3, 10, 9, 0, tzinfo=dt_timezone.utc)
TODAY = NOW.date()


def fixed_clock(now=NOW):
    return lambda: now


def make_items(count, category='CORE', level=VocabularyItem.Level.BEGINNER, prefix='word'):
    return [
        VocabularyItem.objects.create(word=f'{prefix}{i}', category=category, level=level)
        for i in range(count)
    ]


def activity(occurred_at, is_correct=True, topic='CORE', item_id=None, mastery_after=None):
    return SimpleNamespace(
        occurred_at=occurred_at,
        is_correct=is_correct,
        topic=topic,
        item_id=item_id,
        mastery_after=mastery_after,
    )


# =============================================================================
# SRS Algorithm Tests
# =============================================================================

class SRSMasteryTests(TestCase):
    """Tests for mastery level updates."""

    def test_correct_answer_gains_quarter_of_remaining(self):
        """50 correct: gain round(12.5) = 13."""
        self.assertEqual(srs.update_mastery_level(50, True), 63)

    def test_wrong_answer_loses_thirty_percent(self):
        """90 wrong: loss round(27) = 27."""
        self.assertEqual(srs.update_mastery_level(90, False), 63)

    def test_minimum_gain_near_the_top(self):
        """99 correct still gains at least one point."""
        self.assertEqual(srs.update_mastery_level(99, True), 100)

    def test_full_mastery_stays_full(self):
        self.assertEqual(srs.update_mastery_level(100, True), 100)

    def test_minimum_loss_is_five(self):
        """10 wrong loses 5, not round(3)."""
        self.assertEqual(srs.update_mastery_level(10, False), 5)

    def test_never_below_zero(self):
        self.assertEqual(srs.update_mastery_level(0, False), 0)
        self.assertEqual(srs.update_mastery_level(3, False), 0)

    def test_correct_never_decreases_and_wrong_never_increases(self):
        """Property over the whole mastery range."""
        for level in range(0, 101):
            self.assertGreaterEqual(srs.update_mastery_level(level, True), level)
            self.assertLessEqual(srs.update_mastery_level(level, False), level)
            self.assertLessEqual(srs.update_mastery_level(level, True), 100)
            self.assertGreaterEqual(srs.update_mastery_level(level, False), 0)

    def test_out_of_range_level_rejected(self):
        for level in [-1, 101, None, 50.5, True]:
            with self.assertRaises(InvalidState, msg=f"{level!r} should be rejected"):
                srs.update_mastery_level(level, True)


class SRSIntervalTests(TestCase):
    """Tests for review interval calculation."""

    def test_base_interval_at_zero_mastery(self):
        self.assertEqual(srs.calculate_review_interval(0, 0, 0), 4)

    def test_interval_doubles_per_twenty_points(self):
        self.assertEqual(srs.calculate_review_interval(20, 0, 0), 8)
        self.assertEqual(srs.calculate_review_interval(40, 0, 0), 16)
        self.assertEqual(srs.calculate_review_interval(100, 0, 0), 128)

    def test_review_count_bonus(self):
        """4 * 2^4 * 1.3 = 83.2 hours."""
        self.assertEqual(srs.calculate_review_interval(80, 2, 0), 83)

    def test_review_count_bonus_is_capped(self):
        """1 + 0.15 * 20 = 4, capped at 3."""
        self.assertEqual(srs.calculate_review_interval(0, 20, 0), 12)
        self.assertEqual(
            srs.calculate_review_interval(0, 20, 0),
            srs.calculate_review_interval(0, 200, 0),
        )

    def test_struggling_word_gets_short_interval(self):
        """Two wrong answers in a row override mastery."""
        self.assertEqual(srs.calculate_review_interval(90, 5, 2), 1)
        self.assertEqual(srs.calculate_review_interval(100, 10, 4), 1)

    def test_interval_always_at_least_one_hour(self):
        for level in range(0, 101, 5):
            for reviews in range(0, 25, 4):
                for wrong in range(0, 4):
                    self.assertGreaterEqual(srs.calculate_review_interval(level, reviews, wrong), 1)

    def test_interval_grows_with_mastery(self):
        intervals = [srs.calculate_review_interval(level, 3, 0) for level in range(0, 101)]
        self.assertEqual(intervals, sorted(intervals))

    def test_negative_counters_rejected(self):
        with self.assertRaises(InvalidState):
            srs.calculate_review_interval(50, -1, 0)
        with self.assertRaises(InvalidState):
            srs.calculate_review_interval(50, 0, -1)


class SRSStatusTests(TestCase):
    """Tests for status classification."""

    def test_mastered_at_threshold(self):
        self.assertEqual(srs.determine_status(80), srs.STATUS_MASTERED)
        self.assertEqual(srs.determine_status(79), srs.STATUS_LEARNING)
        self.assertTrue(srs.is_mastered(80))
        self.assertFalse(srs.is_mastered(79))

    def test_mastered_word_falling_low_is_forgotten(self):
        self.assertEqual(srs.determine_status(15, srs.STATUS_MASTERED), srs.STATUS_FORGOTTEN)

    def test_new_word_with_low_mastery_is_learning(self):
        """A word still being learned is not forgotten just for being low."""
        self.assertEqual(srs.determine_status(15, srs.STATUS_LEARNING, 0), srs.STATUS_LEARNING)

    def test_repeated_misses_mark_forgotten(self):
        self.assertEqual(srs.determine_status(15, srs.STATUS_LEARNING, 3), srs.STATUS_FORGOTTEN)

    def test_forgotten_word_recovers_to_learning(self):
        self.assertEqual(srs.determine_status(25, srs.STATUS_FORGOTTEN), srs.STATUS_LEARNING)


class SRSCalculateReviewTests(TestCase):
    """Integration tests for the main calculate_review function."""

    def review(self, is_correct, **state):
        defaults = {
            'mastery_level': 0,
            'review_count': 0,
            'correct_count': 0,
            'wrong_count': 0,
            'consecutive_wrong_count': 0,
            'status': srs.STATUS_LEARNING,
        }
        defaults.update(state)
        return srs.calculate_review(is_correct=is_correct, review_time=NOW, **defaults)

    def test_first_correct_answer(self):
        """0 -> 25; interval 4 * 2^1.25 * 1.15 = 10.94 hours."""
        result = self.review(True)
        self.assertIsInstance(result, srs.ReviewResult)
        self.assertEqual(result.mastery_level, 25)
        self.assertEqual(result.review_count, 1)
        self.assertEqual(result.correct_count, 1)
        self.assertEqual(result.consecutive_wrong_count, 0)
        self.assertEqual(result.interval_hours, 11)
        self.assertEqual(result.next_review_at, NOW + timedelta(hours=11))

    def test_correct_answer_resets_wrong_streak(self):
        result = self.review(True, mastery_level=40, review_count=4, consecutive_wrong_count=2)
        self.assertEqual(result.consecutive_wrong_count, 0)

    def test_second_wrong_in_a_row_schedules_within_the_hour(self):
        """80 wrong: mastery 56, no longer mastered, due in 1 hour."""
        result = self.review(
            False,
            mastery_level=80,
            review_count=6,
            correct_count=5,
            wrong_count=1,
            consecutive_wrong_count=1,
            status=srs.STATUS_MASTERED,
        )
        self.assertEqual(result.mastery_level, 56)
        self.assertEqual(result.wrong_count, 2)
        self.assertEqual(result.consecutive_wrong_count, 2)
        self.assertEqual(result.status, srs.STATUS_LEARNING)
        self.assertEqual(result.interval_hours, 1)
        self.assertEqual(result.next_review_at, NOW + timedelta(hours=1))

    def test_reaching_threshold_marks_mastered(self):
        result = self.review(True, mastery_level=75, review_count=8)
        self.assertEqual(result.mastery_level, 81)
        self.assertEqual(result.status, srs.STATUS_MASTERED)

    def test_review_time_is_required(self):
        with self.assertRaises(InvalidState):
            srs.calculate_review(0, 0, 0, 0, 0, srs.STATUS_LEARNING, True, None)

    def test_result_is_immutable(self):
        result = self.review(True)
        with self.assertRaises(Exception):
            result.mastery_level = 99


class SRSRecordsDueTests(TestCase):
    """Tests for in-memory due filtering."""

    def test_due_records_sorted_most_overdue_first(self):
        a = SimpleNamespace(next_review_at=NOW - timedelta(hours=1), mastery_level=10)
        b = SimpleNamespace(next_review_at=NOW - timedelta(hours=5), mastery_level=90)
        c = SimpleNamespace(next_review_at=NOW + timedelta(hours=1), mastery_level=0)
        d = SimpleNamespace(next_review_at=NOW - timedelta(hours=1), mastery_level=5)
        self.assertEqual(srs.get_records_due([a, b, c, d], NOW), [b, d, a])

    def test_record_due_exactly_now_is_included(self):
        a = SimpleNamespace(next_review_at=NOW, mastery_level=10)
        self.assertEqual(srs.get_records_due([a], NOW), [a])


# =============================================================================
# Planner Tests
# =============================================================================

class DailyTaskCountTests(TestCase):
    """Tests for the daily workload calculation."""

    def profile(self, trend='NORMAL', accuracy=None):
        return SimpleNamespace(learning_speed_trend=trend, average_accuracy=accuracy)

    def test_even_split_over_remaining_days(self):
        """40 words over 4 days is 10 a day."""
        self.assertEqual(planner.calculate_daily_task_count(None, 4, 40), 10)

    def test_clamped_to_bounds(self):
        self.assertEqual(planner.calculate_daily_task_count(None, 10, 1000), 50)
        self.assertEqual(planner.calculate_daily_task_count(None, 30, 60), 10)
        self.assertEqual(planner.calculate_daily_task_count(None, 30, 0), 10)

    def test_rounds_up(self):
        self.assertEqual(planner.calculate_daily_task_count(None, 7, 100), 15)

    def test_fast_learner_gets_more(self):
        self.assertEqual(planner.calculate_daily_task_count(self.profile('FAST'), 10, 200), 24)

    def test_slow_learner_gets_less(self):
        self.assertEqual(planner.calculate_daily_task_count(self.profile('SLOW'), 10, 200), 16)

    def test_low_accuracy_reduces_load(self):
        self.assertEqual(planner.calculate_daily_task_count(self.profile(accuracy=0.5), 10, 200), 18)
        self.assertEqual(planner.calculate_daily_task_count(self.profile(accuracy=0.8), 10, 200), 20)

    def test_passed_target_date_rejected(self):
        with self.assertRaises(InvalidState):
            planner.calculate_daily_task_count(None, 0, 100)
        with self.assertRaises(InvalidState):
            planner.calculate_daily_task_count(None, -3, 100)

    def test_negative_target_rejected(self):
        with self.assertRaises(InvalidState):
            planner.calculate_daily_task_count(None, 10, -1)


class AdjustTaskDifficultyTests(TestCase):
    """Tests for completion-driven load control."""

    def test_high_completion_raises_load(self):
        """0.95 on 20 tasks: round(22.0) = 22."""
        self.assertEqual(planner.adjust_task_difficulty(0.95, 20), 22)

    def test_boundary_ninety_percent_counts_as_high(self):
        self.assertEqual(planner.adjust_task_difficulty(0.9, 20), 22)

    def test_low_completion_lowers_load(self):
        self.assertEqual(planner.adjust_task_difficulty(0.3, 20), 16)

    def test_boundary_fifty_percent_unchanged(self):
        self.assertEqual(planner.adjust_task_difficulty(0.5, 20), 20)

    def test_middle_band_unchanged(self):
        self.assertEqual(planner.adjust_task_difficulty(0.7, 20), 20)

    def test_result_clamped(self):
        self.assertEqual(planner.adjust_task_difficulty(0.95, 50), 50)
        self.assertEqual(planner.adjust_task_difficulty(0.1, 10), 10)

    def test_invalid_inputs_rejected(self):
        for rate, count in [(1.5, 20), (-0.1, 20), (None, 20), (0.5, 0), (0.5, -4)]:
            with self.assertRaises(InvalidState, msg=f"({rate}, {count}) should be rejected"):
                planner.adjust_task_difficulty(rate, count)

    def test_describe_adjustment(self):
        self.assertEqual(planner.describe_adjustment(0.95), 'high completion')
        self.assertEqual(planner.describe_adjustment(0.2), 'low completion')
        self.assertEqual(planner.describe_adjustment(0.7), 'on track')


class LearningPathTests(TestCase):
    """Tests for learning path generation."""

    def setUp(self):
        self.pool = [
            SimpleNamespace(pk=1, category='GREETING', level='BEGINNER'),
            SimpleNamespace(pk=2, category='DINING', level='INTERMEDIATE'),
            SimpleNamespace(pk=3, category='GREETING', level='INTERMEDIATE'),
            SimpleNamespace(pk=4, category='CORE', level='BEGINNER'),
            SimpleNamespace(pk=5, category='DINING', level='ADVANCED'),
            SimpleNamespace(pk=6, category='HOBBIES', level='BEGINNER'),
        ]

    def test_goal_categories_first_then_weak_topics(self):
        path = planner.generate_learning_path(
            'TRAVEL', TODAY, 'BEGINNER', self.pool, weak_topics=('HOBBIES',)
        )
        self.assertEqual(path.priorities, ('GREETING', 'DINING', 'HOBBIES', 'CORE'))
        self.assertEqual([s.priority for s in path.word_sets], [1, 2, 3, 4])

    def test_words_above_next_level_excluded(self):
        path = planner.generate_learning_path('TRAVEL', TODAY, 'BEGINNER', self.pool)
        self.assertEqual(path.total_words, 5)
        all_ids = [pk for word_set in path.word_sets for pk in word_set.item_ids]
        self.assertNotIn(5, all_ids)

    def test_easiest_words_first_within_a_set(self):
        path = planner.generate_learning_path('TRAVEL', TODAY, 'BEGINNER', self.pool)
        self.assertEqual(path.word_sets[0].item_ids, (1, 3))

    def test_weak_goal_category_moves_to_front(self):
        path = planner.generate_learning_path(
            'TRAVEL', TODAY, 'BEGINNER', self.pool, weak_topics=('DINING',)
        )
        self.assertEqual(path.priorities[0], 'DINING')
        self.assertTrue(path.word_sets[0].weak)

    def test_same_inputs_same_path(self):
        first = planner.generate_learning_path('TRAVEL', TODAY, 'BEGINNER', self.pool)
        second = planner.generate_learning_path('TRAVEL', TODAY, 'BEGINNER', list(reversed(self.pool)))
        self.assertEqual(first, second)

    def test_as_list_is_json_ready(self):
        path = planner.generate_learning_path('TRAVEL', TODAY, 'BEGINNER', self.pool)
        data = path.as_list()
        self.assertEqual(data[0]['category'], 'GREETING')
        self.assertEqual(data[0]['item_ids'], [1, 3])
        json.dumps(data)

    def test_unknown_goal_or_level_rejected(self):
        with self.assertRaises(InvalidState):
            planner.generate_learning_path('SPACE', TODAY, 'BEGINNER', self.pool)
        with self.assertRaises(InvalidState):
            planner.generate_learning_path('TRAVEL', TODAY, 'EXPERT', self.pool)

    def test_empty_pool(self):
        path = planner.generate_learning_path('EXAM', TODAY, 'ADVANCED', [])
        self.assertEqual(path.word_sets, ())
        self.assertEqual(path.total_words, 0)


class DeterminePhaseTests(TestCase):

    def test_phase_from_daily_pace(self):
        self.assertEqual(planner.determine_phase(None), 'BEGINNER')
        self.assertEqual(planner.determine_phase(SimpleNamespace(average_daily_words=2)), 'BEGINNER')
        self.assertEqual(planner.determine_phase(SimpleNamespace(average_daily_words=5)), 'INTERMEDIATE')
        self.assertEqual(planner.determine_phase(SimpleNamespace(average_daily_words=20)), 'ADVANCED')


# =============================================================================
# Analytics Tests
# =============================================================================

class TimePreferenceTests(TestCase):

    def test_share_per_window(self):
        records = [
            activity(NOW.replace(hour=8)),
            activity(NOW.replace(hour=9)),
            activity(NOW.replace(hour=14)),
            activity(NOW.replace(hour=20)),
        ]
        prefs = analytics.analyze_time_preferences(records)
        self.assertEqual(prefs, {'morning': 0.5, 'afternoon': 0.25, 'evening': 0.25})
        self.assertAlmostEqual(sum(prefs.values()), 1.0)

    def test_uses_learner_timezone(self):
        """23:00 UTC is 08:00 in Tokyo."""
        records = [activity(NOW.replace(hour=23))]
        prefs = analytics.analyze_time_preferences(records, zoneinfo.ZoneInfo('Asia/Tokyo'))
        self.assertEqual(prefs['morning'], 1.0)

    def test_empty_history_is_all_zero(self):
        self.assertEqual(
            analytics.analyze_time_preferences([]),
            {'morning': 0.0, 'afternoon': 0.0, 'evening': 0.0},
        )


class WeakAreaTests(TestCase):

    def test_topics_above_threshold_worst_first(self):
        records = (
            [activity(NOW, False, 'GRAMMAR')] * 3 + [activity(NOW, True, 'GRAMMAR')] * 2
            + [activity(NOW, False, 'IDIOMS')] * 4 + [activity(NOW, True, 'IDIOMS')]
            + [activity(NOW, False, 'CORE')] + [activity(NOW, True, 'CORE')] * 4
        )
        areas = analytics.identify_weak_areas(records)
        self.assertEqual([area.type for area in areas], ['IDIOMS', 'GRAMMAR'])
        self.assertEqual(areas[0].error_rate, 0.8)
        self.assertEqual(areas[0].as_dict(), {'type': 'IDIOMS', 'error_rate': 0.8, 'total': 5})

    def test_exactly_forty_percent_is_not_weak(self):
        records = [activity(NOW, False, 'CORE')] * 2 + [activity(NOW, True, 'CORE')] * 3
        self.assertEqual(analytics.identify_weak_areas(records), [])

    def test_ungraded_activity_ignored(self):
        records = [activity(NOW, None, 'CORE')] * 5 + [activity(NOW, False, '')] * 5
        self.assertEqual(analytics.identify_weak_areas(records), [])


class LearningSpeedTests(TestCase):

    def test_distinct_words_per_active_day(self):
        """40 words over 4 active days is 10 a day."""
        records = [
            activity(NOW - timedelta(days=day), item_id=day * 10 + i)
            for day in range(4)
            for i in range(10)
        ]
        self.assertEqual(analytics.calculate_learning_speed(records), 10.0)

    def test_repeated_word_counted_once(self):
        records = [
            activity(NOW - timedelta(days=1), item_id=1),
            activity(NOW, item_id=1),
            activity(NOW, item_id=2),
        ]
        self.assertEqual(analytics.calculate_learning_speed(records), 1.0)

    def test_no_activity(self):
        self.assertEqual(analytics.calculate_learning_speed([]), 0.0)


class ProgressCurveTests(TestCase):

    def test_cumulative_mastered_and_accuracy_per_day(self):
        def day(d):
            return datetime(2024, 3, d, 10, 0, tzinfo=dt_timezone.utc)

        records = [
            activity(day(7), True, item_id=1, mastery_after=85),
            activity(day(9), True, item_id=2, mastery_after=40),
            activity(day(9), False, item_id=3, mastery_after=0),
            activity(day(10), True, item_id=2, mastery_after=82),
        ]
        curve = analytics.build_progress_curve(records, 3, date(2024, 3, 10))
        self.assertEqual(curve.dates, ['2024-03-08', '2024-03-09', '2024-03-10'])
        self.assertEqual(curve.cumulative_words, [1, 3, 3])
        self.assertEqual(curve.mastered_words, [1, 1, 2])
        self.assertEqual(curve.accuracy_rates, [0.0, 0.5, 1.0])

    def test_series_have_equal_length(self):
        curve = analytics.build_progress_curve([], 30, TODAY)
        self.assertEqual(len(curve.dates), 30)
        self.assertEqual(len(curve.cumulative_words), 30)
        self.assertEqual(len(curve.mastered_words), 30)
        self.assertEqual(len(curve.accuracy_rates), 30)
        self.assertEqual(curve.dates[-1], TODAY.isoformat())

    def test_non_positive_days_rejected(self):
        with self.assertRaises(InvalidState):
            analytics.build_progress_curve([], 0, TODAY)


# =============================================================================
# Model Tests
# =============================================================================

class LearningStreakModelTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.streak = LearningStreak.objects.create(user=self.user)

    def test_first_activity_starts_streak(self):
        self.streak.record_activity(TODAY)
        self.assertEqual(self.streak.current_streak, 1)
        self.assertEqual(self.streak.longest_streak, 1)

    def test_consecutive_days_extend_streak(self):
        for offset in range(3):
            self.streak.record_activity(TODAY + timedelta(days=offset))
        self.assertEqual(self.streak.current_streak, 3)

    def test_same_day_counted_once(self):
        self.streak.record_activity(TODAY)
        self.streak.record_activity(TODAY)
        self.assertEqual(self.streak.current_streak, 1)

    def test_gap_resets_but_keeps_longest(self):
        self.streak.record_activity(TODAY)
        self.streak.record_activity(TODAY + timedelta(days=1))
        self.streak.record_activity(TODAY + timedelta(days=4))
        self.assertEqual(self.streak.current_streak, 1)
        self.assertEqual(self.streak.longest_streak, 2)

    def test_effective_streak_and_risk(self):
        self.streak.record_activity(TODAY)
        self.assertEqual(self.streak.effective_streak(TODAY), 1)
        self.assertFalse(self.streak.is_at_risk(TODAY))
        self.assertTrue(self.streak.is_at_risk(TODAY + timedelta(days=1)))
        self.assertEqual(self.streak.effective_streak(TODAY + timedelta(days=2)), 0)


class StudyPlanModelTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')

    def create_plan(self, **kwargs):
        defaults = {
            'user': self.user,
            'goal_type': LearningProfile.GoalType.DAILY,
            'target_date': TODAY + timedelta(days=30),
            'target_word_count': 300,
            'daily_task_count': 10,
        }
        defaults.update(kwargs)
        return StudyPlan.objects.create(**defaults)

    def test_only_one_active_plan_per_user(self):
        self.create_plan()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                self.create_plan()

    def test_inactive_plans_do_not_conflict(self):
        self.create_plan(status=StudyPlan.Status.SUPERSEDED)
        self.create_plan(status=StudyPlan.Status.COMPLETED)
        self.create_plan()
        self.assertEqual(StudyPlan.objects.active().filter(user=self.user).count(), 1)

    def test_adjustment_history_keeps_ten_newest(self):
        plan = self.create_plan()
        for i in range(12):
            plan.record_adjustment(TODAY + timedelta(days=i), 'high completion', 10 + i, 11 + i)
        self.assertEqual(len(plan.adjustment_history), 10)
        self.assertEqual(plan.adjustment_history[0]['from'], 21)
        self.assertEqual(plan.adjustment_history[-1]['from'], 12)

    def test_path_item_ids_in_order(self):
        plan = self.create_plan(learning_path=[
            {'category': 'A', 'item_ids': [3, 1]},
            {'category': 'B', 'item_ids': [2]},
        ])
        self.assertEqual(plan.path_item_ids(), [3, 1, 2])


# =============================================================================
# Memory Record Store Tests
# =============================================================================

class StoreQueryTests(TestCase):
    """Tests for due queue, counts and statistics."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.other = User.objects.create_user(username='other', password='testpass123')
        self.items = make_items(5)

    def record(self, item, user=None, **kwargs):
        return MemoryRecord.objects.create(user=user or self.user, item=item, **kwargs)

    def test_due_queue_order_and_limit(self):
        r1 = self.record(self.items[0], next_review_at=NOW - timedelta(hours=2), mastery_level=50)
        r2 = self.record(self.items[1], next_review_at=NOW - timedelta(hours=2), mastery_level=10)
        r3 = self.record(self.items[2], next_review_at=NOW - timedelta(hours=5), mastery_level=90)
        self.record(self.items[3], next_review_at=NOW + timedelta(hours=1))
        self.record(self.items[4], user=self.other, next_review_at=NOW - timedelta(days=1))

        self.assertEqual(store.find_due_reviews(self.user, NOW, 10), [r3, r2, r1])
        self.assertEqual(store.find_due_reviews(self.user, NOW, 2), [r3, r2])

    def test_due_queue_empty_when_nothing_due(self):
        self.record(self.items[0], next_review_at=NOW + timedelta(minutes=1))
        self.assertEqual(store.find_due_reviews(self.user, NOW, 10), [])

    def test_non_positive_limit_rejected(self):
        with self.assertRaises(InvalidState):
            store.find_due_reviews(self.user, NOW, 0)

    def test_counts(self):
        self.record(self.items[0], status=MemoryRecord.Status.MASTERED, next_review_at=NOW + timedelta(days=3))
        self.record(self.items[1], next_review_at=NOW - timedelta(hours=1))
        self.record(self.items[2], user=self.other, status=MemoryRecord.Status.MASTERED)
        self.assertEqual(store.count_total_by_user(self.user), 2)
        self.assertEqual(store.count_mastered_by_user(self.user), 1)
        self.assertEqual(store.count_due_reviews(self.user, NOW), 1)

    def test_get_record_missing_raises_not_found(self):
        with self.assertRaises(NotFound):
            store.get_record(self.user, self.items[0])

    def test_get_or_create_record_creates_once(self):
        first = store.get_or_create_record(self.user, self.items[0], NOW)
        second = store.get_or_create_record(self.user, self.items[0], NOW)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(first.mastery_level, 0)
        self.assertEqual(first.status, MemoryRecord.Status.LEARNING)
        self.assertEqual(first.next_review_at, NOW)

    def test_statistics(self):
        self.record(self.items[0], status=MemoryRecord.Status.MASTERED, mastery_level=90,
                    review_count=5, correct_count=4, wrong_count=1,
                    next_review_at=NOW + timedelta(days=2))
        self.record(self.items[1], mastery_level=30, review_count=3, correct_count=1, wrong_count=2,
                    next_review_at=NOW - timedelta(hours=1))
        self.record(self.items[2], status=MemoryRecord.Status.FORGOTTEN, mastery_level=10,
                    review_count=4, correct_count=1, wrong_count=3,
                    next_review_at=NOW - timedelta(hours=3))

        stats = store.get_statistics(self.user, NOW)
        self.assertEqual(stats.total_words, 3)
        self.assertEqual(stats.mastered_words, 1)
        self.assertEqual(stats.learning_words, 1)
        self.assertEqual(stats.forgotten_words, 1)
        self.assertEqual(stats.total_reviews, 12)
        self.assertEqual(stats.correct_count, 6)
        self.assertEqual(stats.wrong_count, 6)
        self.assertEqual(stats.accuracy_rate, 0.5)
        self.assertEqual(stats.pending_reviews, 2)
        self.assertEqual(stats.average_mastery, 43.33)

    def test_statistics_without_records(self):
        stats = store.get_statistics(self.user, NOW)
        self.assertEqual(stats.total_words, 0)
        self.assertEqual(stats.total_reviews, 0)
        self.assertEqual(stats.accuracy_rate, 0.0)
        self.assertEqual(stats.average_mastery, 0.0)

    def test_delete_user_records(self):
        self.record(self.items[0])
        self.record(self.items[1])
        self.record(self.items[2], user=self.other)
        self.assertEqual(store.delete_user_records(self.user), 2)
        self.assertEqual(MemoryRecord.objects.count(), 1)


class StoreOptimisticUpdateTests(TestCase):
    """Tests for version-guarded updates."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.item = make_items(1)[0]
        self.record = store.create_record(self.user, self.item, NOW)

    def test_update_bumps_version(self):
        self.record.mastery_level = 40
        store.update_record(self.record)
        self.assertEqual(self.record.version, 1)
        fresh = store.get_record(self.user, self.item)
        self.assertEqual(fresh.mastery_level, 40)
        self.assertEqual(fresh.version, 1)

    def test_stale_copy_loses(self):
        """Two copies read at the same version: the second write conflicts."""
        first = store.get_record(self.user, self.item)
        second = store.get_record(self.user, self.item)

        first.mastery_level = 60
        store.update_record(first)

        second.mastery_level = 70
        with self.assertRaises(ConcurrencyConflict):
            store.update_record(second)

        self.assertEqual(store.get_record(self.user, self.item).mastery_level, 60)

    def test_retry_rereads_after_conflict(self):
        """A lost race rolls back the attempt; the next one starts from a fresh read."""
        real_update = store.update_record
        versions = []

        def lose_first_race(record):
            versions.append(record.version)
            if len(versions) == 1:
                raise ConcurrencyConflict('stale')
            return real_update(record)

        def mutate(record):
            record.mastery_level = 33

        with patch('vocab.store.update_record', side_effect=lose_first_race):
            record = store.update_with_retry(self.user, self.item, mutate, NOW)
        self.assertEqual(versions, [0, 0])
        self.assertEqual(record.version, 1)
        self.assertEqual(store.get_record(self.user, self.item).mastery_level, 33)

    def test_on_saved_writes_roll_back_with_lost_attempt(self):
        """Whatever on_saved wrote during a losing attempt is undone with it."""
        seen = []

        def mutate(record):
            record.mastery_level = 50

        def on_saved(record):
            ActivityLog.objects.create(user=self.user, activity_type='REVIEW', item=self.item)
            seen.append(record.version)
            if len(seen) == 1:
                raise ConcurrencyConflict('stale')

        record = store.update_with_retry(self.user, self.item, mutate, NOW, on_saved=on_saved)
        self.assertEqual(seen, [1, 1])
        self.assertEqual(record.version, 1)
        self.assertEqual(ActivityLog.objects.count(), 1)

    def test_locked_database_retried_then_reported_as_conflict(self):
        """SQLite's "database is locked" is a lost race, not a server error."""
        locked = OperationalError('database is locked')
        with patch('vocab.store.update_record', side_effect=locked) as update:
            with self.assertRaises(ConcurrencyConflict) as ctx:
                store.update_with_retry(self.user, self.item, lambda record: None, NOW)
        self.assertEqual(update.call_count, 3)
        self.assertIs(ctx.exception.__cause__, locked)

    def test_write_succeeds_once_lock_is_released(self):
        real_update = store.update_record
        calls = []

        def locked_once(record):
            calls.append(record.version)
            if len(calls) == 1:
                raise OperationalError('database table is locked')
            return real_update(record)

        def mutate(record):
            record.mastery_level = 45

        with patch('vocab.store.update_record', side_effect=locked_once):
            record = store.update_with_retry(self.user, self.item, mutate, NOW)
        self.assertEqual(len(calls), 2)
        self.assertEqual(store.get_record(self.user, self.item).mastery_level, 45)
        self.assertEqual(record.version, 1)

    def test_other_database_errors_propagate(self):
        with patch('vocab.store.update_record', side_effect=OperationalError('no such table: x')) as update:
            with self.assertRaises(OperationalError):
                store.update_with_retry(self.user, self.item, lambda record: None, NOW)
        self.assertEqual(update.call_count, 1)

    @override_settings(VOCAB_MAX_UPDATE_ATTEMPTS=0)
    def test_zero_attempts_setting_rejected(self):
        """A misconfigured attempt count fails loudly instead of skipping the write."""
        with self.assertRaises(InvalidState):
            store.update_with_retry(self.user, self.item, lambda record: None, NOW)
        with self.assertRaises(InvalidState):
            store.update_with_retry(self.user, self.item, lambda record: None, NOW, attempts=-1)
        self.assertEqual(store.get_record(self.user, self.item).version, 0)

    def test_retry_gives_up_after_bounded_attempts(self):
        calls = []

        def mutate(record):
            calls.append(record.version)
            MemoryRecord.objects.filter(pk=record.pk).update(version=F('version') + 1)

        with self.assertRaises(ConcurrencyConflict):
            store.update_with_retry(self.user, self.item, mutate, NOW)
        self.assertEqual(len(calls), 3)

    @override_settings(VOCAB_MAX_UPDATE_ATTEMPTS=5)
    def test_attempts_configurable(self):
        calls = []

        def mutate(record):
            calls.append(record.version)
            MemoryRecord.objects.filter(pk=record.pk).update(version=F('version') + 1)

        with self.assertRaises(ConcurrencyConflict):
            store.update_with_retry(self.user, self.item, mutate, NOW)
        self.assertEqual(len(calls), 5)


# =============================================================================
# Coordinator Tests
# =============================================================================

class SubmitReviewTests(TestCase):
    """Tests for applying answers through the coordinator."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.item = VocabularyItem.objects.create(word='hello', category='GREETING')
        self.coordinator = LearningCoordinator(clock=fixed_clock())

    def test_first_exposure_creates_and_updates_record(self):
        record = self.coordinator.submit_review(self.user, self.item, True)
        self.assertEqual(record.mastery_level, 25)
        self.assertEqual(record.review_count, 1)
        self.assertEqual(record.version, 1)
        self.assertEqual(record.last_reviewed_at, NOW)
        self.assertEqual(record.next_review_at, NOW + timedelta(hours=11))

        stored = MemoryRecord.objects.get(user=self.user, item=self.item)
        self.assertEqual(stored.mastery_level, 25)
        self.assertEqual(stored.next_review_at, NOW + timedelta(hours=11))

    def test_review_is_logged_for_analytics(self):
        self.coordinator.submit_review(self.user, self.item, True)
        self.coordinator.submit_review(self.user, self.item, False)

        logs = list(ActivityLog.objects.filter(user=self.user).order_by('pk'))
        self.assertEqual(len(logs), 2)
        self.assertEqual(logs[0].activity_type, ActivityLog.ActivityType.REVIEW)
        self.assertEqual(logs[0].topic, 'GREETING')
        self.assertEqual((logs[0].mastery_before, logs[0].mastery_after), (0, 25))
        self.assertEqual(logs[0].interval_hours, 11)
        self.assertFalse(logs[1].is_correct)
        self.assertEqual((logs[1].mastery_before, logs[1].mastery_after), (25, 17))

    def test_lost_races_surface_conflict_and_roll_back(self):
        with patch('vocab.store.update_record', side_effect=ConcurrencyConflict('stale')) as update:
            with self.assertRaises(ConcurrencyConflict):
                self.coordinator.submit_review(self.user, self.item, True)
        self.assertEqual(update.call_count, 3)
        self.assertFalse(MemoryRecord.objects.exists())
        self.assertFalse(ActivityLog.objects.exists())

    def test_locked_database_surfaces_conflict(self):
        with patch('vocab.store.update_record', side_effect=OperationalError('database is locked')):
            with self.assertRaises(ConcurrencyConflict):
                self.coordinator.submit_review(self.user, self.item, True)
        self.assertFalse(MemoryRecord.objects.exists())
        self.assertFalse(ActivityLog.objects.exists())

    @override_settings(VOCAB_MAX_UPDATE_ATTEMPTS=0)
    def test_zero_attempts_setting_rejected(self):
        with self.assertRaises(InvalidState):
            self.coordinator.submit_review(self.user, self.item, True)
        self.assertFalse(ActivityLog.objects.exists())

    def test_achievements_run_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.coordinator.submit_review(self.user, self.item, True)
        self.assertEqual(len(callbacks), 1)
        self.assertEqual(LearningStreak.objects.get(user=self.user).current_streak, 1)
        self.assertTrue(
            UserAchievement.objects.filter(user=self.user, achievement__code='first_review').exists()
        )

    def test_failing_receiver_does_not_undo_review(self):
        with patch('vocab.achievements.update_streak', side_effect=RuntimeError('boom')):
            with self.assertLogs('vocab.services', level='ERROR'):
                with self.captureOnCommitCallbacks(execute=True):
                    record = self.coordinator.submit_review(self.user, self.item, True)
        self.assertEqual(MemoryRecord.objects.get(pk=record.pk).mastery_level, 25)
        self.assertFalse(UserAchievement.objects.exists())

    @override_settings(VOCAB_DUE_REVIEW_LIMIT=2)
    def test_due_reviews_default_limit_from_settings(self):
        for item in make_items(4):
            MemoryRecord.objects.create(user=self.user, item=item, next_review_at=NOW - timedelta(hours=1))
        self.assertEqual(len(self.coordinator.get_due_reviews(self.user)), 2)
        self.assertEqual(len(self.coordinator.get_due_reviews(self.user, limit=3)), 3)


class RendezvousScheduler:
    """srs wrapper that holds each thread's first review until all have read the record."""

    def __init__(self, parties=2):
        self.barrier = threading.Barrier(parties, timeout=10)
        self.local = threading.local()

    def calculate_review(self, **kwargs):
        if not getattr(self.local, 'waited', False):
            self.local.waited = True
            self.barrier.wait()
        return srs.calculate_review(**kwargs)


class ConcurrentReviewTests(TransactionTestCase):
    """Two answers for the same word submitted at the same moment, on real connections."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.item = VocabularyItem.objects.create(word='hello', category='GREETING')
        store.create_record(self.user, self.item, NOW)

    @override_settings(VOCAB_MAX_UPDATE_ATTEMPTS=10)
    def test_simultaneous_reviews_never_lose_an_update(self):
        """Both threads read version 0; each ends committed or with ConcurrencyConflict."""
        coordinator = LearningCoordinator(scheduler=RendezvousScheduler(), clock=fixed_clock())
        outcomes = []

        def review(is_correct):
            try:
                coordinator.submit_review(self.user, self.item, is_correct)
                outcomes.append('ok')
            except ConcurrencyConflict:
                outcomes.append('conflict')
            except Exception as exc:
                outcomes.append(f'{type(exc).__name__}: {exc}')
            finally:
                connections.close_all()

        threads = [threading.Thread(target=review, args=(answer,)) for answer in (True, False)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(len(outcomes), 2)
        for outcome in outcomes:
            self.assertIn(outcome, ('ok', 'conflict'))
        self.assertIn('ok', outcomes)

        committed = outcomes.count('ok')
        record = MemoryRecord.objects.get(user=self.user, item=self.item)
        self.assertEqual(record.review_count, committed)
        self.assertEqual(record.version, committed)
        self.assertEqual(
            ActivityLog.objects.filter(user=self.user, activity_type='REVIEW').count(), committed
        )


class StudyPlanServiceTests(TestCase):
    """Tests for plan generation, supersession and expiry."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.profile = LearningProfile.objects.create(
            user=self.user,
            goal_type=LearningProfile.GoalType.TRAVEL,
            target_date=TODAY + timedelta(days=4),
            target_word_count=40,
        )
        self.items = make_items(12, category='GREETING')
        self.coordinator = LearningCoordinator(clock=fixed_clock())

    def test_generates_plan_with_todays_tasks(self):
        plan = self.coordinator.get_or_generate_plan(self.user)
        self.assertEqual(plan.status, StudyPlan.Status.ACTIVE)
        self.assertEqual(plan.daily_task_count, 10)
        self.assertEqual(plan.path_item_ids(), [item.pk for item in self.items])

        tasks = list(plan.tasks.filter(task_date=TODAY))
        self.assertEqual([task.task_type for task in tasks], [DailyTask.TaskType.VOCABULARY])
        self.assertEqual(tasks[0].item_ids, [item.pk for item in self.items[:10]])
        self.assertEqual(tasks[0].total_items, 10)

    def test_repeated_calls_reuse_plan_and_tasks(self):
        first = self.coordinator.get_or_generate_plan(self.user)
        second = self.coordinator.get_or_generate_plan(self.user)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(StudyPlan.objects.filter(user=self.user).count(), 1)
        self.assertEqual(DailyTask.objects.filter(user=self.user).count(), 1)

    def test_regenerate_supersedes_current_plan(self):
        old = self.coordinator.get_or_generate_plan(self.user)
        new = self.coordinator.regenerate_plan(self.user)
        old.refresh_from_db()
        self.assertNotEqual(old.pk, new.pk)
        self.assertEqual(old.status, StudyPlan.Status.SUPERSEDED)
        self.assertEqual(old.ended_at, NOW)
        self.assertEqual(StudyPlan.objects.active().filter(user=self.user).count(), 1)

    def test_passed_target_date_rejected(self):
        self.profile.target_date = TODAY - timedelta(days=1)
        self.profile.save()
        with self.assertRaises(InvalidState):
            self.coordinator.get_or_generate_plan(self.user)
        self.assertFalse(StudyPlan.objects.exists())

    def test_expired_plan_completed_and_replaced(self):
        self.profile.target_date = None
        self.profile.target_word_count = 300
        self.profile.save()
        expired = StudyPlan.objects.create(
            user=self.user, goal_type='TRAVEL', target_date=TODAY - timedelta(days=1),
            target_word_count=300, daily_task_count=10,
        )

        plan = self.coordinator.get_or_generate_plan(self.user)
        expired.refresh_from_db()
        self.assertEqual(expired.status, StudyPlan.Status.COMPLETED)
        self.assertEqual(plan.target_date, TODAY + timedelta(days=30))
        self.assertEqual(plan.daily_task_count, 10)

    def test_get_current_plan_without_plan(self):
        with self.assertRaises(NotFound):
            self.coordinator.get_current_plan(self.user)

    def test_generation_retried_when_database_locked(self):
        real_create = LearningCoordinator._create_plan
        calls = []

        def locked_once(coordinator, user, profile):
            calls.append(user.pk)
            if len(calls) == 1:
                raise OperationalError('database is locked')
            return real_create(coordinator, user, profile)

        with patch.object(LearningCoordinator, '_create_plan', autospec=True, side_effect=locked_once):
            plan = self.coordinator.get_or_generate_plan(self.user)
        self.assertEqual(len(calls), 2)
        self.assertEqual(StudyPlan.objects.active().get(user=self.user).pk, plan.pk)
        self.assertEqual(plan.tasks.count(), 1)

    def test_persistent_lock_surfaces_conflict(self):
        old = self.coordinator.get_or_generate_plan(self.user)
        with patch.object(LearningCoordinator, '_create_plan',
                          side_effect=OperationalError('database is locked')) as create:
            with self.assertRaises(ConcurrencyConflict):
                self.coordinator.regenerate_plan(self.user)
        self.assertEqual(create.call_count, 3)
        old.refresh_from_db()
        self.assertEqual(old.status, StudyPlan.Status.ACTIVE)

    def test_review_and_weak_area_tasks(self):
        MemoryRecord.objects.create(user=self.user, item=self.items[0], mastery_level=40,
                                    next_review_at=NOW - timedelta(hours=2))
        MemoryRecord.objects.create(user=self.user, item=self.items[1], mastery_level=5,
                                    next_review_at=NOW + timedelta(hours=2))
        self.profile.weak_areas = [{'type': 'GREETING', 'error_rate': 0.6, 'total': 5}]
        self.profile.save()

        plan = self.coordinator.get_or_generate_plan(self.user)
        tasks = {task.task_type: task for task in plan.tasks.filter(task_date=TODAY)}

        self.assertNotIn(self.items[0].pk, tasks['VOCABULARY'].item_ids)
        self.assertNotIn(self.items[1].pk, tasks['VOCABULARY'].item_ids)
        self.assertEqual(tasks['REVIEW'].item_ids, [self.items[0].pk])
        self.assertEqual(tasks['WEAK_AREA'].topic, 'GREETING')
        self.assertEqual(tasks['WEAK_AREA'].item_ids, [self.items[1].pk, self.items[0].pk])


class DailyTaskServiceTests(TestCase):
    """Tests for task completion and plan adjustment."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.other = User.objects.create_user(username='other', password='testpass123')
        LearningProfile.objects.create(user=self.user)
        self.plan = StudyPlan.objects.create(
            user=self.user, goal_type='DAILY', target_date=TODAY + timedelta(days=20),
            target_word_count=400, daily_task_count=20,
        )
        self.coordinator = LearningCoordinator(clock=fixed_clock())

    def task(self, days_ago, total=10, completed=0, task_type=DailyTask.TaskType.VOCABULARY):
        return DailyTask.objects.create(
            plan=self.plan, user=self.user, task_date=TODAY - timedelta(days=days_ago),
            task_type=task_type, total_items=total, completed_items=completed,
        )

    def test_complete_task_states(self):
        task = self.task(0)
        task = self.coordinator.complete_task(self.user, task.pk, 4)
        self.assertEqual(task.status, DailyTask.Status.IN_PROGRESS)
        task = self.coordinator.complete_task(self.user, task.pk, 15)
        self.assertEqual(task.completed_items, 10)
        self.assertEqual(task.status, DailyTask.Status.COMPLETED)
        self.assertEqual(task.completed_at, NOW)

    def test_complete_task_rejects_negative_and_foreign(self):
        task = self.task(0)
        with self.assertRaises(InvalidState):
            self.coordinator.complete_task(self.user, task.pk, -1)
        with self.assertRaises(NotFound):
            self.coordinator.complete_task(self.other, task.pk, 1)

    def test_completion_rate(self):
        self.task(1, completed=10)
        self.task(2, completed=5, task_type=DailyTask.TaskType.REVIEW)
        rate = self.coordinator.get_completion_rate(self.user, TODAY - timedelta(days=7), TODAY)
        self.assertEqual(rate, 0.75)
        self.assertIsNone(self.coordinator.get_completion_rate(self.other, TODAY, TODAY))

    def test_high_completion_raises_daily_count(self):
        self.task(1, completed=10)
        self.task(2, completed=9)
        plan = self.coordinator.adjust_plan(self.user)
        self.assertEqual(plan.daily_task_count, 22)
        self.assertEqual(plan.completion_rate, 0.95)
        self.assertEqual(plan.adjustment_history, [
            {'date': TODAY.isoformat(), 'reason': 'high completion', 'from': 20, 'to': 22},
        ])

    def test_todays_tasks_not_judged_yet(self):
        self.task(0, completed=0)
        plan = self.coordinator.adjust_plan(self.user)
        self.assertEqual(plan.daily_task_count, 20)
        self.assertEqual(plan.adjustment_history, [])

    def test_on_track_keeps_count_without_history(self):
        self.task(1, completed=7)
        plan = self.coordinator.adjust_plan(self.user)
        self.assertEqual(plan.daily_task_count, 20)
        self.assertEqual(plan.completion_rate, 0.7)
        self.assertEqual(plan.adjustment_history, [])


class ProfileServiceTests(TestCase):
    """Tests for profile refresh and activity logging."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.coordinator = LearningCoordinator(clock=fixed_clock())

    def test_refresh_profile_from_recent_activity(self):
        items = make_items(40)
        for day in range(4):
            for item in items[day * 10:(day + 1) * 10]:
                ActivityLog.objects.create(
                    user=self.user, activity_type='REVIEW', item=item, topic='CORE',
                    is_correct=True, occurred_at=NOW - timedelta(days=day + 1),
                )
        for is_correct in (False, False, False, True):
            ActivityLog.objects.create(
                user=self.user, activity_type='QUIZ', topic='DINING',
                is_correct=is_correct, occurred_at=NOW - timedelta(days=1),
            )

        profile = self.coordinator.refresh_profile(self.user)
        self.assertEqual(profile.average_daily_words, 10.0)
        self.assertEqual(profile.learning_speed_trend, LearningProfile.SpeedTrend.NORMAL)
        self.assertEqual(profile.weak_areas, [{'type': 'DINING', 'error_rate': 0.75, 'total': 4}])
        self.assertEqual(profile.preferred_learning_times['morning'], 1.0)
        self.assertEqual(profile.average_accuracy, round(41 / 44, 4))
        self.assertEqual(profile.last_analysis_at, NOW)

    def test_fast_learner_detected(self):
        for item in make_items(20):
            ActivityLog.objects.create(
                user=self.user, activity_type='REVIEW', item=item, is_correct=True,
                occurred_at=NOW - timedelta(hours=2),
            )
        profile = self.coordinator.refresh_profile(self.user)
        self.assertEqual(profile.learning_speed_trend, LearningProfile.SpeedTrend.FAST)

    def test_old_activity_outside_window_ignored(self):
        ActivityLog.objects.create(
            user=self.user, activity_type='QUIZ', topic='CORE', is_correct=False,
            occurred_at=NOW - timedelta(days=45),
        )
        profile = self.coordinator.refresh_profile(self.user)
        self.assertEqual(profile.weak_areas, [])
        self.assertIsNone(profile.average_accuracy)

    def test_update_profile_regenerates_plan(self):
        make_items(5, category='GREETING')
        old = self.coordinator.get_or_generate_plan(self.user)

        profile, plan = self.coordinator.update_profile(
            self.user,
            goal_type=LearningProfile.GoalType.TRAVEL,
            target_date=TODAY + timedelta(days=10),
            target_word_count=200,
        )
        old.refresh_from_db()
        self.assertEqual(old.status, StudyPlan.Status.SUPERSEDED)
        self.assertEqual(profile.goal_type, 'TRAVEL')
        self.assertEqual(LearningProfile.objects.get(user=self.user).target_word_count, 200)
        self.assertEqual(plan.goal_type, 'TRAVEL')
        self.assertEqual(plan.target_date, TODAY + timedelta(days=10))
        self.assertEqual(plan.daily_task_count, 20)
        self.assertEqual(plan.learning_path[0]['category'], 'GREETING')
        self.assertEqual(StudyPlan.objects.active().get(user=self.user).pk, plan.pk)

    def test_update_profile_rejects_invalid_values(self):
        """Nothing is saved and no plan is generated for a bad value."""
        invalid = [
            {'goal_type': 'SPACE'},
            {'proficiency_level': 'GURU'},
            {'target_word_count': -5},
            {'target_word_count': '100'},
            {'user_timezone': 'Mars/Olympus'},
            {'target_date': TODAY},
            {'target_date': TODAY - timedelta(days=1)},
        ]
        for changes in invalid:
            with self.assertRaises(InvalidState, msg=f"{changes!r} should be rejected"):
                self.coordinator.update_profile(self.user, **changes)
        self.assertFalse(StudyPlan.objects.exists())
        profile = LearningProfile.objects.filter(user=self.user).first()
        self.assertEqual(profile.goal_type if profile else 'DAILY', 'DAILY')
        self.assertEqual(profile.user_timezone if profile else 'UTC', 'UTC')

    def test_update_profile_target_date_checked_in_new_timezone(self):
        """12:00 UTC on the 10th is already the 11th at UTC+14."""
        noon = datetime(2024, 3, 10, 12, 0, tzinfo=dt_timezone.utc)
        coordinator = LearningCoordinator(clock=fixed_clock(noon))
        with self.assertRaises(InvalidState):
            coordinator.update_profile(
                self.user, target_date=date(2024, 3, 11), user_timezone='Pacific/Kiritimati',
            )
        _, plan = coordinator.update_profile(self.user, target_date=date(2024, 3, 11))
        self.assertEqual(plan.target_date, date(2024, 3, 11))

    def test_insight_report(self):
        LearningProfile.objects.create(
            user=self.user,
            preferred_learning_times={'morning': 0.2, 'afternoon': 0.7, 'evening': 0.1},
            weak_areas=[{'type': 'DINING', 'error_rate': 0.75, 'total': 4}],
            average_daily_words=12.5,
            average_accuracy=0.8,
            last_analysis_at=NOW,
        )
        report = self.coordinator.get_insight_report(self.user)
        self.assertEqual(report['best_learning_time'], 'afternoon')
        self.assertEqual(report['time_preferences']['morning'], 0.2)
        self.assertEqual(report['weak_areas'][0]['type'], 'DINING')
        self.assertEqual(report['average_daily_words'], 12.5)
        self.assertEqual(report['learning_speed_trend'], 'NORMAL')
        self.assertEqual(report['last_analysis_at'], NOW.isoformat())

    def test_insight_report_without_profile_writes_nothing(self):
        report = self.coordinator.get_insight_report(self.user)
        self.assertIsNone(report['best_learning_time'])
        self.assertIsNone(report['last_analysis_at'])
        self.assertEqual(report['weak_areas'], [])
        self.assertFalse(LearningProfile.objects.exists())

    def test_record_activity(self):
        log = self.coordinator.record_activity(self.user, 'QUIZ', is_correct=False, topic='IDIOMS')
        self.assertEqual(log.occurred_at, NOW)
        self.assertEqual(log.topic, 'IDIOMS')
        with self.assertRaises(InvalidState):
            self.coordinator.record_activity(self.user, 'DANCE')

    def test_progress_curve_for_learner(self):
        item = VocabularyItem.objects.create(word='hello', category='GREETING')
        self.coordinator.submit_review(self.user, item, True)
        curve = self.coordinator.get_progress_curve(self.user, 2)
        self.assertEqual(curve.dates, [(TODAY - timedelta(days=1)).isoformat(), TODAY.isoformat()])
        self.assertEqual(curve.cumulative_words, [0, 1])
        self.assertEqual(curve.accuracy_rates, [0.0, 1.0])

    def test_request_content_wraps_failures(self):
        def broken(**kwargs):
            raise RuntimeError('timeout')

        with self.assertRaises(UpstreamUnavailable):
            self.coordinator.request_content(broken, word='hello')
        self.assertEqual(
            self.coordinator.request_content(lambda **kwargs: kwargs['word'].upper(), word='hi'),
            'HI',
        )

    def test_erase_user_data(self):
        item = VocabularyItem.objects.create(word='hello', category='GREETING')
        self.coordinator.submit_review(self.user, item, True)
        self.coordinator.erase_user_data(self.user)
        self.assertFalse(MemoryRecord.objects.filter(user=self.user).exists())
        self.assertFalse(ActivityLog.objects.filter(user=self.user).exists())
        self.assertTrue(VocabularyItem.objects.filter(pk=item.pk).exists())


# =============================================================================
# Achievement Tests
# =============================================================================

class AchievementTests(TestCase):
    """Tests for badges and streak bookkeeping."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.item = VocabularyItem.objects.create(word='hello', category='GREETING')

    def test_catalog_sync(self):
        achievements.sync_achievement_catalog()
        achievements.sync_achievement_catalog()
        self.assertEqual(Achievement.objects.count(), len(achievements.ACHIEVEMENTS))

    def test_first_review_granted_once(self):
        MemoryRecord.objects.create(user=self.user, item=self.item, review_count=1, correct_count=1)
        self.assertEqual(achievements.check_and_grant_achievements(self.user, NOW), ['first_review'])
        self.assertEqual(achievements.check_and_grant_achievements(self.user, NOW), [])
        self.assertEqual(UserAchievement.objects.get(user=self.user).unlocked_at, NOW)

    def test_streak_badge(self):
        LearningStreak.objects.create(user=self.user, current_streak=7, last_active_date=TODAY)
        awarded = achievements.check_and_grant_achievements(self.user, NOW)
        self.assertIn('streak_7', awarded)
        self.assertNotIn('streak_30', awarded)

    def test_accuracy_badge_needs_enough_answers(self):
        record = MemoryRecord.objects.create(
            user=self.user, item=self.item, review_count=10, correct_count=10,
        )
        self.assertNotIn('accuracy_90', achievements.check_and_grant_achievements(self.user, NOW))

        record.review_count = 60
        record.correct_count = 57
        record.wrong_count = 3
        record.save()
        self.assertIn('accuracy_90', achievements.check_and_grant_achievements(self.user, NOW))

    def test_update_streak_uses_learner_local_date(self):
        """23:30 UTC on the 10th is already the 11th in Tokyo."""
        LearningProfile.objects.create(user=self.user, user_timezone='Asia/Tokyo')
        LearningStreak.objects.create(user=self.user, current_streak=3, last_active_date=date(2024, 3, 10))
        streak = achievements.update_streak(self.user, datetime(2024, 3, 10, 23, 30, tzinfo=dt_timezone.utc))
        self.assertEqual(streak.current_streak, 4)
        self.assertEqual(streak.last_active_date, date(2024, 3, 11))


# =============================================================================
# View Tests
# =============================================================================

class ReviewViewTests(TestCase):
    """Tests for review endpoints."""

    def setUp(self):
        self.client = Client()
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.item = VocabularyItem.objects.create(word='hello', category='GREETING')
        self.client.login(username='testuser', password='testpass123')

    def post_review(self, body, pk=None):
        return self.client.post(
            reverse('submit_review', kwargs={'pk': pk or self.item.pk}),
            data=body if isinstance(body, str) else json.dumps(body),
            content_type='application/json'
        )

    def test_submit_review(self):
        response = self.post_review({'correct': True})
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertTrue(data['success'])
        self.assertEqual(data['record']['mastery_level'], 25)
        self.assertEqual(data['record']['word'], 'hello')

    def test_invalid_json(self):
        self.assertEqual(self.post_review('not json').status_code, 400)

    def test_missing_or_non_boolean_answer(self):
        self.assertEqual(self.post_review({}).status_code, 400)
        self.assertEqual(self.post_review({'correct': 'yes'}).status_code, 400)

    def test_unknown_item(self):
        self.assertEqual(self.post_review({'correct': True}, pk=99999).status_code, 404)

    def test_conflict_maps_to_409(self):
        with patch('vocab.store.update_record', side_effect=ConcurrencyConflict('stale')):
            response = self.post_review({'correct': True})
        self.assertEqual(response.status_code, 409)

    def test_locked_database_maps_to_409(self):
        with patch('vocab.store.update_record', side_effect=OperationalError('database is locked')):
            response = self.post_review({'correct': True})
        self.assertEqual(response.status_code, 409)
        self.assertFalse(MemoryRecord.objects.exists())

    def test_get_not_allowed(self):
        response = self.client.get(reverse('submit_review', kwargs={'pk': self.item.pk}))
        self.assertEqual(response.status_code, 405)

    def test_login_required(self):
        self.client.logout()
        response = self.post_review({'correct': True})
        self.assertEqual(response.status_code, 302)

    def test_due_reviews(self):
        MemoryRecord.objects.create(user=self.user, item=self.item,
                                    next_review_at=timezone.now() - timedelta(hours=1))
        response = self.client.get(reverse('due_reviews'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual([r['item'] for r in json.loads(response.content)['reviews']], [self.item.pk])

    def test_due_reviews_bad_limit(self):
        self.assertEqual(self.client.get(reverse('due_reviews'), {'limit': 0}).status_code, 400)
        self.assertEqual(self.client.get(reverse('due_reviews'), {'limit': 'ten'}).status_code, 400)


class PlanViewTests(TestCase):
    """Tests for plan, task and progress endpoints."""

    def setUp(self):
        self.client = Client()
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        make_items(12, category='CONVERSATION')
        self.client.login(username='testuser', password='testpass123')

    def test_current_plan_generated_on_first_use(self):
        response = self.client.get(reverse('current_plan'))
        self.assertEqual(response.status_code, 200)
        plan = json.loads(response.content)['plan']
        self.assertEqual(plan['goal_type'], 'DAILY')
        self.assertEqual(plan['daily_task_count'], 10)
        self.assertEqual(len(plan['tasks']), 1)
        self.assertEqual(plan['tasks'][0]['type'], 'VOCABULARY')

    def test_passed_target_date_is_bad_request(self):
        LearningProfile.objects.create(user=self.user, target_date=date(2000, 1, 1))
        self.assertEqual(self.client.get(reverse('current_plan')).status_code, 400)

    def test_regenerate_plan(self):
        first = json.loads(self.client.get(reverse('current_plan')).content)['plan']
        response = self.client.post(reverse('regenerate_plan'))
        self.assertEqual(response.status_code, 200)
        self.assertNotEqual(json.loads(response.content)['plan']['id'], first['id'])

    def test_complete_task(self):
        plan = json.loads(self.client.get(reverse('current_plan')).content)['plan']
        task_id = plan['tasks'][0]['id']
        response = self.client.post(
            reverse('complete_task', kwargs={'pk': task_id}),
            data=json.dumps({'completed_items': 10}),
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content)['task']['status'], 'COMPLETED')

    def test_complete_unknown_task(self):
        response = self.client.post(
            reverse('complete_task', kwargs={'pk': 99999}),
            data=json.dumps({'completed_items': 1}),
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 404)

    def test_statistics(self):
        response = self.client.get(reverse('statistics'))
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data['statistics']['total_words'], 0)
        self.assertEqual(data['current_streak'], 0)
        self.assertFalse(data['streak_at_risk'])
        self.assertEqual(data['achievements'], [])

    def test_read_endpoints_do_not_create_profile(self):
        """Statistics and progress are reads; a learner without a profile stays without one."""
        self.assertEqual(self.client.get(reverse('statistics')).status_code, 200)
        self.assertEqual(self.client.get(reverse('progress'), {'days': 7}).status_code, 200)
        self.assertEqual(self.client.get(reverse('profile')).status_code, 200)
        self.assertFalse(LearningProfile.objects.exists())

    def test_streak_at_risk_until_studied_today(self):
        today = timezone.now().date()
        LearningStreak.objects.create(
            user=self.user, current_streak=5, longest_streak=5, last_active_date=today - timedelta(days=1),
        )
        data = json.loads(self.client.get(reverse('statistics')).content)
        self.assertEqual(data['current_streak'], 5)
        self.assertTrue(data['streak_at_risk'])

    def test_plan_conflict_maps_to_409(self):
        with patch.object(LearningCoordinator, '_create_plan',
                          side_effect=OperationalError('database is locked')):
            response = self.client.get(reverse('current_plan'))
        self.assertEqual(response.status_code, 409)

    def test_progress(self):
        response = self.client.get(reverse('progress'), {'days': 7})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(json.loads(response.content)['dates']), 7)
        self.assertEqual(self.client.get(reverse('progress'), {'days': 0}).status_code, 400)

    def test_upstream_failure_maps_to_503(self):
        self.assertEqual(error_response(UpstreamUnavailable('down')).status_code, 503)


class ProfileViewTests(TestCase):
    """Tests for the learning profile endpoints."""

    def setUp(self):
        self.client = Client()
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        make_items(12, category='TRAVEL')
        self.client.login(username='testuser', password='testpass123')

    def post_update(self, body):
        return self.client.post(
            reverse('update_profile'),
            data=body if isinstance(body, str) else json.dumps(body),
            content_type='application/json'
        )

    def test_profile_insights(self):
        LearningProfile.objects.create(
            user=self.user,
            preferred_learning_times={'morning': 0.1, 'afternoon': 0.3, 'evening': 0.6},
            learning_speed_trend=LearningProfile.SpeedTrend.FAST,
        )
        response = self.client.get(reverse('profile'))
        self.assertEqual(response.status_code, 200)
        profile = json.loads(response.content)['profile']
        self.assertEqual(profile['best_learning_time'], 'evening')
        self.assertEqual(profile['learning_speed_trend'], 'FAST')

    def test_update_profile_returns_new_plan(self):
        old = json.loads(self.client.get(reverse('current_plan')).content)['plan']
        target = (timezone.now().date() + timedelta(days=20)).isoformat()

        response = self.post_update({'goal_type': 'TRAVEL', 'target_date': target, 'target_word_count': 400})
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertTrue(data['success'])
        self.assertEqual(data['profile']['goal_type'], 'TRAVEL')
        self.assertEqual(data['plan']['goal_type'], 'TRAVEL')
        self.assertEqual(data['plan']['target_date'], target)
        self.assertEqual(data['plan']['daily_task_count'], 20)
        self.assertNotEqual(data['plan']['id'], old['id'])
        self.assertEqual(StudyPlan.objects.get(pk=old['id']).status, StudyPlan.Status.SUPERSEDED)

    def test_update_profile_bad_input(self):
        self.assertEqual(self.post_update('not json').status_code, 400)
        self.assertEqual(self.post_update({}).status_code, 400)
        self.assertEqual(self.post_update({'target_date': 'next week'}).status_code, 400)
        self.assertEqual(self.post_update({'user_timezone': 'Mars/Olympus'}).status_code, 400)
        self.assertEqual(self.post_update({'goal_type': 'SPACE'}).status_code, 400)
        self.assertFalse(StudyPlan.objects.exists())

    def test_update_profile_requires_post(self):
        self.assertEqual(self.client.get(reverse('update_profile')).status_code, 405)


# =============================================================================
# Management Command Tests
# =============================================================================

class RefreshStudyPlansCommandTests(TestCase):
    """Tests for the refresh_study_plans management command."""

    def setUp(self):
        self.user = User.objects.create_user(username='testuser', password='testpass123')
        self.item = VocabularyItem.objects.create(word='hello', category='CONVERSATION')
        self.today = timezone.now().date()
        self.plan = StudyPlan.objects.create(
            user=self.user, goal_type='DAILY', target_date=self.today + timedelta(days=10),
            target_word_count=200, daily_task_count=20,
            learning_path=[{'category': 'CONVERSATION', 'item_ids': [self.item.pk]}],
        )
        DailyTask.objects.create(
            plan=self.plan, user=self.user, task_date=self.today - timedelta(days=1),
            task_type=DailyTask.TaskType.VOCABULARY, total_items=10, completed_items=10,
        )

    def test_dry_run_changes_nothing(self):
        out = StringIO()
        call_command('refresh_study_plans', '--dry-run', stdout=out)
        self.assertIn('[DRY RUN]', out.getvalue())
        self.plan.refresh_from_db()
        self.assertEqual(self.plan.daily_task_count, 20)
        self.assertFalse(LearningProfile.objects.exists())

    def test_refresh_adjusts_and_prepares_tomorrow(self):
        out = StringIO()
        call_command('refresh_study_plans', stdout=out)
        self.plan.refresh_from_db()
        self.assertEqual(self.plan.daily_task_count, 22)
        self.assertTrue(
            DailyTask.objects.filter(plan=self.plan, task_date=self.today + timedelta(days=1)).exists()
        )
        self.assertTrue(LearningProfile.objects.filter(user=self.user).exists())
        self.assertIn('Refreshed 1 plan(s)', out.getvalue())

    def test_finished_plan_completed(self):
        self.plan.target_date = self.today - timedelta(days=1)
        self.plan.save()
        call_command('refresh_study_plans', stdout=StringIO())
        self.plan.refresh_from_db()
        self.assertEqual(self.plan.status, StudyPlan.Status.COMPLETED)

    def test_unknown_user(self):
        with self.assertRaises(CommandError):
            call_command('refresh_study_plans', '--user', 'nobody', stdout=StringIO())

    def test_one_broken_learner_does_not_stop_the_batch(self):
        broken = User.objects.create_user(username='broken', password='testpass123')
        LearningProfile.objects.create(user=broken, user_timezone='Mars/Olympus')
        broken_plan = StudyPlan.objects.create(
            user=broken, goal_type='DAILY', target_date=self.today + timedelta(days=10),
            target_word_count=200, daily_task_count=20,
        )

        out, err = StringIO(), StringIO()
        with self.assertLogs('vocab.management.commands.refresh_study_plans', level='ERROR'):
            call_command('refresh_study_plans', stdout=out, stderr=err)

        self.plan.refresh_from_db()
        self.assertEqual(self.plan.daily_task_count, 22)
        broken_plan.refresh_from_db()
        self.assertEqual(broken_plan.status, StudyPlan.Status.ACTIVE)
        self.assertIn('broken', err.getvalue())
        self.assertIn('Refreshed 1 plan(s), completed 0, failed 1', out.getvalue())

    def test_refresh_syncs_achievement_catalog(self):
        call_command('refresh_study_plans', stdout=StringIO())
        self.assertEqual(Achievement.objects.count(), len(achievements.ACHIEVEMENTS))

    def test_dry_run_leaves_catalog_alone(self):
        call_command('refresh_study_plans', '--dry-run', stdout=StringIO())
        self.assertFalse(Achievement.objects.exists())
