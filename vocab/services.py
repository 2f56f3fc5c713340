"""
Learning coordinator.

The one place where the engines meet persistence. The spaced-repetition,
plan-optimizer and analytics engines are passed in as independent
capabilities (modules or any objects with the same functions), together with
a clock, so each can be replaced in tests.
"""

import logging
from datetime import timedelta
from functools import partial
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.db import IntegrityError, OperationalError, transaction
from django.utils import timezone

from . import analytics as analytics_engine
from . import planner as planner_engine
from . import srs as srs_engine
from . import store
from .exceptions import ConcurrencyConflict, InvalidState, NotFound, UpstreamUnavailable
from .models import ActivityLog, DailyTask, LearningProfile, MemoryRecord, StudyPlan, VocabularyItem
from .signals import review_completed

logger = logging.getLogger(__name__)

WEAK_AREA_TASK_SIZE = 5
FAST_SPEED_WORDS_PER_DAY = 20
SLOW_SPEED_WORDS_PER_DAY = 5


def _setting(name, default):
    return getattr(settings, name, default)


def _notify_review_completed(user, record, is_correct, occurred_at):
    """Dispatch review_completed; receiver failures are logged, never raised."""
    responses = review_completed.send_robust(
        sender=MemoryRecord,
        user=user,
        record=record,
        is_correct=is_correct,
        occurred_at=occurred_at,
    )
    for receiver, response in responses:
        if isinstance(response, Exception):
            logger.error(
                "review_completed receiver %r failed for user %s",
                receiver, user.pk, exc_info=response,
            )


class LearningCoordinator:
    """Entry points consumed by the views and management commands."""

    def __init__(self, scheduler=srs_engine, planner=planner_engine, analytics=analytics_engine, clock=None):
        self.scheduler = scheduler
        self.planner = planner
        self.analytics = analytics
        self.clock = clock or timezone.now

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def submit_review(self, user, item, is_correct):
        """
        Apply one answer to the learner's memory of `item`.

        The record is created on first exposure. Concurrent submissions for
        the same word never overwrite each other: the loser re-reads and
        re-applies its answer, and after the configured number of lost races
        (version moved or database locked) ConcurrencyConflict propagates.
        The record and its activity log entry commit together.
        Achievement/streak bookkeeping runs after commit and cannot undo the
        update.
        """
        now = self.clock()
        before = {}

        def apply(record):
            before['mastery'] = record.mastery_level
            result = self.scheduler.calculate_review(
                mastery_level=record.mastery_level,
                review_count=record.review_count,
                correct_count=record.correct_count,
                wrong_count=record.wrong_count,
                consecutive_wrong_count=record.consecutive_wrong_count,
                status=record.status,
                is_correct=is_correct,
                review_time=now,
            )
            record.apply_review(result)
            record.last_reviewed_at = now
            before['interval'] = result.interval_hours

        def log_review(record):
            ActivityLog.objects.create(
                user=user,
                activity_type=ActivityLog.ActivityType.REVIEW,
                item=item,
                topic=item.category,
                is_correct=is_correct,
                mastery_before=before['mastery'],
                mastery_after=record.mastery_level,
                interval_hours=before['interval'],
                occurred_at=now,
            )
            transaction.on_commit(partial(_notify_review_completed, user, record, is_correct, now))

        record = store.update_with_retry(user, item, apply, now, on_saved=log_review)

        logger.info(
            "Review: user=%s item=%s correct=%s mastery %s->%s status=%s next in %sh",
            user.pk, item.pk, is_correct, before['mastery'], record.mastery_level,
            record.status, before['interval'],
        )
        return record

    def get_due_reviews(self, user, limit=None):
        limit = limit if limit is not None else _setting('VOCAB_DUE_REVIEW_LIMIT', 20)
        return store.find_due_reviews(user, self.clock(), limit)

    def get_statistics(self, user):
        return store.get_statistics(user, self.clock())

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def record_activity(self, user, activity_type, is_correct=None, item=None, topic=''):
        """Log a non-review activity (quiz answer, dialogue turn, word lookup)."""
        if activity_type not in ActivityLog.ActivityType.values:
            raise InvalidState(f"Unknown activity type: {activity_type!r}")
        return ActivityLog.objects.create(
            user=user,
            activity_type=activity_type,
            item=item,
            topic=topic or (item.category if item else ''),
            is_correct=is_correct,
            occurred_at=self.clock(),
        )

    def get_recent_activity(self, user, days=None):
        days = days or _setting('VOCAB_ANALYSIS_WINDOW_DAYS', analytics_engine.DEFAULT_WINDOW_DAYS)
        since = self.clock() - timedelta(days=days)
        return list(ActivityLog.objects.filter(user=user, occurred_at__gte=since))

    def get_progress_curve(self, user, days):
        return self.analytics.generate_progress_curve(user, days, self.clock())

    def get_or_create_profile(self, user):
        profile, _ = LearningProfile.objects.get_or_create(user=user)
        return profile

    def refresh_profile(self, user):
        """Recompute the profile's derived signals from recent activity."""
        profile = self.get_or_create_profile(user)
        records = self.get_recent_activity(user)
        tz = profile.get_timezone()

        profile.preferred_learning_times = self.analytics.analyze_time_preferences(records, tz)
        profile.weak_areas = [area.as_dict() for area in self.analytics.identify_weak_areas(records)]
        speed = self.analytics.calculate_learning_speed(records, tz)
        profile.average_daily_words = round(speed, 2)

        graded = [r for r in records if r.is_correct is not None]
        profile.average_accuracy = (
            round(sum(1 for r in graded if r.is_correct) / len(graded), 4) if graded else None
        )

        if speed >= FAST_SPEED_WORDS_PER_DAY:
            profile.learning_speed_trend = LearningProfile.SpeedTrend.FAST
        elif records and speed < SLOW_SPEED_WORDS_PER_DAY:
            profile.learning_speed_trend = LearningProfile.SpeedTrend.SLOW
        else:
            profile.learning_speed_trend = LearningProfile.SpeedTrend.NORMAL

        profile.last_analysis_at = self.clock()
        profile.save()
        logger.debug(
            "Profile refreshed: user=%s speed=%.2f trend=%s weak=%s",
            user.pk, speed, profile.learning_speed_trend, profile.weak_topics(),
        )
        return profile
    def update_profile(self, user, goal_type=None, target_date=None, target_word_count=None,
                       proficiency_level=None, user_timezone=None):
        """
        Change the learner's goals and regenerate the study plan to match.

        Only the arguments that are given change. The new settings and the
        new plan commit together; an invalid value changes nothing.
        Returns (profile, plan).
        """
        changes = {}
        if goal_type is not None:
            if goal_type not in LearningProfile.GoalType.values:
                raise InvalidState(f"Unknown goal type: {goal_type!r}")
            changes['goal_type'] = goal_type
        if proficiency_level is not None:
            if proficiency_level not in VocabularyItem.Level.values:
                raise InvalidState(f"Unknown proficiency level: {proficiency_level!r}")
            changes['proficiency_level'] = proficiency_level
        if target_word_count is not None:
            if type(target_word_count) is not int or target_word_count < 0:
                raise InvalidState(f"target_word_count must be non-negative, got {target_word_count!r}")
            changes['target_word_count'] = target_word_count
        if user_timezone is not None:
            try:
                ZoneInfo(user_timezone)
            except (ZoneInfoNotFoundError, ValueError, TypeError):
                raise InvalidState(f"Unknown timezone: {user_timezone!r}") from None
            changes['user_timezone'] = user_timezone
        if target_date is not None:
            tz = ZoneInfo(changes.get('user_timezone') or self.get_or_create_profile(user).user_timezone)
            today = self.clock().astimezone(tz).date()
            if target_date <= today:
                raise InvalidState(f"Target date {target_date} must be after {today}")
            changes['target_date'] = target_date

        def apply_changes():
            profile = self._lock_profile(user)
            for field, value in changes.items():
                setattr(profile, field, value)
            profile.save()
            return profile, self._replace_plan(user)

        profile, plan = self._run_serialized(user, apply_changes)
        logger.info("Profile updated for user %s: %s", user.pk, sorted(changes))
        return profile, plan

    def get_insight_report(self, user):
        """
        The learner's analysis as last computed: time preferences and the best
        time to learn, weak areas, pace and accuracy. Reads only; a learner
        without a profile gets an empty report.
        """
        profile = LearningProfile.objects.filter(user=user).first() or LearningProfile(user=user)
        preferences = profile.preferred_learning_times or {}
        best_time = max(preferences, key=preferences.get) if any(preferences.values()) else None
        return {
            'goal_type': profile.goal_type,
            'proficiency_level': profile.proficiency_level,
            'target_date': profile.target_date.isoformat() if profile.target_date else None,
            'target_word_count': profile.target_word_count,
            'user_timezone': profile.user_timezone,
            'time_preferences': preferences,
            'best_learning_time': best_time,
            'weak_areas': profile.weak_areas,
            'average_daily_words': profile.average_daily_words,
            'average_accuracy': profile.average_accuracy,
            'learning_speed_trend': profile.learning_speed_trend,
            'last_analysis_at': profile.last_analysis_at.isoformat() if profile.last_analysis_at else None,
        }


    # ------------------------------------------------------------------
    # Study plans
    # ------------------------------------------------------------------

    def get_current_plan(self, user):
        plan = StudyPlan.objects.active().filter(user=user).first()
        if plan is None:
            raise NotFound(f"No active study plan for user {user.pk}")
        return plan

    def get_or_generate_plan(self, user):
        """
        Return the learner's active plan, generating one if there is none.

        Generation is serialized per learner by locking the profile row; the
        partial unique constraint on ACTIVE plans backs this up on databases
        without row locks.
        """
        def generate():
            profile = self._lock_profile(user)
            plan = self._current_plan_or_none(user)
            if plan is None:
                plan = self._create_plan(user, profile)
            self.generate_daily_tasks(plan, profile.get_local_date(self.clock()))
            return plan

        return self._run_serialized(user, generate)

    def regenerate_plan(self, user):
        """Supersede the active plan (if any) and generate a fresh one."""
        return self._run_serialized(user, partial(self._replace_plan, user))

    def _replace_plan(self, user):
        profile = self._lock_profile(user)
        current = self._current_plan_or_none(user)
        if current is not None:
            current.end(StudyPlan.Status.SUPERSEDED, self.clock())
            logger.info("Superseded study plan %s for user %s", current.pk, user.pk)
        plan = self._create_plan(user, profile)
        self.generate_daily_tasks(plan, profile.get_local_date(self.clock()))
        return plan

    def _run_serialized(self, user, operation):
        """
        Run `operation` in its own transaction, retrying when the database
        refuses a write because another writer holds the lock.
        """
        attempts = store.get_max_update_attempts()
        if attempts < 1:
            raise InvalidState(f"attempts must be at least 1, got {attempts!r}")
        for attempt in range(1, attempts + 1):
            try:
                with transaction.atomic():
                    return operation()
            except OperationalError as exc:
                if not store.is_lock_contention(exc):
                    raise
                logger.info(
                    "Plan generation for user %s hit a locked database (attempt %d/%d)",
                    user.pk, attempt, attempts,
                )
                if attempt == attempts:
                    raise ConcurrencyConflict(
                        f"Study plan of user {user.pk} is being changed by another request"
                    ) from exc

    def _lock_profile(self, user):
        LearningProfile.objects.get_or_create(user=user)
        return LearningProfile.objects.select_for_update().get(user=user)

    def _current_plan_or_none(self, user):
        plan = StudyPlan.objects.active().filter(user=user).first()
        if plan is not None and self.finish_plan_if_due(plan):
            return None
        return plan

    def finish_plan_if_due(self, plan):
        """Mark `plan` COMPLETED once its target date is behind the learner."""
        profile = self.get_or_create_profile(plan.user)
        if plan.target_date >= profile.get_local_date(self.clock()):
            return False
        plan.end(StudyPlan.Status.COMPLETED, self.clock())
        logger.info("Study plan %s for user %s reached its target date", plan.pk, plan.user_id)
        return True

    def _create_plan(self, user, profile):
        now = self.clock()
        today = profile.get_local_date(now)
        target_date = profile.target_date or today + timedelta(days=_setting('VOCAB_DEFAULT_PLAN_DAYS', 30))
        remaining_days = (target_date - today).days

        daily_count = self.planner.calculate_daily_task_count(
            profile, remaining_days, profile.target_word_count
        )
        path = self.planner.generate_learning_path(
            profile.goal_type,
            target_date,
            profile.proficiency_level,
            VocabularyItem.objects.only('id', 'category', 'level'),
            weak_topics=profile.weak_topics(),
        )

        try:
            with transaction.atomic():
                plan = StudyPlan.objects.create(
                    user=user,
                    goal_type=profile.goal_type,
                    target_date=target_date,
                    target_word_count=profile.target_word_count,
                    daily_task_count=daily_count,
                    current_phase=self.planner.determine_phase(profile),
                    learning_path=path.as_list(),
                )
        except IntegrityError:
            # Another request activated a plan first
            logger.info("Concurrent plan generation for user %s; using the winner", user.pk)
            return StudyPlan.objects.active().get(user=user)

        logger.info(
            "Generated study plan %s for user %s: goal=%s target=%s daily=%s words=%s",
            plan.pk, user.pk, plan.goal_type, target_date, daily_count, path.total_words,
        )
        return plan

    def generate_daily_tasks(self, plan, day):
        """
        Create the plan's tasks for `day`; existing tasks are returned as-is.

        VOCABULARY takes unseen words in path order, REVIEW the due queue,
        and WEAK_AREA the weakest known words of the worst topic.
        """
        existing = list(plan.tasks.filter(task_date=day))
        if existing:
            return existing

        user = plan.user
        count = plan.daily_task_count
        tasks = []

        started = set(MemoryRecord.objects.for_user(user).values_list('item_id', flat=True))
        new_ids = [pk for pk in plan.path_item_ids() if pk not in started][:count]
        if new_ids:
            tasks.append((DailyTask.TaskType.VOCABULARY, '', new_ids))

        due_ids = [record.item_id for record in store.find_due_reviews(user, self.clock(), count)]
        if due_ids:
            tasks.append((DailyTask.TaskType.REVIEW, '', due_ids))

        profile = self.get_or_create_profile(user)
        weak_topics = profile.weak_topics()
        if weak_topics:
            topic = weak_topics[0]
            weak_ids = list(
                MemoryRecord.objects.for_user(user)
                .filter(item__category=topic)
                .order_by('mastery_level', 'pk')
                .values_list('item_id', flat=True)[:WEAK_AREA_TASK_SIZE]
            )
            if weak_ids:
                tasks.append((DailyTask.TaskType.WEAK_AREA, topic, weak_ids))

        created = []
        try:
            with transaction.atomic():
                for task_type, topic, item_ids in tasks:
                    created.append(DailyTask.objects.create(
                        plan=plan,
                        user=user,
                        task_date=day,
                        task_type=task_type,
                        topic=topic,
                        item_ids=item_ids,
                        total_items=len(item_ids),
                    ))
        except IntegrityError:
            return list(plan.tasks.filter(task_date=day))

        logger.debug("Generated %d tasks for plan %s on %s", len(created), plan.pk, day)
        return created

    def complete_task(self, user, task_id, completed_items):
        try:
            task = DailyTask.objects.get(pk=task_id, user=user)
        except DailyTask.DoesNotExist:
            raise NotFound(f"No task {task_id} for user {user.pk}") from None
        if completed_items < 0:
            raise InvalidState(f"completed_items must be non-negative, got {completed_items}")

        task.completed_items = min(completed_items, task.total_items)
        if task.completed_items >= task.total_items:
            task.status = DailyTask.Status.COMPLETED
            task.completed_at = self.clock()
        elif task.completed_items > 0:
            task.status = DailyTask.Status.IN_PROGRESS
        else:
            task.status = DailyTask.Status.PENDING
        task.save()
        return task

    def get_completion_rate(self, user, start, end):
        """Completed / total items over tasks dated start..end, None without tasks."""
        tasks = DailyTask.objects.filter(user=user, task_date__gte=start, task_date__lte=end)
        total = sum(task.total_items for task in tasks)
        if total == 0:
            return None
        return sum(task.completed_items for task in tasks) / total

    def adjust_plan(self, user):
        """
        Feed recent completion back into the plan's daily task count.

        Uses the tasks of the last few days before today; with no tasks to
        judge by, the plan is left unchanged.
        """
        plan = self.get_current_plan(user)
        profile = self.get_or_create_profile(user)
        today = profile.get_local_date(self.clock())
        window = _setting('VOCAB_COMPLETION_WINDOW_DAYS', 7)

        rate = self.get_completion_rate(user, today - timedelta(days=window), today - timedelta(days=1))
        if rate is None:
            logger.debug("No recent tasks for user %s; plan %s unchanged", user.pk, plan.pk)
            return plan

        old_count = plan.daily_task_count
        new_count = self.planner.adjust_task_difficulty(rate, old_count)
        plan.completion_rate = round(rate, 4)
        if new_count != old_count:
            plan.record_adjustment(today, self.planner.describe_adjustment(rate), old_count, new_count)
            plan.daily_task_count = new_count
        plan.save()

        logger.info(
            "Plan %s adjusted for user %s: completion=%.2f daily %s->%s",
            plan.pk, user.pk, rate, old_count, new_count,
        )
        return plan

    # ------------------------------------------------------------------
    # Collaborators & erasure
    # ------------------------------------------------------------------

    def request_content(self, generate, **kwargs):
        """
        Call the content-generation collaborator.

        Any failure surfaces as UpstreamUnavailable; nothing in the learning
        state is written before or after the call.
        """
        try:
            return generate(**kwargs)
        except Exception as exc:
            logger.warning("Content generation failed: %s", exc)
            raise UpstreamUnavailable(str(exc)) from exc

    def erase_user_data(self, user):
        """Remove all learning state of a learner."""
        with transaction.atomic():
            deleted = store.delete_user_records(user)
            ActivityLog.objects.filter(user=user).delete()
            StudyPlan.objects.filter(user=user).delete()
            LearningProfile.objects.filter(user=user).delete()
        return deleted
