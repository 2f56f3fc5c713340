import zoneinfo
from datetime import timedelta

from django.db import models
from django.db.models import Q
from django.contrib.auth.models import User
from django.utils import timezone

from . import srs


class VocabularyItem(models.Model):
    """A word in the shared vocabulary pool."""

    class Level(models.TextChoices):
        BEGINNER = 'BEGINNER', 'Beginner'
        INTERMEDIATE = 'INTERMEDIATE', 'Intermediate'
        ADVANCED = 'ADVANCED', 'Advanced'

    word = models.CharField(max_length=200, unique=True)
    definition = models.TextField(blank=True)
    category = models.CharField(max_length=50, db_index=True)  # e.g. CORE, GREETING, MEETING
    level = models.CharField(max_length=20, choices=Level.choices, default=Level.BEGINNER)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return self.word


class MemoryRecordQuerySet(models.QuerySet):

    def for_user(self, user):
        return self.filter(user=user)

    def due(self, now):
        """Due-only queue: most overdue first, weaker words first on ties."""
        return self.filter(next_review_at__lte=now).order_by('next_review_at', 'mastery_level', 'pk')

    def mastered(self):
        return self.filter(status=MemoryRecord.Status.MASTERED)


class MemoryRecord(models.Model):
    """Mastery state of one word for one learner."""

    class Status(models.TextChoices):
        LEARNING = srs.STATUS_LEARNING, 'Learning'
        MASTERED = srs.STATUS_MASTERED, 'Mastered'
        FORGOTTEN = srs.STATUS_FORGOTTEN, 'Forgotten'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='memory_records')
    item = models.ForeignKey(VocabularyItem, on_delete=models.CASCADE, related_name='memory_records')

    mastery_level = models.PositiveSmallIntegerField(default=0)  # 0-100
    review_count = models.PositiveIntegerField(default=0)
    correct_count = models.PositiveIntegerField(default=0)
    wrong_count = models.PositiveIntegerField(default=0)
    consecutive_wrong_count = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.LEARNING)
    next_review_at = models.DateTimeField(default=timezone.now)
    last_reviewed_at = models.DateTimeField(null=True, blank=True)

    # Bumped on every successful update; stale writers lose
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = MemoryRecordQuerySet.as_manager()

    class Meta:
        ordering = ['next_review_at']
        constraints = [
            models.UniqueConstraint(fields=['user', 'item'], name='unique_memory_record_per_item'),
        ]
        indexes = [
            models.Index(fields=['user', 'next_review_at', 'mastery_level'], name='memory_record_due_idx'),
        ]

    def __str__(self):
        return f"{self.item} ({self.mastery_level}) for {self.user.username}"

    def apply_review(self, result):
        """Copy an srs.ReviewResult onto this record (not saved)."""
        self.mastery_level = result.mastery_level
        self.review_count = result.review_count
        self.correct_count = result.correct_count
        self.wrong_count = result.wrong_count
        self.consecutive_wrong_count = result.consecutive_wrong_count
        self.status = result.status
        self.next_review_at = result.next_review_at


class ActivityLog(models.Model):
    """One completed learning activity, the input of learning analytics."""

    class ActivityType(models.TextChoices):
        REVIEW = 'REVIEW', 'Review'
        QUIZ = 'QUIZ', 'Quiz'
        DIALOGUE = 'DIALOGUE', 'Dialogue'
        WORD_QUERY = 'WORD_QUERY', 'Word Query'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='activity_logs')
    activity_type = models.CharField(max_length=20, choices=ActivityType.choices)
    item = models.ForeignKey(
        VocabularyItem, on_delete=models.SET_NULL, null=True, blank=True, related_name='activity_logs'
    )
    topic = models.CharField(max_length=50, blank=True)
    is_correct = models.BooleanField(null=True, blank=True)  # None when not graded
    mastery_before = models.PositiveSmallIntegerField(null=True, blank=True)
    mastery_after = models.PositiveSmallIntegerField(null=True, blank=True)
    interval_hours = models.PositiveIntegerField(null=True, blank=True)
    occurred_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-occurred_at']
        indexes = [
            models.Index(fields=['user', 'occurred_at'], name='activity_user_time_idx'),
        ]

    def __str__(self):
        return f"{self.activity_type} by {self.user.username} at {self.occurred_at}"


class LearningProfile(models.Model):
    """Learner goals plus the signals derived from their activity."""

    class GoalType(models.TextChoices):
        EXAM = 'EXAM', 'Exam'
        TRAVEL = 'TRAVEL', 'Travel'
        BUSINESS = 'BUSINESS', 'Business'
        DAILY = 'DAILY', 'Daily'

    class SpeedTrend(models.TextChoices):
        FAST = 'FAST', 'Fast'
        NORMAL = 'NORMAL', 'Normal'
        SLOW = 'SLOW', 'Slow'

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='learning_profile')
    proficiency_level = models.CharField(
        max_length=20,
        choices=VocabularyItem.Level.choices,
        default=VocabularyItem.Level.BEGINNER
    )
    goal_type = models.CharField(max_length=20, choices=GoalType.choices, default=GoalType.DAILY)
    target_date = models.DateField(null=True, blank=True)
    target_word_count = models.PositiveIntegerField(default=300)
    user_timezone = models.CharField(max_length=64, default='UTC')

    # Derived by learning analytics
    preferred_learning_times = models.JSONField(default=dict, blank=True)
    weak_areas = models.JSONField(default=list, blank=True)
    average_daily_words = models.FloatField(default=0.0)
    average_accuracy = models.FloatField(null=True, blank=True)
    learning_speed_trend = models.CharField(
        max_length=10,
        choices=SpeedTrend.choices,
        default=SpeedTrend.NORMAL
    )
    last_analysis_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Learning profile for {self.user.username}"

    def get_timezone(self):
        return zoneinfo.ZoneInfo(self.user_timezone)

    def get_local_date(self, now):
        """The calendar date of `now` in the learner's timezone."""
        return now.astimezone(self.get_timezone()).date()

    def weak_topics(self):
        return [area['type'] for area in self.weak_areas]


class StudyPlanQuerySet(models.QuerySet):

    def active(self):
        return self.filter(status=StudyPlan.Status.ACTIVE)


class StudyPlan(models.Model):
    """A learner's multi-day plan. At most one is ACTIVE per learner."""

    class Status(models.TextChoices):
        ACTIVE = 'ACTIVE', 'Active'
        SUPERSEDED = 'SUPERSEDED', 'Superseded'
        COMPLETED = 'COMPLETED', 'Completed'

    class Phase(models.TextChoices):
        BEGINNER = 'BEGINNER', 'Beginner'
        INTERMEDIATE = 'INTERMEDIATE', 'Intermediate'
        ADVANCED = 'ADVANCED', 'Advanced'

    MAX_ADJUSTMENT_HISTORY = 10

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='study_plans')
    goal_type = models.CharField(max_length=20, choices=LearningProfile.GoalType.choices)
    target_date = models.DateField()
    target_word_count = models.PositiveIntegerField()
    daily_task_count = models.PositiveIntegerField()
    current_phase = models.CharField(max_length=20, choices=Phase.choices, default=Phase.BEGINNER)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    completion_rate = models.FloatField(default=0.0)
    learning_path = models.JSONField(default=list, blank=True)  # Ordered word sets
    adjustment_history = models.JSONField(default=list, blank=True)  # Newest first
    ended_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = StudyPlanQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=Q(status='ACTIVE'),
                name='one_active_study_plan_per_user',
            ),
        ]

    def __str__(self):
        return f"{self.goal_type} plan for {self.user.username} ({self.status})"

    def path_item_ids(self):
        """All item ids of the learning path, in path order."""
        return [item_id for word_set in self.learning_path for item_id in word_set['item_ids']]

    def record_adjustment(self, date, reason, old_count, new_count):
        """Prepend an adjustment entry, keeping only the most recent ones."""
        entry = {
            'date': date.isoformat(),
            'reason': reason,
            'from': old_count,
            'to': new_count,
        }
        self.adjustment_history = [entry] + list(self.adjustment_history)[:self.MAX_ADJUSTMENT_HISTORY - 1]

    def end(self, status, now):
        self.status = status
        self.ended_at = now
        self.save(update_fields=['status', 'ended_at', 'updated_at'])


class DailyTask(models.Model):
    """One day's work of a given kind within a study plan."""

    class TaskType(models.TextChoices):
        VOCABULARY = 'VOCABULARY', 'New Vocabulary'
        REVIEW = 'REVIEW', 'Review'
        WEAK_AREA = 'WEAK_AREA', 'Weak Area Practice'

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        IN_PROGRESS = 'IN_PROGRESS', 'In Progress'
        COMPLETED = 'COMPLETED', 'Completed'

    plan = models.ForeignKey(StudyPlan, on_delete=models.CASCADE, related_name='tasks')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='daily_tasks')
    task_date = models.DateField()
    task_type = models.CharField(max_length=20, choices=TaskType.choices)
    topic = models.CharField(max_length=50, blank=True)
    item_ids = models.JSONField(default=list, blank=True)
    total_items = models.PositiveIntegerField(default=0)
    completed_items = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['task_date', 'pk']
        constraints = [
            models.UniqueConstraint(fields=['plan', 'task_date', 'task_type'], name='unique_task_per_plan_day'),
        ]

    def __str__(self):
        return f"{self.task_type} on {self.task_date} ({self.completed_items}/{self.total_items})"


class Achievement(models.Model):
    """A badge definition."""

    class Category(models.TextChoices):
        STREAK = 'STREAK', 'Streak'
        MILESTONE = 'MILESTONE', 'Milestone'
        REVIEW = 'REVIEW', 'Review'
        MASTERY = 'MASTERY', 'Mastery'

    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    emoji = models.CharField(max_length=8, blank=True)
    category = models.CharField(max_length=20, choices=Category.choices)
    required_value = models.PositiveIntegerField()

    class Meta:
        ordering = ['category', 'required_value']

    def __str__(self):
        return self.name


class UserAchievement(models.Model):
    """Append-only record of a learner unlocking a badge."""
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='achievements')
    achievement = models.ForeignKey(Achievement, on_delete=models.CASCADE, related_name='unlocks')
    unlocked_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-unlocked_at']
        constraints = [
            models.UniqueConstraint(fields=['user', 'achievement'], name='unique_user_achievement'),
        ]

    def __str__(self):
        return f"{self.achievement} unlocked by {self.user.username}"


class LearningStreak(models.Model):
    """Consecutive study days of a learner."""
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='learning_streak')
    current_streak = models.PositiveIntegerField(default=0)
    longest_streak = models.PositiveIntegerField(default=0)
    last_active_date = models.DateField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Streak for {self.user.username}: {self.current_streak}"

    def record_activity(self, day):
        """Update streak for activity on `day` (a local date)."""
        if self.last_active_date is None:
            # First study session
            self.current_streak = 1
            self.last_active_date = day
        elif self.last_active_date >= day:
            # Already counted today (or a late event for an earlier day)
            return
        elif self.last_active_date == day - timedelta(days=1):
            # Studied yesterday, extend streak
            self.current_streak += 1
            self.last_active_date = day
        else:
            # Streak broken, start fresh
            self.current_streak = 1
            self.last_active_date = day

        if self.current_streak > self.longest_streak:
            self.longest_streak = self.current_streak

        self.save()

    def effective_streak(self, today):
        """Current streak as of `today`; 0 once a full day has been missed."""
        if self.last_active_date is None or (today - self.last_active_date).days > 1:
            return 0
        return self.current_streak

    def is_at_risk(self, today):
        """True when there is a streak to lose and nothing was studied today."""
        return self.effective_streak(today) > 0 and self.last_active_date != today
