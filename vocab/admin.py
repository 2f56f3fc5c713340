from django.contrib import admin
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


@admin.register(VocabularyItem)
class VocabularyItemAdmin(admin.ModelAdmin):
    list_display = ['word', 'category', 'level', 'learner_count']
    list_filter = ['level', 'category']
    search_fields = ['word', 'definition']

    def learner_count(self, obj):
        return obj.memory_records.count()
    learner_count.short_description = 'Learners'


@admin.register(MemoryRecord)
class MemoryRecordAdmin(admin.ModelAdmin):
    list_display = ['item', 'user', 'mastery_level', 'status', 'review_count', 'next_review_at']
    list_filter = ['status', 'next_review_at']
    search_fields = ['item__word', 'user__username']
    readonly_fields = ['mastery_level', 'review_count', 'correct_count', 'wrong_count',
                       'consecutive_wrong_count', 'next_review_at', 'last_reviewed_at', 'version']


@admin.register(ActivityLog)
class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ['user', 'activity_type', 'item', 'is_correct', 'mastery_before', 'mastery_after', 'occurred_at']
    list_filter = ['activity_type', 'is_correct', 'occurred_at']
    readonly_fields = ['user', 'activity_type', 'item', 'topic', 'is_correct', 'mastery_before',
                       'mastery_after', 'interval_hours', 'occurred_at']


@admin.register(LearningProfile)
class LearningProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'goal_type', 'proficiency_level', 'target_date', 'learning_speed_trend', 'last_analysis_at']
    list_filter = ['goal_type', 'proficiency_level', 'learning_speed_trend']
    readonly_fields = ['preferred_learning_times', 'weak_areas', 'average_daily_words',
                       'average_accuracy', 'learning_speed_trend', 'last_analysis_at']


class DailyTaskInline(admin.TabularInline):
    model = DailyTask
    extra = 0
    fields = ['task_date', 'task_type', 'topic', 'total_items', 'completed_items', 'status']
    readonly_fields = ['task_date', 'task_type', 'topic', 'total_items']


@admin.register(StudyPlan)
class StudyPlanAdmin(admin.ModelAdmin):
    list_display = ['user', 'goal_type', 'status', 'target_date', 'daily_task_count', 'completion_rate']
    list_filter = ['status', 'goal_type', 'current_phase']
    inlines = [DailyTaskInline]


@admin.register(Achievement)
class AchievementAdmin(admin.ModelAdmin):
    list_display = ['emoji', 'name', 'code', 'category', 'required_value']
    list_filter = ['category']


@admin.register(UserAchievement)
class UserAchievementAdmin(admin.ModelAdmin):
    list_display = ['user', 'achievement', 'unlocked_at']
    list_filter = ['achievement']


@admin.register(LearningStreak)
class LearningStreakAdmin(admin.ModelAdmin):
    list_display = ['user', 'current_streak', 'longest_streak', 'last_active_date']
