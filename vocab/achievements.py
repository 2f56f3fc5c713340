"""Achievement system for tracking and celebrating learner milestones."""

import logging

from django.db import IntegrityError, transaction

from . import store
from .models import Achievement, LearningProfile, LearningStreak, UserAchievement

logger = logging.getLogger(__name__)

# Minimum answers before the accuracy badge can be earned
ACCURACY_MIN_ANSWERS = 50


# Achievement definitions
ACHIEVEMENTS = {
    'first_review': {
        'name': 'First Step',
        'description': 'You reviewed your first word! This is the beginning of your learning journey.',
        'emoji': '🌟',
        'category': Achievement.Category.REVIEW,
        'required_value': 1,
    },
    'reviews_100': {
        'name': '100 Reviews',
        'description': 'You\'ve completed 100 reviews! Your dedication to learning is impressive.',
        'emoji': '🏆',
        'category': Achievement.Category.REVIEW,
        'required_value': 100,
    },
    'words_100': {
        'name': '100 Words Mastered',
        'description': 'A hundred words firmly in memory.',
        'emoji': '💪',
        'category': Achievement.Category.MILESTONE,
        'required_value': 100,
    },
    'words_500': {
        'name': '500 Words Mastered',
        'description': 'Five hundred words mastered! You\'re building a real vocabulary.',
        'emoji': '📚',
        'category': Achievement.Category.MILESTONE,
        'required_value': 500,
    },
    'words_1000': {
        'name': '1,000 Words Mastered',
        'description': 'One thousand words! You\'re a true word collector.',
        'emoji': '🔥',
        'category': Achievement.Category.MILESTONE,
        'required_value': 1000,
    },
    'accuracy_90': {
        'name': 'Sharp Memory',
        'description': 'Answered 90% of your reviews correctly.',
        'emoji': '🎯',
        'category': Achievement.Category.MASTERY,
        'required_value': 90,
    },
    'streak_7': {
        'name': '7-Day Streak',
        'description': 'A full week of consistent study! You\'re building great habits.',
        'emoji': '🔥',
        'category': Achievement.Category.STREAK,
        'required_value': 7,
    },
    'streak_30': {
        'name': '30-Day Streak',
        'description': 'A month of daily learning! Your consistency is remarkable.',
        'emoji': '🌟',
        'category': Achievement.Category.STREAK,
        'required_value': 30,
    },
    'streak_100': {
        'name': '100-Day Streak',
        'description': '100 days of unbroken learning! You\'re an inspiration.',
        'emoji': '🏆',
        'category': Achievement.Category.STREAK,
        'required_value': 100,
    },
}


def sync_achievement_catalog():
    """Make sure every defined achievement exists as a row."""
    for code, definition in ACHIEVEMENTS.items():
        Achievement.objects.update_or_create(code=code, defaults=definition)


def get_or_create_streak(user):
    streak, _ = LearningStreak.objects.get_or_create(user=user)
    return streak


def update_streak(user, now):
    """Count activity at `now` towards the learner's streak (local date)."""
    profile = LearningProfile.objects.filter(user=user).first()
    today = profile.get_local_date(now) if profile else now.date()

    with transaction.atomic():
        streak, _ = LearningStreak.objects.select_for_update().get_or_create(user=user)
        streak.record_activity(today)
    return streak


def check_and_grant_achievements(user, now):
    """
    Check if the learner has earned any new achievements.

    Should be called after a review or when the streak updates.
    Returns list of achievement codes that were awarded.
    """
    awarded = []
    stats = store.get_statistics(user, now)
    streak = get_or_create_streak(user)

    answered = stats.correct_count + stats.wrong_count
    accuracy_percent = stats.accuracy_rate * 100 if answered >= ACCURACY_MIN_ANSWERS else 0

    progress = {
        Achievement.Category.REVIEW: stats.total_reviews,
        Achievement.Category.MILESTONE: stats.mastered_words,
        Achievement.Category.MASTERY: accuracy_percent,
        Achievement.Category.STREAK: streak.current_streak,
    }

    for code, definition in ACHIEVEMENTS.items():
        if progress[definition['category']] >= definition['required_value']:
            if _award_achievement_if_new(user, code, now):
                awarded.append(code)

    if awarded:
        logger.info("User %s unlocked achievements: %s", user.pk, ', '.join(awarded))
    return awarded


def _award_achievement_if_new(user, achievement_code, now):
    """
    Grant the achievement unless the learner already has it.

    Returns True if achievement was awarded, False if already awarded.
    The unique constraint on (user, achievement) settles concurrent grants.
    """
    definition = ACHIEVEMENTS.get(achievement_code)
    if not definition:
        return False

    achievement, _ = Achievement.objects.get_or_create(code=achievement_code, defaults=definition)
    try:
        with transaction.atomic():
            _, created = UserAchievement.objects.get_or_create(
                user=user,
                achievement=achievement,
                defaults={'unlocked_at': now},
            )
    except IntegrityError:
        return False
    return created


def handle_review_completed(sender, user, occurred_at, **kwargs):
    """Receiver for `review_completed`: extend the streak, then grant badges."""
    update_streak(user, occurred_at)
    return check_and_grant_achievements(user, occurred_at)
