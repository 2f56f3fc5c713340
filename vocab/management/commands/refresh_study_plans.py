"""
Management command for the daily study plan refresh.

Run this command once a day via cron or a scheduled task:
    python manage.py refresh_study_plans

For every learner with an active plan it re-analyzes recent activity, feeds
recent task completion back into the daily workload, closes plans whose
target date has passed and prepares tomorrow's tasks.
"""

import logging
from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.contrib.auth.models import User
from django.db import transaction

from vocab.achievements import sync_achievement_catalog
from vocab.models import StudyPlan
from vocab.services import LearningCoordinator

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Refresh learner profiles and adjust active study plans'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show which plans would be refreshed without changing anything',
        )
        parser.add_argument(
            '--user',
            help='Only refresh the plan of this username',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        coordinator = LearningCoordinator()

        plans = StudyPlan.objects.active().select_related('user')
        if options['user']:
            if not User.objects.filter(username=options['user']).exists():
                raise CommandError(f'User "{options["user"]}" does not exist')
            plans = plans.filter(user__username=options['user'])

        logger.info("Starting refresh_study_plans (dry_run=%s)", dry_run)

        if not dry_run:
            sync_achievement_catalog()

        refreshed = 0
        finished = 0
        errors = 0

        for plan in plans:
            user = plan.user

            if dry_run:
                self.stdout.write(
                    f"[DRY RUN] Would refresh plan {plan.pk} for {user.username} "
                    f"(daily={plan.daily_task_count}, target={plan.target_date})"
                )
                continue

            try:
                with transaction.atomic():
                    if coordinator.finish_plan_if_due(plan):
                        finished += 1
                        self.stdout.write(f"Completed plan {plan.pk} for {user.username}")
                        continue

                    profile = coordinator.refresh_profile(user)
                    plan = coordinator.adjust_plan(user)
                    tomorrow = profile.get_local_date(coordinator.clock()) + timedelta(days=1)
                    coordinator.generate_daily_tasks(plan, tomorrow)
                refreshed += 1
                self.stdout.write(
                    f"Refreshed plan {plan.pk} for {user.username}: {plan.daily_task_count} words/day"
                )
            except Exception as e:
                # One learner's bad data must not stop the batch
                errors += 1
                logger.error(
                    "Failed to refresh plan %s for %s: %s", plan.pk, user.username, e, exc_info=True
                )
                self.stderr.write(self.style.ERROR(f"Failed to refresh plan for {user.username}: {e}"))

        logger.info(
            "Completed refresh_study_plans: refreshed=%d finished=%d errors=%d",
            refreshed, finished, errors,
        )
        self.stdout.write(
            self.style.SUCCESS(f"Refreshed {refreshed} plan(s), completed {finished}, failed {errors}")
        )
