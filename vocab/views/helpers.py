"""Shared helper functions for views."""

import json
from datetime import timezone as dt_timezone

from django.http import JsonResponse

from ..exceptions import ConcurrencyConflict, InvalidState, NotFound, UpstreamUnavailable
from ..models import LearningProfile
from ..services import LearningCoordinator

ERROR_STATUS = (
    (InvalidState, 400),
    (NotFound, 404),
    (ConcurrencyConflict, 409),
    (UpstreamUnavailable, 503),
)


def get_coordinator():
    return LearningCoordinator()


def local_today(coordinator, user):
    """Today in the learner's timezone; UTC for a learner without a profile."""
    now = coordinator.clock()
    profile = LearningProfile.objects.filter(user=user).first()
    if profile is None:
        return now.astimezone(dt_timezone.utc).date()
    return profile.get_local_date(now)


def parse_json_body(request):
    """Decoded JSON object of the request body; ValueError when it is not one."""
    data = json.loads(request.body or b'{}')
    if not isinstance(data, dict):
        raise ValueError('Expected a JSON object')
    return data


def error_response(exc):
    """Map a domain error to a JSON error response."""
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return JsonResponse({'error': str(exc)}, status=status)
    raise exc


def serialize_record(record):
    return {
        'item': record.item_id,
        'word': record.item.word,
        'mastery_level': record.mastery_level,
        'review_count': record.review_count,
        'status': record.status,
        'next_review_at': record.next_review_at.isoformat(),
    }


def serialize_task(task):
    return {
        'id': task.pk,
        'date': task.task_date.isoformat(),
        'type': task.task_type,
        'topic': task.topic,
        'item_ids': task.item_ids,
        'total_items': task.total_items,
        'completed_items': task.completed_items,
        'status': task.status,
    }


def serialize_plan(plan, tasks=()):
    return {
        'id': plan.pk,
        'goal_type': plan.goal_type,
        'target_date': plan.target_date.isoformat(),
        'target_word_count': plan.target_word_count,
        'daily_task_count': plan.daily_task_count,
        'current_phase': plan.current_phase,
        'completion_rate': plan.completion_rate,
        'learning_path': plan.learning_path,
        'adjustment_history': plan.adjustment_history,
        'tasks': [serialize_task(task) for task in tasks],
    }
