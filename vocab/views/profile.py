"""Learning profile views."""

from datetime import date

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from ..exceptions import ConcurrencyConflict, InvalidState
from .helpers import error_response, get_coordinator, parse_json_body, serialize_plan

PROFILE_FIELDS = ('goal_type', 'target_date', 'target_word_count', 'proficiency_level', 'user_timezone')


@login_required
@require_GET
def profile(request):
    """Learning insights: time preferences, best learning time, weak areas, pace."""
    return JsonResponse({'profile': get_coordinator().get_insight_report(request.user)})


@login_required
@require_POST
def update_profile(request):
    """Change goals; the study plan is regenerated for the new settings."""
    try:
        data = parse_json_body(request)
        changes = {field: data[field] for field in PROFILE_FIELDS if data.get(field) is not None}
        if 'target_date' in changes:
            changes['target_date'] = date.fromisoformat(changes['target_date'])
    except (ValueError, TypeError):
        return JsonResponse({'error': 'Invalid request'}, status=400)

    if not changes:
        return JsonResponse({'error': 'Nothing to update'}, status=400)

    coordinator = get_coordinator()
    try:
        _, plan = coordinator.update_profile(request.user, **changes)
    except (InvalidState, ConcurrencyConflict) as exc:
        return error_response(exc)

    return JsonResponse({
        'success': True,
        'profile': coordinator.get_insight_report(request.user),
        'plan': serialize_plan(plan, plan.tasks.all()),
    })
