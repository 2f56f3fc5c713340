"""Study plan views."""

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from ..exceptions import ConcurrencyConflict, InvalidState, NotFound
from .helpers import (
    error_response,
    get_coordinator,
    local_today,
    parse_json_body,
    serialize_plan,
    serialize_task,
)


def _plan_response(coordinator, user, plan):
    today = local_today(coordinator, user)
    return JsonResponse({'plan': serialize_plan(plan, plan.tasks.filter(task_date=today))})


@login_required
@require_GET
def current_plan(request):
    """The active study plan with today's tasks, generated on first use."""
    coordinator = get_coordinator()
    try:
        plan = coordinator.get_or_generate_plan(request.user)
    except (InvalidState, ConcurrencyConflict) as exc:
        return error_response(exc)
    return _plan_response(coordinator, request.user, plan)


@login_required
@require_POST
def regenerate_plan(request):
    """Replace the active plan with a freshly generated one."""
    coordinator = get_coordinator()
    try:
        plan = coordinator.regenerate_plan(request.user)
    except (InvalidState, ConcurrencyConflict) as exc:
        return error_response(exc)
    return _plan_response(coordinator, request.user, plan)


@login_required
@require_POST
def complete_task(request, pk):
    """Report progress on one of today's tasks."""
    try:
        data = parse_json_body(request)
        completed_items = int(data['completed_items'])
    except (ValueError, KeyError, TypeError):
        return JsonResponse({'error': 'Invalid request'}, status=400)

    try:
        task = get_coordinator().complete_task(request.user, pk, completed_items)
    except (InvalidState, NotFound) as exc:
        return error_response(exc)

    return JsonResponse({'success': True, 'task': serialize_task(task)})
