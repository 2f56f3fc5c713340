"""Review views."""

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST

from ..exceptions import ConcurrencyConflict, InvalidState
from ..models import VocabularyItem
from .helpers import error_response, get_coordinator, parse_json_body, serialize_record


@login_required
@require_POST
def submit_review(request, pk):
    """Submit one answer for a word."""
    item = get_object_or_404(VocabularyItem, pk=pk)

    try:
        data = parse_json_body(request)
        is_correct = data['correct']
    except (ValueError, KeyError, TypeError):
        return JsonResponse({'error': 'Invalid request'}, status=400)

    if not isinstance(is_correct, bool):
        return JsonResponse({'error': 'correct must be true or false'}, status=400)

    try:
        record = get_coordinator().submit_review(request.user, item, is_correct)
    except (InvalidState, ConcurrencyConflict) as exc:
        return error_response(exc)

    return JsonResponse({
        'success': True,
        'record': serialize_record(record),
    })


@login_required
@require_GET
def due_reviews(request):
    """Words due for review, most overdue first."""
    try:
        limit = int(request.GET['limit']) if 'limit' in request.GET else None
    except ValueError:
        return JsonResponse({'error': 'limit must be an integer'}, status=400)

    try:
        records = get_coordinator().get_due_reviews(request.user, limit)
    except InvalidState as exc:
        return error_response(exc)

    return JsonResponse({'reviews': [serialize_record(record) for record in records]})
