"""Statistics and progress views."""

from dataclasses import asdict

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from ..exceptions import InvalidState
from ..models import LearningStreak
from .helpers import error_response, get_coordinator, local_today


@login_required
@require_GET
def statistics(request):
    """Memory statistics plus the learner's streak and badges."""
    coordinator = get_coordinator()
    stats = coordinator.get_statistics(request.user)
    today = local_today(coordinator, request.user)

    streak = LearningStreak.objects.filter(user=request.user).first()
    achievements = request.user.achievements.select_related('achievement')

    return JsonResponse({
        'statistics': asdict(stats),
        'current_streak': streak.effective_streak(today) if streak else 0,
        'longest_streak': streak.longest_streak if streak else 0,
        'streak_at_risk': streak.is_at_risk(today) if streak else False,
        'achievements': [
            {
                'code': unlock.achievement.code,
                'name': unlock.achievement.name,
                'emoji': unlock.achievement.emoji,
                'unlocked_at': unlock.unlocked_at.isoformat(),
            }
            for unlock in achievements
        ],
    })


@login_required
@require_GET
def progress(request):
    """Per-day vocabulary growth and accuracy over the last `days` days."""
    try:
        days = int(request.GET.get('days', 30))
    except ValueError:
        return JsonResponse({'error': 'days must be an integer'}, status=400)

    try:
        curve = get_coordinator().get_progress_curve(request.user, days)
    except InvalidState as exc:
        return error_response(exc)

    return JsonResponse(asdict(curve))
