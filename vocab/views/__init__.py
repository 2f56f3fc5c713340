"""Views package for the vocab app."""

from .plan import complete_task, current_plan, regenerate_plan
from .profile import profile, update_profile
from .progress import progress, statistics
from .review import due_reviews, submit_review

__all__ = [
    # Reviews
    'submit_review',
    'due_reviews',
    # Plans
    'current_plan',
    'regenerate_plan',
    'complete_task',
    # Progress
    'statistics',
    'progress',
    # Profile
    'profile',
    'update_profile',
]
