"""Signals emitted by the learning core."""

from django.dispatch import Signal

# Sent after a review's mastery update has committed.
# Arguments: user, record, is_correct, occurred_at
review_completed = Signal()
