"""
Memory record store.

Point lookups, the due-review queue, aggregate counts and statistics over
MemoryRecord rows, plus optimistic-concurrency updates. A record is written
only if its version is still the one that was read; otherwise the writer gets
a ConcurrencyConflict and must re-read before trying again.
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Avg, Count, F, Q, Sum
from django.utils import timezone

from .exceptions import ConcurrencyConflict, InvalidState, NotFound
from .models import MemoryRecord

logger = logging.getLogger(__name__)

# Fields written by a review; everything else is immutable after creation
MUTABLE_FIELDS = (
    'mastery_level',
    'review_count',
    'correct_count',
    'wrong_count',
    'consecutive_wrong_count',
    'status',
    'next_review_at',
    'last_reviewed_at',
)


@dataclass(frozen=True)
class MemoryStatistics:
    """Aggregate view of a learner's memory records."""
    total_words: int
    mastered_words: int
    learning_words: int
    forgotten_words: int
    total_reviews: int
    correct_count: int
    wrong_count: int
    accuracy_rate: float  # correct / (correct + wrong), 0.0 without answers
    pending_reviews: int
    average_mastery: float


def get_max_update_attempts():
    return getattr(settings, 'VOCAB_MAX_UPDATE_ATTEMPTS', 3)


def create_record(user, item, now):
    """Create the record for a first exposure: mastery 0, LEARNING, due now."""
    record = MemoryRecord.objects.create(
        user=user,
        item=item,
        mastery_level=0,
        status=MemoryRecord.Status.LEARNING,
        next_review_at=now,
    )
    logger.debug("Created memory record: user=%s item=%s", user.pk, item.pk)
    return record


def get_record(user, item):
    try:
        return MemoryRecord.objects.select_related('item').get(user=user, item=item)
    except MemoryRecord.DoesNotExist:
        raise NotFound(f"No memory record for user {user.pk} and item {item.pk}") from None


def get_or_create_record(user, item, now):
    """Return the existing record, creating it on first exposure."""
    try:
        return get_record(user, item)
    except NotFound:
        pass
    try:
        with transaction.atomic():
            return create_record(user, item, now)
    except IntegrityError:
        # A concurrent first exposure created it
        return get_record(user, item)


def update_record(record):
    """
    Full replace of the mutable fields, guarded by the record's version.

    Raises ConcurrencyConflict when another writer updated the row since it
    was read. On success the in-memory version is bumped to match the row.
    """
    values = {field: getattr(record, field) for field in MUTABLE_FIELDS}
    updated = MemoryRecord.objects.filter(pk=record.pk, version=record.version).update(
        version=F('version') + 1,
        updated_at=timezone.now(),
        **values,
    )
    if updated == 0:
        raise ConcurrencyConflict(
            f"Memory record {record.pk} changed since version {record.version}"
        )
    record.version += 1
    return record


def is_lock_contention(exc):
    """True for database errors raised because another writer holds the lock."""
    return isinstance(exc, OperationalError) and 'lock' in str(exc).lower()


def update_with_retry(user, item, mutate, now, attempts=None, on_saved=None):
    """
    Read-modify-write a record, re-reading and retrying on conflict.

    `mutate(record)` must compute the new state from the record it receives
    and must not save it. `on_saved(record)` runs in the same transaction as
    the write, so anything it writes commits or rolls back with it.

    Every attempt is its own transaction. A lost version check and a write
    refused because another writer holds the database lock are both treated
    as a lost race; after `attempts` of them ConcurrencyConflict is raised.
    """
    attempts = get_max_update_attempts() if attempts is None else attempts
    if attempts < 1:
        raise InvalidState(f"attempts must be at least 1, got {attempts!r}")

    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                record = get_or_create_record(user, item, now)
                mutate(record)
                update_record(record)
                if on_saved is not None:
                    on_saved(record)
            return record
        except (ConcurrencyConflict, OperationalError) as exc:
            if not isinstance(exc, ConcurrencyConflict) and not is_lock_contention(exc):
                raise
            logger.info(
                "Conflict updating memory record of user %s item %s (attempt %d/%d): %s",
                user.pk, item.pk, attempt, attempts, exc,
            )
            if attempt == attempts:
                if isinstance(exc, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    f"Memory record of user {user.pk} item {item.pk} is locked by another writer"
                ) from exc


def find_due_reviews(user, now, limit):
    """Records with next_review_at <= now, most overdue first, at most `limit`."""
    if limit is None or limit <= 0:
        raise InvalidState(f"limit must be positive, got {limit!r}")
    records = list(MemoryRecord.objects.for_user(user).due(now).select_related('item')[:limit])
    logger.debug("Found %d due reviews for user %s", len(records), user.pk)
    return records


def count_due_reviews(user, now):
    return MemoryRecord.objects.for_user(user).filter(next_review_at__lte=now).count()


def count_mastered_by_user(user):
    return MemoryRecord.objects.for_user(user).mastered().count()


def count_total_by_user(user):
    return MemoryRecord.objects.for_user(user).count()


def get_statistics(user, now):
    """Totals, accuracy, pending reviews and average mastery for a learner."""
    stats = MemoryRecord.objects.for_user(user).aggregate(
        total=Count('id'),
        mastered=Count('id', filter=Q(status=MemoryRecord.Status.MASTERED)),
        learning=Count('id', filter=Q(status=MemoryRecord.Status.LEARNING)),
        forgotten=Count('id', filter=Q(status=MemoryRecord.Status.FORGOTTEN)),
        pending=Count('id', filter=Q(next_review_at__lte=now)),
        reviews=Sum('review_count'),
        correct=Sum('correct_count'),
        wrong=Sum('wrong_count'),
        avg_mastery=Avg('mastery_level'),
    )

    correct = stats['correct'] or 0
    wrong = stats['wrong'] or 0
    answered = correct + wrong
    accuracy = round(correct / answered, 4) if answered > 0 else 0.0

    return MemoryStatistics(
        total_words=stats['total'],
        mastered_words=stats['mastered'],
        learning_words=stats['learning'],
        forgotten_words=stats['forgotten'],
        total_reviews=stats['reviews'] or 0,
        correct_count=correct,
        wrong_count=wrong,
        accuracy_rate=accuracy,
        pending_reviews=stats['pending'],
        average_mastery=round(stats['avg_mastery'] or 0.0, 2),
    )


def delete_user_records(user):
    """Erase all memory records of a learner (account/data erasure only)."""
    deleted, _ = MemoryRecord.objects.for_user(user).delete()
    logger.info("Deleted %d memory records for user %s", deleted, user.pk)
    return deleted
