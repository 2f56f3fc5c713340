"""Error taxonomy shared by the scheduling engines, the store and the views."""


class InvalidState(ValueError):
    """Input outside the engine's domain (caller or data bug, never clamped)."""


class NotFound(LookupError):
    """No record, plan or task exists for the given key."""


class ConcurrencyConflict(Exception):
    """Optimistic update lost against a concurrent writer; safe to retry."""


class UpstreamUnavailable(Exception):
    """The content-generation collaborator failed; core state is untouched."""
