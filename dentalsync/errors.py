"""
Reconciliation failure taxonomy.

None of these abort a batch or a live-event handler: each unit of work catches
them, logs them and reports the outcome attached to the exception class.
"""


class ReconciliationError(Exception):
    """Base class for failures of a single reconciliation unit."""
    outcome = 'failed'

    def __init__(self, message, **context):
        super().__init__(message)
        self.context = context


class NoRuleMatch(ReconciliationError):
    """The event label matches no StatusRuleTable entry. Logged and ignored."""
    outcome = 'skipped'


class AmbiguousLinkage(ReconciliationError):
    """More than one plausible target tooth; no write occurs."""
    outcome = 'ambiguous'

    def __init__(self, message, candidate_ids=None, **context):
        super().__init__(message, **context)
        self.candidate_ids = list(candidate_ids or [])


class WriteConflict(ReconciliationError):
    """Optimistic concurrency check failed after one retry."""
    outcome = 'conflicted'


class NotFound(ReconciliationError):
    """A referenced patient, consultation or appointment no longer exists."""
    outcome = 'not_found'


class InvalidTransition(ValueError):
    """A status change not allowed by the treatment or appointment lifecycle."""
