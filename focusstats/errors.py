"""Exception types raised by the focus analytics engine.

Absence of data is never an exception: lookups and aggregates that have
nothing to report return ``None`` so callers can render "no sessions yet"
instead of a zero-valued result.
"""


class FocusStatsError(Exception):
    """Base class for all focusstats errors."""


class NotFoundError(FocusStatsError):
    """Raised when an id or key refers to a row that does not exist."""


class IntegrityError(FocusStatsError):
    """Raised for structurally invalid input.

    Covers usage batches that carry a mismatched session id, sessions whose
    timing fields contradict each other, malformed period keys and malformed
    schedules. Never retried automatically.
    """


class RetentionError(FocusStatsError):
    """Raised when a retention pass fails part way.

    The pass runs in a single transaction and is idempotent, so the
    external scheduler can simply invoke it again on its next cycle.
    """


class RefreshCancelled(FocusStatsError):
    """Raised when an aggregation scan is superseded by a newer request."""
