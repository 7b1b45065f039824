"""Calendar arithmetic for period keys.

Every rollup is keyed by a canonical string:

- daily:   ``YYYY-MM-DD``
- weekly:  ``YYYY-Www`` (ISO 8601 week, Monday start, ISO week-numbering year)
- monthly: ``YYYY-MM``

Bucketing is done here in Python rather than with SQLite date functions,
so the same timestamp always lands in the same bucket no matter which
engine stores it. All keys sort lexicographically in chronological order,
which the retention cutoffs rely on.

Example:
    >>> week_key(datetime(2024, 12, 30, 9, 0))
    '2025-W01'
    >>> previous_month_key('2024-01')
    '2023-12'
"""

import re
from datetime import date, datetime, time, timedelta
from typing import List, Tuple, Union

from dateutil import parser as dateutil_parser
from dateutil.relativedelta import relativedelta

from .errors import IntegrityError

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
PERIOD_KINDS = (DAILY, WEEKLY, MONTHLY)

DATE_FORMAT = "%Y-%m-%d"
MONTH_FORMAT = "%Y-%m"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

TimeLike = Union[datetime, date, str]


def to_datetime(value: TimeLike) -> datetime:
    """Normalize a datetime, date or string to a naive local datetime.

    Timezone-aware datetimes are converted to local time. Dates become
    midnight. Strings are parsed with dateutil.

    Raises:
        IntegrityError: If a string cannot be parsed.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        try:
            return to_datetime(dateutil_parser.parse(value))
        except (ValueError, OverflowError) as e:
            raise IntegrityError(f"Could not parse timestamp {value!r}: {e}") from e
    raise IntegrityError(f"Unsupported timestamp type: {type(value).__name__}")


def _as_date(value: TimeLike) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return to_datetime(value).date()


def date_key(value: TimeLike) -> str:
    return _as_date(value).strftime(DATE_FORMAT)


def week_key(value: TimeLike) -> str:
    iso_year, iso_week, _ = _as_date(value).isocalendar()
    return f"{iso_year:04d}-W{iso_week:02d}"


def month_key(value: TimeLike) -> str:
    return _as_date(value).strftime(MONTH_FORMAT)


def period_key(kind: str, value: TimeLike) -> str:
    """Map a timestamp to the key of the period of ``kind`` containing it."""
    if kind == DAILY:
        return date_key(value)
    if kind == WEEKLY:
        return week_key(value)
    if kind == MONTHLY:
        return month_key(value)
    raise IntegrityError(f"Unknown period kind: {kind!r}")


def parse_date_key(key: str) -> date:
    if not isinstance(key, str) or not _DATE_RE.match(key):
        raise IntegrityError(f"Malformed date key {key!r}, expected YYYY-MM-DD")
    try:
        return datetime.strptime(key, DATE_FORMAT).date()
    except ValueError as e:
        raise IntegrityError(f"Malformed date key {key!r}: {e}") from e


def parse_week_key(key: str) -> date:
    """Return the Monday that starts the ISO week ``key``.

    Only the canonical ``YYYY-Www`` form is accepted; the separator-less
    ``YYYY-ww`` form is rejected rather than guessed at.
    """
    match = _WEEK_RE.match(key) if isinstance(key, str) else None
    if not match:
        raise IntegrityError(f"Malformed week key {key!r}, expected YYYY-Www")
    try:
        return date.fromisocalendar(int(match.group(1)), int(match.group(2)), 1)
    except ValueError as e:
        raise IntegrityError(f"Malformed week key {key!r}: {e}") from e


def parse_month_key(key: str) -> date:
    """Return the first day of month ``key``."""
    match = _MONTH_RE.match(key) if isinstance(key, str) else None
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise IntegrityError(f"Malformed month key {key!r}, expected YYYY-MM")
    return date(int(match.group(1)), int(match.group(2)), 1)


def period_start(kind: str, key: str) -> date:
    if kind == DAILY:
        return parse_date_key(key)
    if kind == WEEKLY:
        return parse_week_key(key)
    if kind == MONTHLY:
        return parse_month_key(key)
    raise IntegrityError(f"Unknown period kind: {kind!r}")


def validate_key(kind: str, key: str) -> str:
    period_start(kind, key)
    return key


def period_bounds(kind: str, key: str) -> Tuple[datetime, datetime]:
    """Half-open ``[start, end)`` datetime range covered by a period key."""
    start = period_start(kind, key)
    if kind == DAILY:
        end = start + timedelta(days=1)
    elif kind == WEEKLY:
        end = start + timedelta(days=7)
    else:
        end = start + relativedelta(months=1)
    return datetime.combine(start, time.min), datetime.combine(end, time.min)


def days_in_period(kind: str, key: str) -> int:
    start, end = period_bounds(kind, key)
    return (end - start).days


def week_dates(key: str) -> List[str]:
    """The seven date keys (Monday first) of ISO week ``key``."""
    monday = parse_week_key(key)
    return [(monday + timedelta(days=i)).strftime(DATE_FORMAT) for i in range(7)]


def previous_date_key(key: str) -> str:
    return (parse_date_key(key) - timedelta(days=1)).strftime(DATE_FORMAT)


def previous_week_key(key: str) -> str:
    return week_key(parse_week_key(key) - timedelta(days=7))


def previous_month_key(key: str) -> str:
    return (parse_month_key(key) - relativedelta(months=1)).strftime(MONTH_FORMAT)


def previous_key(kind: str, key: str) -> str:
    if kind == DAILY:
        return previous_date_key(key)
    if kind == WEEKLY:
        return previous_week_key(key)
    if kind == MONTHLY:
        return previous_month_key(key)
    raise IntegrityError(f"Unknown period kind: {kind!r}")
