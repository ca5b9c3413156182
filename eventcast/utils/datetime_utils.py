# eventcast/utils/datetime_utils.py

"""
Datetime helpers.

All persisted timestamps are naive UTC. Human-facing text is rendered in
the event's own timezone through pytz.
"""

import logging
from datetime import datetime, timedelta, timezone

import pytz

logger = logging.getLogger(__name__)

UNIT_SECONDS = {
    'minutes': 60,
    'hours': 3600,
    'days': 86400,
}


def utcnow():
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def offset_to_timedelta(value, unit):
    """Convert a reminder offset such as (15, 'minutes') into a timedelta."""
    try:
        seconds = UNIT_SECONDS[unit]
    except KeyError:
        raise ValueError(f"Unsupported time unit: {unit}")
    return timedelta(seconds=int(value) * seconds)


def get_timezone(tz_name, default='America/New_York'):
    """Resolve a timezone name, falling back to the default on unknown names."""
    try:
        return pytz.timezone(tz_name or default)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{tz_name}', falling back to {default}")
        return pytz.timezone(default)


def format_local_time(value, tz_name=None, default_tz='America/New_York'):
    """Render a naive UTC datetime in the given timezone, e.g. 'Saturday, March 15 at 07:30 PM EDT'."""
    tz = get_timezone(tz_name, default_tz)
    local = pytz.utc.localize(value).astimezone(tz)
    return local.strftime('%A, %B %d at %I:%M %p %Z')


def describe_time_until(start_time, now):
    """
    Phrase the distance to an event start the way reminder messages do.

    Returns "in N days and M hours", "in N hours and M minutes",
    "in N minutes", or "now" once the start has been reached.
    """
    remaining = int((start_time - now).total_seconds())
    if remaining <= 0:
        return 'now'

    days, remainder = divmod(remaining, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    if days > 0:
        return f"in {days} {_plural(days, 'day')} and {hours} {_plural(hours, 'hour')}"
    if hours > 0:
        return f"in {hours} {_plural(hours, 'hour')} and {minutes} {_plural(minutes, 'minute')}"
    if minutes > 0:
        return f"in {minutes} {_plural(minutes, 'minute')}"
    return 'now'


def _plural(count, word):
    return word if count == 1 else f"{word}s"
