"""
Date helpers for record documents.

Stored dates arrive as BSON datetimes, ISO strings written by web clients,
epoch numbers, or exported Firestore timestamps ({'seconds': ...}). All of
them are normalised to naive UTC datetimes.
"""
from datetime import date, datetime, timezone


def to_datetime(value):
    """Return a naive UTC datetime, or None if the value is not a date"""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, dict):
        seconds = value.get('seconds', value.get('_seconds'))
        if seconds is None:
            return None
        try:
            return to_datetime(float(seconds))
        except (TypeError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return to_datetime(datetime.fromisoformat(text))
        except ValueError:
            return None

    return None


def record_date(record):
    """The record's own date, falling back to its creation timestamp"""
    return to_datetime(record.get('recordDate')) or to_datetime(record.get('createdAt'))


def sort_key(record):
    # Records without any date sort after every dated record (newest first)
    return record_date(record) or datetime.min


def format_date(value, fmt='%Y-%m-%d', default='N/A'):
    parsed = to_datetime(value)
    return parsed.strftime(fmt) if parsed else default
