from datetime import datetime, time, timedelta, timezone
from email.utils import parsedate_to_datetime

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow():
    """Naive UTC timestamp, the form stored in the tag store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value):
    """Attach UTC to naive datetimes and convert aware ones, so feeds sort together."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_rfc3339(value):
    if not value:
        return None
    raw = value.strip()
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def to_rfc3339(value):
    return as_utc(value).isoformat().replace('+00:00', 'Z')


def parse_email_date(header_value):
    """Parse an RFC 2822 Date header; unparseable values sort as the epoch."""
    if not header_value:
        return EPOCH
    try:
        return as_utc(parsedate_to_datetime(header_value))
    except (TypeError, ValueError, IndexError):
        return EPOCH


def format_list_date(value, now=None):
    if value is None or value == EPOCH:
        return 'Invalid Date'
    now = now or datetime.now(timezone.utc)
    if value.date() == now.date():
        return value.strftime('%H:%M')
    return value.strftime('%b %d').replace(' 0', ' ')


def day_bounds(day=None):
    """Start of ``day`` and start of the following day, naive UTC."""
    day = day or utcnow().date()
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)
