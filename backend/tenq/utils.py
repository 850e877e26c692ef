import uuid
from datetime import datetime, timedelta, timezone


def utcnow():
    """Server clock. Naive UTC, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def elapsed_ms(start, end):
    return (end - start) // timedelta(milliseconds=1)


def isoformat(value):
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace('+00:00', 'Z')


def new_id():
    return str(uuid.uuid4())


def new_request_id():
    return uuid.uuid4().hex
