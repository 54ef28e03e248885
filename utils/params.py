"""Request parameter coercion; failures raise InvalidArgument."""
import uuid
from datetime import datetime, timezone

from utils.errors import InvalidArgument


def parse_uuid(value, field):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise InvalidArgument(f"{field} must be a valid id", field=field)


def parse_datetime(value, field):
    """ISO-8601 to naive UTC; None passes through"""
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise InvalidArgument(f"{field} must be an ISO-8601 timestamp", field=field)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_int(value, field, default=None):
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{field} must be an integer", field=field)


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def require(data, *fields):
    missing = [name for name in fields if data.get(name) in (None, '')]
    if missing:
        raise InvalidArgument(f"Missing required fields: {', '.join(missing)}", fields=missing)
