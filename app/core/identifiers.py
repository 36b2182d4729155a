import uuid

from app.core.exceptions import NotFound


def parse_uuid(value: str | uuid.UUID, kind: str) -> uuid.UUID:
    """Parse an identifier; a malformed one cannot exist, so it is reported as not found."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f"{kind} not found: {value}") from None
