import uuid
from datetime import datetime, timezone


def generate_api_key() -> str:
    """Generates a channel API key, e.g. ``thinkv_3f2a...`` (32 hex chars)."""
    return f"thinkv_{uuid.uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime:
    """
    Parses an ISO 8601 string (or datetime) into a timezone-aware UTC datetime.
    Naive values are taken to be UTC. Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty timestamp")
        # fromisoformat only learned about "Z" in 3.11
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()
