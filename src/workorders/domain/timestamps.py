"""
Timestamp and free-text normalization for incoming patches.

Every value is turned into an aware UTC ``datetime`` or an explicit ``None``;
ambiguous inputs (unparseable strings, wrong types) are rejected.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from src.core import ValidationException


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_timestamp(field_name: str, value: Any) -> Optional[datetime]:
    """
    Normalize a patch value for a timestamp field.

    Accepts ``None``, blank strings (both mean "clear"), ``datetime`` objects and
    ISO-8601 strings (a trailing ``Z`` is accepted).

    Raises:
        ValidationException: If the value cannot be parsed
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return ensure_aware(value)

    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"
        try:
            return ensure_aware(datetime.fromisoformat(raw))
        except ValueError:
            raise ValidationException(
                f"{field_name}: invalid timestamp '{value}'",
                {"field": field_name}
            )

    raise ValidationException(
        f"{field_name}: expected an ISO-8601 timestamp or null",
        {"field": field_name}
    )


def normalize_optional_text(value: Any) -> Optional[str]:
    """Trim free text; blank becomes None."""
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None
