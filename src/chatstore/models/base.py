from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


class EntityModel(BaseModel):
    """Base class for immutable domain entities."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError("datetime must be timezone-aware")
    return dt


def coerce_datetime(value: Any, field_name: str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise TypeError(f"{field_name} must be a datetime")
    return ensure_timezone_aware(value)


def ensure_non_empty_text(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


def ensure_json_list(value: Any, field_name: str) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    raise TypeError(f"{field_name} must be a list")
