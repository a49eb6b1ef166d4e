from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from chatstore.models.base import coerce_datetime, ensure_non_empty_text, utc_now

MAX_FEEDBACK_LENGTH = 5000


class ChatFile(BaseModel):
    """Metadata of an uploaded attachment. The blob itself lives elsewhere."""

    file_id: str
    session_id: str
    user_id: str
    chat_id: str
    message_id: str | None = None
    filename: str
    content_type: str = ""
    file_size: int = Field(default=0, ge=0)
    gcs_url: str = ""
    object_path: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    is_deleted: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("file_id", "session_id", "user_id", "filename")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_datetime(value, "created_at")


class Feedback(BaseModel):
    """User feedback on one assistant answer."""

    message_id: str
    session_id: str
    user_id: str
    role: str
    content: str
    feedback_message: str
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("message_id", "session_id", "user_id", "role", "content")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("feedback_message")
    @classmethod
    def _validate_feedback_message(cls, value: str) -> str:
        value = ensure_non_empty_text(value, "feedback_message").strip()
        if len(value) > MAX_FEEDBACK_LENGTH:
            raise ValueError(f"feedback_message exceeds {MAX_FEEDBACK_LENGTH} characters")
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_datetime(value, "created_at")


__all__ = ["ChatFile", "Feedback", "MAX_FEEDBACK_LENGTH"]
