from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from chatstore.models.base import EntityModel, coerce_datetime, ensure_non_empty_text, utc_now
from chatstore.models.enums import RowKind, Visibility

DEFAULT_CHAT_TITLE = "New chat"


class Chat(EntityModel):
    ROW_KIND: ClassVar[RowKind] = RowKind.CHAT

    row_kind: Literal[RowKind.CHAT] = RowKind.CHAT
    id: str
    user_id: str
    title: str = DEFAULT_CHAT_TITLE
    visibility: Visibility = Visibility.PRIVATE
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = None

    @field_validator("id", "user_id")
    @classmethod
    def _ensure_ids(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "id")

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_datetime(value, "created_at")

    @field_validator("updated_at", mode="before")
    @classmethod
    def _validate_updated_at(cls, value: Any) -> datetime | None:
        if value is None:
            return None
        return coerce_datetime(value, "updated_at")


class ProviderSession(EntityModel):
    """Maps a chat to the session id an upstream LLM provider assigned it."""

    ROW_KIND: ClassVar[RowKind] = RowKind.PROVIDER_SESSION

    row_kind: Literal[RowKind.PROVIDER_SESSION] = RowKind.PROVIDER_SESSION
    chat_id: str
    provider: str
    session_id: str
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("chat_id", "provider", "session_id", "user_id")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _validate_timestamps(cls, value: Any, info: ValidationInfo) -> datetime:
        return coerce_datetime(value, info.field_name or "timestamp")


class ChatPage(BaseModel):
    """One page of a user's chat history."""

    chats: list[Chat] = Field(default_factory=list)
    has_more: bool = False

    model_config = ConfigDict(frozen=True)


__all__ = ["Chat", "ChatPage", "ProviderSession", "DEFAULT_CHAT_TITLE"]
