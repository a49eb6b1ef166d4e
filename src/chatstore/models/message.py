from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import Field, ValidationInfo, field_validator

from chatstore.models.base import (
    EntityModel,
    coerce_datetime,
    ensure_json_list,
    ensure_non_empty_text,
    utc_now,
)
from chatstore.models.enums import Role, RowKind


class ChatMessage(EntityModel):
    """A conversation turn.

    ``parts`` and ``attachments`` are kept as opaque JSON objects: the UI owns
    their shape, the store only needs the text parts to build ``content``.
    """

    ROW_KIND: ClassVar[RowKind] = RowKind.MESSAGE

    row_kind: Literal[RowKind.MESSAGE] = RowKind.MESSAGE
    id: str
    chat_id: str
    role: Role
    parts: list[dict[str, Any]] = Field(default_factory=list)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    chart_spec: dict[str, Any] | None = None
    chart_error: str | None = None
    answered_in: int | None = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("id", "chat_id")
    @classmethod
    def _ensure_ids(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "id")

    @field_validator("parts", "attachments", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any, info: ValidationInfo) -> list[Any]:
        return ensure_json_list(value, info.field_name or "value")

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_datetime(value, "created_at")

    @property
    def text(self) -> str:
        """Trimmed text parts joined by newlines."""
        return extract_text(self.parts)


def extract_text(parts: Any) -> str:
    if not isinstance(parts, list):
        return ""
    texts = []
    for part in parts:
        if not isinstance(part, dict) or part.get("type") != "text":
            continue
        text = part.get("text")
        if isinstance(text, str) and text.strip():
            texts.append(text.strip())
    return "\n".join(texts)


__all__ = ["ChatMessage", "extract_text"]
