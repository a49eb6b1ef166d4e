from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import Field, ValidationInfo, field_validator

from chatstore.models.base import (
    EntityModel,
    coerce_datetime,
    ensure_non_empty_text,
    utc_now,
)
from chatstore.models.enums import DocumentKind, RowKind


class Document(EntityModel):
    """One saved version of an artifact document."""

    ROW_KIND: ClassVar[RowKind] = RowKind.DOCUMENT

    row_kind: Literal[RowKind.DOCUMENT] = RowKind.DOCUMENT
    id: str
    user_id: str
    title: str
    kind: DocumentKind = DocumentKind.TEXT
    content: str = ""
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("id", "user_id", "title")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_datetime(value, "created_at")


class UserAccount(EntityModel):
    ROW_KIND: ClassVar[RowKind] = RowKind.USER

    row_kind: Literal[RowKind.USER] = RowKind.USER
    id: str
    email: str
    password_hash: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("id", "email")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_datetime(value, "created_at")


__all__ = ["Document", "UserAccount"]
