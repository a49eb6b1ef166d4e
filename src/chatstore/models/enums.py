from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Visibility(StrEnum):
    PRIVATE = "private"
    PUBLIC = "public"


class RowKind(StrEnum):
    """Discriminator for the entities packed into the messages table."""

    CHAT = "chat"
    MESSAGE = "message"
    PROVIDER_SESSION = "provider_session"
    DOCUMENT = "document"
    USER = "user"


class DocumentKind(StrEnum):
    TEXT = "text"
    CODE = "code"
    IMAGE = "image"
    SHEET = "sheet"


class TemporalCastMode(StrEnum):
    """Which timestamp columns are cast to TIMESTAMP in a MERGE source."""

    NONE = "none"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    BOTH = "both"

    @property
    def casts_created_at(self) -> bool:
        return self in (TemporalCastMode.CREATED_AT, TemporalCastMode.BOTH)

    @property
    def casts_updated_at(self) -> bool:
        return self in (TemporalCastMode.UPDATED_AT, TemporalCastMode.BOTH)

    @classmethod
    def from_flags(cls, created_at: bool, updated_at: bool) -> "TemporalCastMode":
        if created_at and updated_at:
            return cls.BOTH
        if created_at:
            return cls.CREATED_AT
        if updated_at:
            return cls.UPDATED_AT
        return cls.NONE


class UpsertOutcome(StrEnum):
    MERGED = "merged"
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"


class ParameterType(StrEnum):
    STRING = "STRING"
    INT64 = "INT64"
    BOOL = "BOOL"
