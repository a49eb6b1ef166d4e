"""Conversion between domain entities and physical rows of the messages table.

Every entity kind shares the ``ChatMessageRecord`` shape. Meta-rows (chat,
provider session, document, user) carry a JSON payload in ``parts_json`` whose
``rowKind`` field names the entity; rows written before the field existed are
recognized by their id prefix and reserved session id.

Decoding never raises. Bad JSON, missing columns (narrow fallback queries) and
odd timestamp formats degrade to a minimal reconstruction instead.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from urllib.parse import quote, unquote
from uuid import uuid4

import structlog
from pydantic import ValidationError

from chatstore.models.base import utc_now
from chatstore.models.chat import DEFAULT_CHAT_TITLE, Chat, ProviderSession
from chatstore.models.document import Document, UserAccount
from chatstore.models.entity import StoredEntity
from chatstore.models.enums import DocumentKind, Role, RowKind, Visibility
from chatstore.models.file import ChatFile
from chatstore.models.message import ChatMessage, extract_text
from chatstore.models.tables import ChatFileRecord, ChatMessageRecord

Row = Mapping[str, Any]

META_SESSION_PREFIX = "__meta__"
CHATS_SESSION = f"{META_SESSION_PREFIX}chats"
PROVIDERS_SESSION = f"{META_SESSION_PREFIX}providers"
DOCUMENTS_SESSION = f"{META_SESSION_PREFIX}documents"
USERS_SESSION = f"{META_SESSION_PREFIX}users"

CHAT_ID_PREFIX = "chat:"
PROVIDER_ID_PREFIX = "provider:"
DOCUMENT_ID_PREFIX = "doc:"
USER_ID_PREFIX = "user:"

DEFAULT_DOCUMENT_TITLE = "Document"

_SHORT_OFFSET = re.compile(r"(:\d{2}(?:\.\d+)?)([+-]\d{2})$")


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. ``2024-01-15T10:30:00.000Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any, default: datetime | None = None) -> datetime:
    """Parse ISO text, BigQuery TIMESTAMP text or epoch seconds; ``default``/now on failure."""
    fallback = default or utc_now()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return fallback

    text = value.strip()
    try:
        return datetime.fromtimestamp(float(text), tz=timezone.utc)
    except (ValueError, OverflowError):
        pass

    text = text.replace("Z", "+00:00").replace(" UTC", "+00:00")
    text = _SHORT_OFFSET.sub(r"\1\2:00", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return fallback
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_json(value: Any, fallback: Any) -> Any:
    if not isinstance(value, str) or not value:
        return fallback
    try:
        return json.loads(value)
    except ValueError:
        return fallback


def parse_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1")


def is_meta_session(session_id: str | None) -> bool:
    return (session_id or "").startswith(META_SESSION_PREFIX)


def normalize_visibility(value: Any) -> Visibility:
    return Visibility.PUBLIC if value == Visibility.PUBLIC.value else Visibility.PRIVATE


def normalize_role(value: Any) -> Role:
    try:
        return Role(value)
    except ValueError:
        return Role.ASSISTANT


def strip_prefix(value: str | None, prefix: str) -> str:
    if not value:
        return ""
    return value[len(prefix) :] if value.startswith(prefix) else value


def chat_row_id(chat_id: str) -> str:
    return f"{CHAT_ID_PREFIX}{chat_id}"


def provider_row_id(chat_id: str, provider: str) -> str:
    return f"{PROVIDER_ID_PREFIX}{chat_id}:{quote(provider, safe='')}"


def user_row_id(user_id: str) -> str:
    return f"{USER_ID_PREFIX}{user_id}"


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


def _dict_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class EntityCodec:
    """Encodes entities into ``ChatMessageRecord`` rows and decodes them back."""

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
        token_factory: Callable[[], str] = lambda: uuid4().hex[:8],
    ) -> None:
        self._logger = logger or structlog.get_logger(__name__)
        self._clock = clock
        self._token_factory = token_factory

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode_message(
        self,
        message: ChatMessage,
        user_id: str,
        session_id: str,
        visibility: Visibility,
    ) -> ChatMessageRecord:
        return ChatMessageRecord(
            message_id=message.id,
            session_id=session_id,
            chat_id=message.chat_id,
            user_id=user_id,
            role=message.role.value,
            content=extract_text(message.parts),
            created_at=format_timestamp(message.created_at),
            updated_at=format_timestamp(self._clock()),
            parts_json=json.dumps(message.parts),
            attachments_json=json.dumps(message.attachments),
            chart_spec_json=None if message.chart_spec is None else json.dumps(message.chart_spec),
            chart_error=message.chart_error,
            answered_in=message.answered_in,
            visibility=visibility.value,
            is_deleted=False,
        )

    def encode_chat(self, chat: Chat) -> ChatMessageRecord:
        updated_at = chat.updated_at or self._clock()
        payload = {
            "rowKind": RowKind.CHAT.value,
            "chatId": chat.id,
            "userId": chat.user_id,
            "title": chat.title,
            "visibility": chat.visibility.value,
            "createdAt": format_timestamp(chat.created_at),
            "updatedAt": format_timestamp(updated_at),
        }
        return self._meta_record(
            message_id=chat_row_id(chat.id),
            session_id=chat.id,
            user_id=chat.user_id,
            content=chat.title,
            payload=payload,
            visibility=chat.visibility,
        )

    def encode_provider_session(self, session: ProviderSession) -> ChatMessageRecord:
        payload = {
            "rowKind": RowKind.PROVIDER_SESSION.value,
            "chatId": session.chat_id,
            "provider": session.provider,
            "sessionId": session.session_id,
            "userId": session.user_id,
            "createdAt": format_timestamp(session.created_at),
            "updatedAt": format_timestamp(session.updated_at),
        }
        return self._meta_record(
            message_id=provider_row_id(session.chat_id, session.provider),
            session_id=session.chat_id,
            user_id=session.user_id,
            content=session.session_id,
            payload=payload,
        )

    def encode_document(self, document: Document) -> ChatMessageRecord:
        """Documents are versioned: every save gets a fresh row id."""
        created_ms = int(document.created_at.timestamp() * 1000)
        payload = {
            "rowKind": RowKind.DOCUMENT.value,
            "id": document.id,
            "title": document.title,
            "kind": document.kind.value,
            "content": document.content,
            "userId": document.user_id,
            "createdAt": format_timestamp(document.created_at),
        }
        return self._meta_record(
            message_id=f"{DOCUMENT_ID_PREFIX}{document.id}:{created_ms}:{self._token_factory()}",
            session_id=DOCUMENTS_SESSION,
            user_id=document.user_id,
            content=document.title,
            payload=payload,
        )

    def encode_user(self, user: UserAccount) -> ChatMessageRecord:
        payload = {
            "rowKind": RowKind.USER.value,
            "userId": user.id,
            "email": user.email,
            "password": user.password_hash,
            "createdAt": format_timestamp(user.created_at),
            "updatedAt": format_timestamp(self._clock()),
        }
        return self._meta_record(
            message_id=user_row_id(user.id),
            session_id=USERS_SESSION,
            user_id=user.id,
            content=user.email,
            payload=payload,
        )

    def encode_file(self, file: ChatFile) -> ChatFileRecord:
        data = file.model_dump()
        data["created_at"] = format_timestamp(file.created_at)
        return ChatFileRecord.model_validate(data)

    def _meta_record(
        self,
        message_id: str,
        session_id: str,
        user_id: str,
        content: str,
        payload: dict[str, Any],
        visibility: Visibility | None = None,
    ) -> ChatMessageRecord:
        created_at = payload.get("createdAt") or format_timestamp(self._clock())
        return ChatMessageRecord(
            message_id=message_id,
            session_id=session_id,
            chat_id=session_id,
            user_id=user_id,
            role=Role.SYSTEM.value,
            content=content,
            created_at=created_at,
            updated_at=payload.get("updatedAt") or format_timestamp(self._clock()),
            parts_json=json.dumps(payload),
            attachments_json="[]",
            chart_spec_json=None,
            chart_error=None,
            answered_in=None,
            visibility=visibility.value if visibility else None,
            is_deleted=False,
        )

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def classify(self, row: Row) -> RowKind:
        """Tell which entity a physical row holds."""
        payload = parse_json(row.get("parts_json"), None)
        if isinstance(payload, dict):
            try:
                return RowKind(payload.get("rowKind"))
            except ValueError:
                pass

        message_id = row.get("message_id") or ""
        if row.get("role") == Role.SYSTEM.value:
            if message_id.startswith(CHAT_ID_PREFIX):
                return RowKind.CHAT
            if message_id.startswith(PROVIDER_ID_PREFIX):
                return RowKind.PROVIDER_SESSION
            if message_id.startswith(DOCUMENT_ID_PREFIX):
                return RowKind.DOCUMENT
            if message_id.startswith(USER_ID_PREFIX) or row.get("session_id") == USERS_SESSION:
                return RowKind.USER
        return RowKind.MESSAGE

    def decode(self, row: Row) -> StoredEntity | None:
        kind = self.classify(row)
        if kind is RowKind.CHAT:
            return self.decode_chat(row)
        if kind is RowKind.PROVIDER_SESSION:
            return self.decode_provider_session(row)
        if kind is RowKind.DOCUMENT:
            return self.decode_document(row)
        if kind is RowKind.USER:
            return self.decode_user(row)
        return self.decode_message(row)

    def decode_message(self, row: Row) -> ChatMessage | None:
        content = row.get("content") or ""
        fallback_parts = [{"type": "text", "text": content}] if content else []
        parts = parse_json(row.get("parts_json"), None)
        parts = _dict_list(parts) if isinstance(parts, list) else fallback_parts
        chart_spec = parse_json(row.get("chart_spec_json"), None)

        return self._build(
            ChatMessage,
            row,
            id=row.get("message_id") or "",
            chat_id=row.get("chat_id") or row.get("session_id") or "",
            role=normalize_role(row.get("role")),
            parts=parts,
            attachments=_dict_list(parse_json(row.get("attachments_json"), [])),
            chart_spec=chart_spec if isinstance(chart_spec, dict) else None,
            chart_error=row.get("chart_error") or None,
            answered_in=parse_int(row.get("answered_in")),
            created_at=parse_timestamp(row.get("created_at")),
        )

    def decode_chat(self, row: Row) -> Chat | None:
        payload = self._payload(row)
        visibility = payload.get("visibility") if "visibility" in payload else row.get("visibility")
        return self._build(
            Chat,
            row,
            id=_text(payload, "chatId") or strip_prefix(row.get("message_id"), CHAT_ID_PREFIX),
            user_id=_text(payload, "userId") or row.get("user_id") or "",
            title=_text(payload, "title") or row.get("content") or DEFAULT_CHAT_TITLE,
            visibility=normalize_visibility(visibility),
            created_at=parse_timestamp(payload.get("createdAt") or row.get("created_at")),
            updated_at=parse_timestamp(payload.get("updatedAt") or row.get("updated_at") or row.get("created_at")),
        )

    def decode_derived_chat(self, row: Row) -> Chat | None:
        """Chat aggregated from conversation rows of a chat with no meta-row."""
        chat_id = row.get("chat_id") or row.get("id") or ""
        if not chat_id or is_meta_session(chat_id):
            return None
        return self._build(
            Chat,
            row,
            id=chat_id,
            user_id=row.get("user_id") or "",
            title=row.get("title") or DEFAULT_CHAT_TITLE,
            visibility=normalize_visibility(row.get("visibility")),
            created_at=parse_timestamp(row.get("created_at")),
        )

    def decode_provider_session(self, row: Row) -> ProviderSession | None:
        payload = self._payload(row)
        id_chat, _, id_provider = strip_prefix(row.get("message_id"), PROVIDER_ID_PREFIX).partition(":")
        created_at = parse_timestamp(payload.get("createdAt") or row.get("created_at"))
        return self._build(
            ProviderSession,
            row,
            chat_id=_text(payload, "chatId") or id_chat,
            provider=_text(payload, "provider") or unquote(id_provider),
            session_id=_text(payload, "sessionId") or row.get("content") or "",
            user_id=_text(payload, "userId") or row.get("user_id") or "",
            created_at=created_at,
            updated_at=parse_timestamp(payload.get("updatedAt") or row.get("updated_at"), default=created_at),
        )

    def decode_document(self, row: Row) -> Document | None:
        payload = self._payload(row)
        try:
            kind = DocumentKind(payload.get("kind"))
        except ValueError:
            kind = DocumentKind.TEXT
        return self._build(
            Document,
            row,
            id=_text(payload, "id") or strip_prefix(row.get("message_id"), DOCUMENT_ID_PREFIX).split(":")[0],
            user_id=_text(payload, "userId") or row.get("user_id") or "",
            title=_text(payload, "title") or row.get("content") or DEFAULT_DOCUMENT_TITLE,
            kind=kind,
            content=_text(payload, "content"),
            created_at=parse_timestamp(payload.get("createdAt") or row.get("created_at")),
        )

    def decode_user(self, row: Row) -> UserAccount | None:
        payload = self._payload(row)
        return self._build(
            UserAccount,
            row,
            id=row.get("user_id") or _text(payload, "userId") or strip_prefix(row.get("message_id"), USER_ID_PREFIX),
            email=row.get("content") or _text(payload, "email"),
            password_hash=_text(payload, "password") or None,
            created_at=parse_timestamp(payload.get("createdAt") or row.get("created_at")),
        )

    def decode_file(self, row: Row) -> ChatFile | None:
        session_id = row.get("session_id") or ""
        return self._build(
            ChatFile,
            row,
            file_id=row.get("file_id") or "",
            session_id=session_id,
            user_id=row.get("user_id") or "",
            chat_id=row.get("chat_id") or session_id,
            message_id=row.get("message_id") or None,
            filename=row.get("filename") or "",
            content_type=row.get("content_type") or "",
            file_size=parse_int(row.get("file_size")) or 0,
            gcs_url=row.get("gcs_url") or "",
            object_path=row.get("object_path") or "",
            created_at=parse_timestamp(row.get("created_at")),
            is_deleted=parse_bool(row.get("is_deleted")),
        )

    def _payload(self, row: Row) -> dict[str, Any]:
        payload = parse_json(row.get("parts_json"), {})
        return payload if isinstance(payload, dict) else {}

    def _build(self, model: type, row: Row, **fields: Any) -> Any:
        try:
            return model(**fields)
        except ValidationError as error:
            self._logger.debug(
                "row_decode_skipped",
                entity=model.__name__,
                message_id=row.get("message_id") or row.get("file_id"),
                error_count=error.error_count(),
            )
            return None
