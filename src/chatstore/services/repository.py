"""Chats, messages and provider sessions stored in the messages table.

Reads run a primary query and, unless the warehouse reported a rate limit, a
narrower fallback that only touches columns every table generation has. Writes
go through the schema negotiator and always propagate failures. Listing and
counting reads degrade to empty results with a throttled warning.
"""

import json
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Sequence

import structlog

from chatstore.config import WarehouseSettings
from chatstore.errors import EntityNotFoundError, OwnershipResolutionError, SchemaMismatchError, WarehouseError
from chatstore.models.base import utc_now
from chatstore.models.chat import Chat, ChatPage, ProviderSession
from chatstore.models.enums import UpsertOutcome, Visibility
from chatstore.models.message import ChatMessage, extract_text
from chatstore.models.tables import ChatMessageRecord
from chatstore.models.warehouse import QueryParameter
from chatstore.services.codec import (
    CHAT_ID_PREFIX,
    CHATS_SESSION,
    META_SESSION_PREFIX,
    PROVIDERS_SESSION,
    EntityCodec,
    chat_row_id,
    format_timestamp,
    normalize_visibility,
    parse_int,
    provider_row_id,
    strip_prefix,
)
from chatstore.services.executor import RequestExecutor
from chatstore.services.negotiator import SchemaNegotiator
from chatstore.services.schema import TableManager
from chatstore.services.store import NOT_DELETED, WarehouseStore

DEFAULT_PAGE_SIZE = 20

_IN_CHAT = "(chat_id = @chat_id OR (chat_id IS NULL AND session_id = @chat_id))"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()
"""Marks an optional update argument the caller did not pass."""


class ChatRepository(WarehouseStore):
    """Async CRUD over chats, conversation messages and provider sessions."""

    def __init__(
        self,
        executor: RequestExecutor,
        negotiator: SchemaNegotiator,
        codec: EntityCodec,
        tables: TableManager,
        settings: WarehouseSettings,
        logger: structlog.stdlib.BoundLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(
            executor,
            tables,
            settings,
            logger=logger or structlog.get_logger(__name__),
            clock=clock,
            now=now,
        )
        self._negotiator = negotiator
        self._codec = codec
        self._table = settings.messages_table_ref

    @property
    def codec(self) -> EntityCodec:
        return self._codec

    async def ensure_ready(self) -> None:
        """Create missing tables (when enabled) and probe the live schema."""
        await self._tables.ensure_tables()
        await self._negotiator.ensure_probed()

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def save_chat(
        self,
        id: str,
        user_id: str,
        title: str,
        visibility: Visibility = Visibility.PRIVATE,
    ) -> Chat:
        existing = await self._get_chat_meta(id)
        now = self._now()
        chat = Chat(
            id=id,
            user_id=user_id,
            title=title,
            visibility=visibility,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        return await self._store_chat(chat)

    async def get_chat_by_id(self, id: str) -> Chat | None:
        """Chat meta-row, else a chat derived from its messages; ``None`` on failure."""
        try:
            chat = await self._get_chat_meta(id)
            if chat is not None:
                return chat
            return await self._get_derived_chat(id)
        except WarehouseError as error:
            self._log_read_failure("chat_lookup_failed", error, chat_id=id)
            return None

    async def get_chats_by_user_id(
        self,
        user_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        starting_after: str | None = None,
        ending_before: str | None = None,
    ) -> ChatPage:
        """Newest-first page of the user's chats.

        Raises:
            EntityNotFoundError: If the cursor chat does not exist.
        """
        cursor_created_at: str | None = None
        operator: str | None = None
        cursor_id = starting_after or ending_before
        if cursor_id:
            cursor_chat = await self.get_chat_by_id(cursor_id)
            if cursor_chat is None:
                raise EntityNotFoundError("chat", cursor_id)
            cursor_created_at = format_timestamp(cursor_chat.created_at)
            operator = ">" if starting_after else "<"

        params = [
            QueryParameter.string("user_id", user_id),
            QueryParameter.int64("limit", limit + 1),
        ]
        if cursor_created_at is not None:
            params.append(QueryParameter.string("cursor_created_at", cursor_created_at))

        try:
            meta_chats = await self._list_chat_meta(params, operator)
            if meta_chats:
                return self._page(meta_chats, limit)
            return self._page(await self._list_derived_chats(params, operator), limit)
        except WarehouseError as error:
            self._log_read_failure("chat_history_unavailable", error, user_id=user_id)
            return ChatPage()

    async def delete_chat_by_id(self, id: str) -> Chat | None:
        """Hard-delete a chat with its messages and provider sessions.

        Returns:
            The chat as it was before deletion, if it could be loaded.
        """
        chat = await self.get_chat_by_id(id)
        chat_param = QueryParameter.string("chat_id", id)

        await self._run(
            "delete_chat_messages",
            f"DELETE FROM `{self._table}` WHERE {_IN_CHAT}",
            [chat_param],
            fallback_sql=f"DELETE FROM `{self._table}` WHERE session_id = @chat_id",
        )
        await self._run(
            "delete_chat_provider_sessions",
            f"""
DELETE FROM `{self._table}`
WHERE STARTS_WITH(message_id, @provider_prefix)
  AND (session_id = @chat_id OR session_id = @provider_session)
""",
            [
                QueryParameter.string("provider_prefix", provider_row_id(id, "")),
                chat_param,
                QueryParameter.string("provider_session", PROVIDERS_SESSION),
            ],
        )
        await self._run(
            "delete_chat_meta",
            f"""
DELETE FROM `{self._table}`
WHERE message_id = @message_id
  AND role = 'system'
  AND (session_id = @chat_id OR session_id = @chats_session)
""",
            [
                QueryParameter.string("message_id", chat_row_id(id)),
                chat_param,
                QueryParameter.string("chats_session", CHATS_SESSION),
            ],
        )
        self._logger.info("chat_deleted", chat_id=id, found=chat is not None)
        return chat

    async def delete_all_chats_by_user_id(self, user_id: str) -> int:
        """Delete every chat the user owns.

        Returns:
            The number of chats deleted.

        Raises:
            WarehouseError: If there were chats and none could be deleted.
        """
        rows = await self._rows(
            "list_user_chat_ids",
            f"""
SELECT message_id
FROM `{self._table}`
WHERE STARTS_WITH(message_id, @chat_prefix)
  AND role = 'system'
  AND user_id = @user_id
  AND {NOT_DELETED}
""",
            [
                QueryParameter.string("chat_prefix", CHAT_ID_PREFIX),
                QueryParameter.string("user_id", user_id),
            ],
            fallback_sql=f"""
SELECT message_id
FROM `{self._table}`
WHERE STARTS_WITH(message_id, @chat_prefix)
  AND role = 'system'
  AND user_id = @user_id
""",
        )
        chat_ids = [strip_prefix(row.get("message_id"), CHAT_ID_PREFIX) for row in rows]
        chat_ids = [chat_id for chat_id in chat_ids if chat_id]

        deleted = 0
        last_error: WarehouseError | None = None
        for chat_id in chat_ids:
            try:
                await self.delete_chat_by_id(chat_id)
            except WarehouseError as error:
                last_error = error
                self._logger.warning("chat_delete_failed", user_id=user_id, chat_id=chat_id, error=str(error))
            else:
                deleted += 1

        if deleted == 0 and last_error is not None:
            raise last_error
        return deleted

    async def update_chat_visibility_by_id(self, chat_id: str, visibility: Visibility) -> Chat | None:
        chat = await self.get_chat_by_id(chat_id)
        if chat is None:
            return None

        updated = chat.model_copy(update={"visibility": visibility, "updated_at": self._now()})
        updated = await self._store_chat(updated)

        # Sharing reads the meta-row; message rows are only backfilled.
        try:
            await self._run(
                "backfill_message_visibility",
                f"""
UPDATE `{self._table}`
SET visibility = @visibility
WHERE {_IN_CHAT}
  AND NOT STARTS_WITH(session_id, @meta_prefix)
""",
                [
                    QueryParameter.string("visibility", visibility.value),
                    QueryParameter.string("chat_id", chat_id),
                    QueryParameter.string("meta_prefix", META_SESSION_PREFIX),
                ],
                fallback_sql=f"""
UPDATE `{self._table}`
SET visibility = @visibility
WHERE session_id = @chat_id
  AND NOT STARTS_WITH(session_id, @meta_prefix)
""",
            )
        except WarehouseError as error:
            self._logger.warning("message_visibility_backfill_failed", chat_id=chat_id, error=str(error))
        return updated

    async def update_chat_title_by_id(self, chat_id: str, title: str) -> Chat | None:
        chat = await self.get_chat_by_id(chat_id)
        if chat is None:
            return None
        updated = chat.model_copy(update={"title": title, "updated_at": self._now()})
        updated = await self._store_chat(updated)
        return updated

    # ------------------------------------------------------------------
    # Provider sessions
    # ------------------------------------------------------------------

    async def get_provider_session_by_chat_id(self, chat_id: str, provider: str) -> ProviderSession | None:
        params = [
            QueryParameter.string("message_id", provider_row_id(chat_id, provider)),
            QueryParameter.string("chat_id", chat_id),
            QueryParameter.string("legacy_session_id", PROVIDERS_SESSION),
        ]
        rows = await self._rows(
            "get_provider_session",
            f"""
SELECT message_id, user_id, content, parts_json, created_at, updated_at
FROM `{self._table}`
WHERE message_id = @message_id
  AND (session_id = @chat_id OR session_id = @legacy_session_id)
  AND {NOT_DELETED}
LIMIT 1
""",
            params,
            fallback_sql=f"""
SELECT message_id, user_id, content, created_at
FROM `{self._table}`
WHERE message_id = @message_id
  AND (session_id = @chat_id OR session_id = @legacy_session_id)
LIMIT 1
""",
        )
        return self._codec.decode_provider_session(rows[0]) if rows else None

    async def upsert_provider_session(
        self,
        chat_id: str,
        provider: str,
        session_id: str,
        user_id: str,
    ) -> ProviderSession:
        existing = await self.get_provider_session_by_chat_id(chat_id, provider)
        now = self._now()
        session = ProviderSession(
            chat_id=chat_id,
            provider=provider,
            session_id=session_id,
            user_id=user_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        await self.upsert_record(self._codec.encode_provider_session(session))
        return session

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save_messages(self, messages: Iterable[ChatMessage], session_id: str) -> list[UpsertOutcome]:
        """Upsert conversation messages, one row at a time.

        Messages repeated in the batch are written once (the last one wins).
        A failure part way through leaves the earlier messages stored; saving
        the batch again is safe.

        Raises:
            ValueError: If ``session_id`` is blank.
            OwnershipResolutionError: If a chat's owner cannot be determined.
        """
        if not session_id or not session_id.strip():
            raise ValueError("session_id is required to persist messages")

        unique = list({message.id: message for message in messages}.values())
        owners: dict[str, tuple[str, Visibility]] = {}
        outcomes = []

        for message in unique:
            if message.chat_id not in owners:
                owner = await self._resolve_owner(message.chat_id)
                if owner is None:
                    raise OwnershipResolutionError(message.chat_id)
                owners[message.chat_id] = owner

            user_id, visibility = owners[message.chat_id]
            record = self._codec.encode_message(message, user_id=user_id, session_id=session_id, visibility=visibility)
            outcomes.append(await self.upsert_record(record))

        self._logger.debug("messages_saved", session_id=session_id, count=len(unique))
        return outcomes

    async def get_messages_by_chat_id(self, chat_id: str) -> list[ChatMessage]:
        rows = await self._rows(
            "get_chat_messages",
            f"""
SELECT message_id, session_id, chat_id, role, content, created_at,
       parts_json, attachments_json, chart_spec_json, chart_error,
       CAST(answered_in AS STRING) AS answered_in
FROM `{self._table}`
WHERE {_IN_CHAT}
  AND NOT STARTS_WITH(session_id, @meta_prefix)
  AND role != 'system'
  AND {NOT_DELETED}
ORDER BY SAFE_CAST(created_at AS TIMESTAMP) ASC
""",
            [
                QueryParameter.string("chat_id", chat_id),
                QueryParameter.string("meta_prefix", META_SESSION_PREFIX),
            ],
            fallback_sql=f"""
SELECT message_id, session_id, role, content, created_at
FROM `{self._table}`
WHERE session_id = @chat_id
  AND NOT STARTS_WITH(session_id, @meta_prefix)
  AND role != 'system'
ORDER BY created_at ASC
""",
        )
        return self._decode_messages(rows)

    async def get_message_by_id(self, id: str) -> list[ChatMessage]:
        try:
            rows = await self._rows(
                "get_message",
                f"""
SELECT message_id, session_id, chat_id, role, content, created_at,
       parts_json, attachments_json, chart_spec_json, chart_error,
       CAST(answered_in AS STRING) AS answered_in
FROM `{self._table}`
WHERE message_id = @message_id
  AND {NOT_DELETED}
ORDER BY SAFE_CAST(created_at AS TIMESTAMP) ASC
""",
                [QueryParameter.string("message_id", id)],
                fallback_sql=f"""
SELECT message_id, session_id, role, content, created_at
FROM `{self._table}`
WHERE message_id = @message_id
ORDER BY created_at ASC
""",
            )
        except WarehouseError as error:
            self._log_read_failure("message_lookup_failed", error, message_id=id)
            return []
        return self._decode_messages(rows)

    async def get_message_count_by_user_id(self, user_id: str, difference_in_hours: float) -> int:
        """User-authored messages in the last ``difference_in_hours``; 0 on failure."""
        threshold = format_timestamp(self._now() - timedelta(hours=difference_in_hours))
        try:
            rows = await self._rows(
                "count_user_messages",
                f"""
SELECT COUNT(1) AS total
FROM `{self._table}`
WHERE user_id = @user_id
  AND role = 'user'
  AND NOT STARTS_WITH(session_id, @meta_prefix)
  AND {NOT_DELETED}
  AND SAFE_CAST(created_at AS TIMESTAMP) >= SAFE_CAST(@threshold AS TIMESTAMP)
""",
                [
                    QueryParameter.string("user_id", user_id),
                    QueryParameter.string("meta_prefix", META_SESSION_PREFIX),
                    QueryParameter.string("threshold", threshold),
                ],
                fallback_sql=f"""
SELECT COUNT(1) AS total
FROM `{self._table}`
WHERE user_id = @user_id
  AND role = 'user'
  AND NOT STARTS_WITH(session_id, @meta_prefix)
  AND created_at >= @threshold
""",
            )
        except WarehouseError as error:
            self._log_read_failure("message_count_unavailable", error, user_id=user_id)
            return 0
        return (parse_int(rows[0].get("total")) or 0) if rows else 0

    async def delete_messages_by_chat_id_after_timestamp(
        self,
        chat_id: str,
        timestamp: datetime,
        soft: bool = False,
    ) -> None:
        """Remove the chat's messages created at or after ``timestamp``.

        With ``soft=True`` the rows are flagged ``is_deleted`` instead.
        """
        if soft:
            action = f"UPDATE `{self._table}` SET is_deleted = TRUE, updated_at = @updated_at"
            name = "soft_delete_messages_after"
        else:
            action = f"DELETE FROM `{self._table}`"
            name = "delete_messages_after"
        condition = """
  AND NOT STARTS_WITH(session_id, @meta_prefix)
  AND role != 'system'
  AND SAFE_CAST(created_at AS TIMESTAMP) >= SAFE_CAST(@threshold AS TIMESTAMP)
"""
        params = [
            QueryParameter.string("chat_id", chat_id),
            QueryParameter.string("meta_prefix", META_SESSION_PREFIX),
            QueryParameter.string("threshold", format_timestamp(timestamp)),
        ]
        if soft:
            params.append(QueryParameter.string("updated_at", format_timestamp(self._now())))

        run = self._run_touching if soft else self._run
        await run(
            name,
            f"{action}\nWHERE {_IN_CHAT}{condition}",
            params,
            fallback_sql=f"{action}\nWHERE session_id = @chat_id{condition}",
        )

    async def update_message(
        self,
        id: str,
        parts: Sequence[dict[str, Any]],
        chart_spec: dict[str, Any] | None = UNSET,
        chart_error: str | None = UNSET,
    ) -> None:
        """Replace a message's parts; chart fields change only when passed.

        Passing ``None`` for ``chart_spec`` or ``chart_error`` clears it.
        """
        parts = list(parts)
        set_chart_spec = chart_spec is not UNSET
        set_chart_error = chart_error is not UNSET
        await self._run_touching(
            "update_message",
            f"""
UPDATE `{self._table}`
SET
  parts_json = @parts_json,
  content = @content,
  updated_at = @updated_at,
  chart_spec_json = IF(@set_chart_spec, NULLIF(@chart_spec_json, ''), chart_spec_json),
  chart_error = IF(@set_chart_error, NULLIF(@chart_error, ''), chart_error)
WHERE message_id = @message_id
""",
            [
                QueryParameter.string("parts_json", json.dumps(parts)),
                QueryParameter.string("content", extract_text(parts)),
                QueryParameter.string("updated_at", format_timestamp(self._now())),
                QueryParameter.boolean("set_chart_spec", set_chart_spec),
                QueryParameter.string(
                    "chart_spec_json",
                    json.dumps(chart_spec) if set_chart_spec and chart_spec is not None else "",
                ),
                QueryParameter.boolean("set_chart_error", set_chart_error),
                QueryParameter.string("chart_error", chart_error if set_chart_error and chart_error else ""),
                QueryParameter.string("message_id", id),
            ],
        )

    async def update_message_answered_in(self, id: str, answered_in: int) -> None:
        if answered_in < 0:
            raise ValueError("answered_in must be non-negative")
        await self._run_touching(
            "update_message_answered_in",
            f"""
UPDATE `{self._table}`
SET answered_in = @answered_in, updated_at = @updated_at
WHERE message_id = @message_id
""",
            [
                QueryParameter.int64("answered_in", answered_in),
                QueryParameter.string("updated_at", format_timestamp(self._now())),
                QueryParameter.string("message_id", id),
            ],
        )

    async def soft_delete_chat_messages(self, chat_id: str, user_id: str) -> None:
        """Flag every live message of the user's chat as deleted."""
        await self._run_touching(
            "soft_delete_chat_messages",
            f"""
UPDATE `{self._table}`
SET is_deleted = TRUE, updated_at = @updated_at
WHERE {_IN_CHAT}
  AND user_id = @user_id
  AND NOT STARTS_WITH(session_id, @meta_prefix)
  AND role != 'system'
  AND {NOT_DELETED}
""",
            [
                QueryParameter.string("updated_at", format_timestamp(self._now())),
                QueryParameter.string("chat_id", chat_id),
                QueryParameter.string("user_id", user_id),
                QueryParameter.string("meta_prefix", META_SESSION_PREFIX),
            ],
        )

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def upsert_record(self, record: ChatMessageRecord) -> UpsertOutcome:
        await self._tables.ensure_tables()
        return await self._negotiator.upsert(record)

    async def _store_chat(self, chat: Chat) -> Chat:
        """Upsert the chat meta-row and return the chat as stored."""
        outcome = await self.upsert_record(self._codec.encode_chat(chat))
        if outcome is not UpsertOutcome.ALREADY_PRESENT:
            return chat
        # The insert fallback leaves an existing row untouched.
        self._logger.warning("chat_meta_unchanged", chat_id=chat.id)
        return await self._get_chat_meta(chat.id) or chat

    async def _run_touching(
        self,
        name: str,
        sql: str,
        params: Sequence[QueryParameter],
        fallback_sql: str | None = None,
    ) -> None:
        """Run an UPDATE that stamps ``updated_at`` in the learned cast mode.

        A temporal assignment error teaches the negotiator the column type and
        the statement is sent once more.
        """

        def render(statement: str | None) -> str | None:
            if statement is None:
                return None
            return statement.replace("@updated_at", self._negotiator.updated_at_expression())

        await self._negotiator.ensure_probed()
        try:
            await self._run(name, render(sql), params, fallback_sql=render(fallback_sql))
        except SchemaMismatchError as error:
            if not self._negotiator.learn_updated_at(error):
                raise
            await self._run(name, render(sql), params, fallback_sql=render(fallback_sql))

    def _decode_messages(self, rows: list[dict[str, str | None]]) -> list[ChatMessage]:
        messages = (self._codec.decode_message(row) for row in rows)
        return [message for message in messages if message is not None]

    def _page(self, chats: list[Chat], limit: int) -> ChatPage:
        has_more = len(chats) > limit
        return ChatPage(chats=chats[:limit], has_more=has_more)

    async def _get_chat_meta(self, chat_id: str) -> Chat | None:
        params = [
            QueryParameter.string("message_id", chat_row_id(chat_id)),
            QueryParameter.string("chat_id", chat_id),
            QueryParameter.string("legacy_session_id", CHATS_SESSION),
        ]
        rows = await self._rows(
            "get_chat_meta",
            f"""
SELECT message_id, user_id, role, content, parts_json, visibility, created_at, updated_at
FROM `{self._table}`
WHERE message_id = @message_id
  AND role = 'system'
  AND (session_id = @chat_id OR session_id = @legacy_session_id)
  AND {NOT_DELETED}
LIMIT 1
""",
            params,
            fallback_sql=f"""
SELECT message_id, user_id, role, content, parts_json, created_at
FROM `{self._table}`
WHERE message_id = @message_id
  AND role = 'system'
  AND (session_id = @chat_id OR session_id = @legacy_session_id)
LIMIT 1
""",
        )
        return self._codec.decode_chat(rows[0]) if rows else None

    async def _get_derived_chat(self, chat_id: str) -> Chat | None:
        rows = await self._rows(
            "get_derived_chat",
            f"""
SELECT
  COALESCE(chat_id, session_id) AS chat_id,
  ANY_VALUE(user_id) AS user_id,
  MIN(created_at) AS created_at,
  ANY_VALUE(visibility) AS visibility,
  ARRAY_AGG(
    IF(role = 'user', content, NULL) IGNORE NULLS
    ORDER BY SAFE_CAST(created_at AS TIMESTAMP) LIMIT 1
  )[SAFE_OFFSET(0)] AS title
FROM `{self._table}`
WHERE {_IN_CHAT}
  AND role != 'system'
  AND {NOT_DELETED}
GROUP BY COALESCE(chat_id, session_id)
LIMIT 1
""",
            [QueryParameter.string("chat_id", chat_id)],
            fallback_sql=f"""
SELECT
  session_id AS chat_id,
  ANY_VALUE(user_id) AS user_id,
  MIN(created_at) AS created_at,
  ARRAY_AGG(
    IF(role = 'user', content, NULL) IGNORE NULLS
    ORDER BY created_at LIMIT 1
  )[SAFE_OFFSET(0)] AS title
FROM `{self._table}`
WHERE session_id = @chat_id
  AND role != 'system'
GROUP BY session_id
LIMIT 1
""",
        )
        return self._codec.decode_derived_chat(rows[0]) if rows else None

    async def _list_chat_meta(self, params: list[QueryParameter], operator: str | None) -> list[Chat]:
        cursor = (
            f"AND SAFE_CAST(created_at AS TIMESTAMP) {operator} SAFE_CAST(@cursor_created_at AS TIMESTAMP)"
            if operator
            else ""
        )
        fallback_cursor = f"AND created_at {operator} @cursor_created_at" if operator else ""
        rows = await self._rows(
            "list_chat_meta",
            f"""
SELECT message_id, user_id, role, content, parts_json, visibility, created_at, updated_at
FROM `{self._table}`
WHERE STARTS_WITH(message_id, @chat_prefix)
  AND role = 'system'
  AND user_id = @user_id
  AND {NOT_DELETED}
  {cursor}
ORDER BY SAFE_CAST(created_at AS TIMESTAMP) DESC
LIMIT @limit
""",
            [QueryParameter.string("chat_prefix", CHAT_ID_PREFIX), *params],
            fallback_sql=f"""
SELECT message_id, user_id, role, content, parts_json, created_at
FROM `{self._table}`
WHERE STARTS_WITH(message_id, @chat_prefix)
  AND role = 'system'
  AND user_id = @user_id
  {fallback_cursor}
ORDER BY created_at DESC
LIMIT @limit
""",
        )
        chats = (self._codec.decode_chat(row) for row in rows)
        return [chat for chat in chats if chat is not None]

    async def _list_derived_chats(self, params: list[QueryParameter], operator: str | None) -> list[Chat]:
        having = (
            f"HAVING MIN(SAFE_CAST(created_at AS TIMESTAMP)) {operator} SAFE_CAST(@cursor_created_at AS TIMESTAMP)"
            if operator
            else ""
        )
        fallback_having = f"HAVING MIN(created_at) {operator} @cursor_created_at" if operator else ""
        rows = await self._rows(
            "list_derived_chats",
            f"""
SELECT
  COALESCE(chat_id, session_id) AS chat_id,
  ANY_VALUE(user_id) AS user_id,
  MIN(created_at) AS created_at,
  ANY_VALUE(visibility) AS visibility,
  ARRAY_AGG(
    IF(role = 'user', content, NULL) IGNORE NULLS
    ORDER BY SAFE_CAST(created_at AS TIMESTAMP) LIMIT 1
  )[SAFE_OFFSET(0)] AS title
FROM `{self._table}`
WHERE user_id = @user_id
  AND NOT STARTS_WITH(COALESCE(chat_id, session_id), @meta_prefix)
  AND role != 'system'
  AND {NOT_DELETED}
GROUP BY COALESCE(chat_id, session_id)
{having}
ORDER BY MIN(SAFE_CAST(created_at AS TIMESTAMP)) DESC
LIMIT @limit
""",
            [QueryParameter.string("meta_prefix", META_SESSION_PREFIX), *params],
            fallback_sql=f"""
SELECT
  session_id AS chat_id,
  ANY_VALUE(user_id) AS user_id,
  MIN(created_at) AS created_at,
  ARRAY_AGG(
    IF(role = 'user', content, NULL) IGNORE NULLS
    ORDER BY created_at LIMIT 1
  )[SAFE_OFFSET(0)] AS title
FROM `{self._table}`
WHERE user_id = @user_id
  AND NOT STARTS_WITH(session_id, @meta_prefix)
  AND role != 'system'
GROUP BY session_id
{fallback_having}
ORDER BY MIN(created_at) DESC
LIMIT @limit
""",
        )
        chats = (self._codec.decode_derived_chat(row) for row in rows)
        return [chat for chat in chats if chat is not None]

    async def _resolve_owner(self, chat_id: str) -> tuple[str, Visibility] | None:
        chat = await self.get_chat_by_id(chat_id)
        if chat is not None:
            return chat.user_id, chat.visibility

        rows = await self._rows(
            "get_latest_chat_row",
            f"""
SELECT user_id, visibility
FROM `{self._table}`
WHERE {_IN_CHAT}
  AND {NOT_DELETED}
ORDER BY SAFE_CAST(created_at AS TIMESTAMP) DESC
LIMIT 1
""",
            [QueryParameter.string("chat_id", chat_id)],
            fallback_sql=f"""
SELECT user_id
FROM `{self._table}`
WHERE session_id = @chat_id
ORDER BY created_at DESC
LIMIT 1
""",
        )
        if not rows or not rows[0].get("user_id"):
            return None
        return rows[0]["user_id"], normalize_visibility(rows[0].get("visibility"))
