"""Unit tests for the ChatRepository against the in-memory warehouse."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from chatstore.errors import EntityNotFoundError, OwnershipResolutionError, ServiceError
from chatstore.models.enums import Role, TemporalCastMode, UpsertOutcome, Visibility
from chatstore.models.message import ChatMessage
from chatstore.services.codec import CHATS_SESSION, PROVIDERS_SESSION
from chatstore.services.factory import ChatStack, create_test_chat_stack
from chatstore.services.repository import ChatRepository
from fakes import FakeWarehouse, error_response, make_settings, rate_limit_response

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def _make_message(
    message_id: str,
    chat_id: str = "chat-1",
    role: Role = Role.USER,
    text: str = "hello",
    minutes: int = 0,
) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        chat_id=chat_id,
        role=role,
        parts=[{"type": "text", "text": text}],
        created_at=T0 + timedelta(minutes=minutes),
    )


def _denied() -> object:
    return error_response(403, "Access Denied", reason="accessDenied")


@pytest.fixture
def repository(stack: ChatStack) -> ChatRepository:
    return stack.repository


class TestChats:
    """Tests for saving and loading chat meta-rows."""

    async def test_save_and_get_chat(self, repository: ChatRepository) -> None:
        saved = await repository.save_chat("chat-1", "user-1", "Quarterly sales")

        loaded = await repository.get_chat_by_id("chat-1")

        assert loaded == saved
        assert loaded.visibility is Visibility.PRIVATE

    async def test_resave_keeps_created_at(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        first = await repository.save_chat("chat-1", "user-1", "Draft")

        second = await repository.save_chat("chat-1", "user-1", "Final")

        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at
        assert [row["message_id"] for row in warehouse.messages.values()] == ["chat:chat-1"]
        assert (await repository.get_chat_by_id("chat-1")).title == "Final"

    async def test_unknown_chat_is_none(self, repository: ChatRepository) -> None:
        assert await repository.get_chat_by_id("missing") is None

    async def test_reads_legacy_meta_row(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        warehouse.put_message(
            message_id="chat:chat-7",
            session_id=CHATS_SESSION,
            user_id="user-1",
            role="system",
            content="Legacy",
            parts_json="{}",
            created_at="2023-12-01T00:00:00.000Z",
        )

        chat = await repository.get_chat_by_id("chat-7")

        assert chat is not None
        assert chat.title == "Legacy"
        assert chat.user_id == "user-1"

    async def test_derives_chat_from_messages(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        warehouse.put_message(
            message_id="m1",
            session_id="chat-2",
            user_id="user-1",
            role="user",
            content="How many units?",
            created_at="2024-01-15T09:00:00.000Z",
        )
        warehouse.put_message(
            message_id="m2",
            session_id="chat-2",
            user_id="user-1",
            role="assistant",
            content="1,204",
            created_at="2024-01-15T09:00:05.000Z",
        )

        chat = await repository.get_chat_by_id("chat-2")

        assert chat is not None
        assert chat.title == "How many units?"
        assert chat.user_id == "user-1"
        assert chat.created_at == T0

    async def test_lookup_failure_degrades_to_none(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        warehouse.fail("get_chat_meta", _denied())
        warehouse.fail("get_chat_meta_fallback", _denied())

        assert await repository.get_chat_by_id("chat-1") is None


class TestChatHistory:
    """Tests for newest-first chat pagination."""

    async def _save_chats(self, repository: ChatRepository, count: int = 5) -> None:
        for index in range(1, count + 1):
            await repository.save_chat(f"chat-{index}", "user-1", f"Chat {index}")

    async def test_lists_newest_first(self, repository: ChatRepository) -> None:
        await self._save_chats(repository)

        page = await repository.get_chats_by_user_id("user-1", limit=2)

        assert [chat.id for chat in page.chats] == ["chat-5", "chat-4"]
        assert page.has_more is True

    async def test_last_page_has_no_more(self, repository: ChatRepository) -> None:
        await self._save_chats(repository)

        page = await repository.get_chats_by_user_id("user-1", limit=10)

        assert len(page.chats) == 5
        assert page.has_more is False

    async def test_ending_before_returns_older_chats(self, repository: ChatRepository) -> None:
        await self._save_chats(repository)

        page = await repository.get_chats_by_user_id("user-1", limit=2, ending_before="chat-4")

        assert [chat.id for chat in page.chats] == ["chat-3", "chat-2"]
        assert page.has_more is True

    async def test_starting_after_returns_newer_chats(self, repository: ChatRepository) -> None:
        await self._save_chats(repository)

        page = await repository.get_chats_by_user_id("user-1", limit=5, starting_after="chat-3")

        assert [chat.id for chat in page.chats] == ["chat-5", "chat-4"]
        assert page.has_more is False

    async def test_walking_pages_visits_every_chat_once(self, repository: ChatRepository) -> None:
        await self._save_chats(repository)

        pages = [await repository.get_chats_by_user_id("user-1", limit=2)]
        while pages[-1].has_more:
            cursor = pages[-1].chats[-1].id
            pages.append(await repository.get_chats_by_user_id("user-1", limit=2, ending_before=cursor))

        assert len(pages) == 3
        assert [page.has_more for page in pages] == [True, True, False]
        assert [chat.id for page in pages for chat in page.chats] == ["chat-5", "chat-4", "chat-3", "chat-2", "chat-1"]

    async def test_unknown_cursor_raises(self, repository: ChatRepository) -> None:
        await self._save_chats(repository, count=1)

        with pytest.raises(EntityNotFoundError):
            await repository.get_chats_by_user_id("user-1", ending_before="missing")

    async def test_other_users_chats_are_excluded(self, repository: ChatRepository) -> None:
        await repository.save_chat("chat-a", "user-1", "Mine")
        await repository.save_chat("chat-b", "user-2", "Theirs")

        page = await repository.get_chats_by_user_id("user-1")

        assert [chat.id for chat in page.chats] == ["chat-a"]

    async def test_derives_history_without_meta_rows(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        for message_id, chat_id, created_at in [
            ("m1", "chat-old", "2024-01-14T09:00:00.000Z"),
            ("m2", "chat-new", "2024-01-15T09:00:00.000Z"),
        ]:
            warehouse.put_message(
                message_id=message_id,
                session_id=chat_id,
                chat_id=chat_id,
                user_id="user-1",
                role="user",
                content=f"question in {chat_id}",
                created_at=created_at,
            )

        page = await repository.get_chats_by_user_id("user-1")

        assert [chat.id for chat in page.chats] == ["chat-new", "chat-old"]
        assert page.chats[0].title == "question in chat-new"

    async def test_failure_degrades_to_empty_page(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await self._save_chats(repository, count=2)
        warehouse.fail("list_chat_meta", _denied())
        warehouse.fail("list_chat_meta_fallback", _denied())

        page = await repository.get_chats_by_user_id("user-1")

        assert page.chats == []
        assert page.has_more is False


class TestSaveMessages:
    """Tests for message upserts and owner resolution."""

    async def test_stamps_owner_and_visibility(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await repository.save_chat("chat-1", "user-1", "Title", visibility=Visibility.PUBLIC)

        outcomes = await repository.save_messages([_make_message("m1")], session_id="chat-1")

        assert outcomes == [UpsertOutcome.MERGED]
        row = warehouse.messages["m1"]
        assert row["user_id"] == "user-1"
        assert row["visibility"] == "public"
        assert row["session_id"] == "chat-1"
        assert row["content"] == "hello"

    async def test_is_idempotent(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        messages = [_make_message("m1"), _make_message("m2", role=Role.ASSISTANT, text="hi", minutes=1)]

        await repository.save_messages(messages, session_id="chat-1")
        await repository.save_messages(messages, session_id="chat-1")

        assert len(await repository.get_messages_by_chat_id("chat-1")) == 2

    async def test_batch_duplicates_are_written_once(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")

        outcomes = await repository.save_messages(
            [_make_message("m1", text="first"), _make_message("m1", text="second")],
            session_id="chat-1",
        )

        assert len(outcomes) == 1
        assert warehouse.messages["m1"]["content"] == "second"

    async def test_blank_session_is_rejected(self, repository: ChatRepository) -> None:
        with pytest.raises(ValueError):
            await repository.save_messages([_make_message("m1")], session_id="  ")

    async def test_unknown_owner_raises_without_writing(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        with pytest.raises(OwnershipResolutionError) as exc_info:
            await repository.save_messages([_make_message("m1", chat_id="orphan")], session_id="orphan")

        assert exc_info.value.chat_id == "orphan"
        assert warehouse.messages == {}

    async def test_owner_from_latest_row_when_chat_lookup_fails(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        warehouse.put_message(
            message_id="m0",
            session_id="chat-3",
            chat_id="chat-3",
            user_id="user-3",
            role="user",
            content="earlier",
            visibility="public",
            created_at="2024-01-15T08:00:00.000Z",
        )
        warehouse.fail("get_derived_chat", _denied())
        warehouse.fail("get_derived_chat_fallback", _denied())

        await repository.save_messages([_make_message("m1", chat_id="chat-3")], session_id="chat-3")

        assert warehouse.count("get_latest_chat_row") == 1
        assert warehouse.messages["m1"]["user_id"] == "user-3"
        assert warehouse.messages["m1"]["visibility"] == "public"

    async def test_write_failures_propagate(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        warehouse.fail("merge_message_row", _denied())
        warehouse.fail("find_message_row", _denied())

        with pytest.raises(ServiceError):
            await repository.save_messages([_make_message("m1")], session_id="chat-1")


class TestReadMessages:
    """Tests for message reads and their degraded paths."""

    async def _seed(self, repository: ChatRepository) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        await repository.save_messages(
            [
                _make_message("m2", role=Role.ASSISTANT, text="answer", minutes=1),
                _make_message("m1", text="question"),
                _make_message("m3", text="follow-up", minutes=2),
            ],
            session_id="chat-1",
        )

    async def test_messages_in_creation_order_without_meta_rows(self, repository: ChatRepository) -> None:
        await self._seed(repository)
        await repository.upsert_provider_session("chat-1", "vertex", "upstream-1", "user-1")

        messages = await repository.get_messages_by_chat_id("chat-1")

        assert [message.id for message in messages] == ["m1", "m2", "m3"]
        assert messages[1].role is Role.ASSISTANT

    async def test_get_message_by_id(self, repository: ChatRepository) -> None:
        await self._seed(repository)

        found = await repository.get_message_by_id("m2")

        assert [message.text for message in found] == ["answer"]
        assert await repository.get_message_by_id("missing") == []

    async def test_schema_error_uses_fallback_query(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await self._seed(repository)
        warehouse.fail("get_message", error_response(400, "Unrecognized name: chart_error at [3:8]"))

        found = await repository.get_message_by_id("m1")

        assert [message.id for message in found] == ["m1"]
        assert warehouse.count("get_message_fallback") == 1

    async def test_rate_limit_skips_fallback(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await self._seed(repository)
        warehouse.fail("get_message", rate_limit_response())

        assert await repository.get_message_by_id("m1") == []
        assert warehouse.count("get_message_fallback") == 0

    async def test_count_recent_user_messages(self, repository: ChatRepository) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        await repository.save_messages(
            [
                _make_message("old", text="last week", minutes=-7 * 24 * 60),
                _make_message("q1", text="recent"),
                _make_message("a1", role=Role.ASSISTANT, text="reply", minutes=1),
                _make_message("q2", text="recent again", minutes=2),
            ],
            session_id="chat-1",
        )

        assert await repository.get_message_count_by_user_id("user-1", difference_in_hours=24) == 2

    async def test_count_degrades_to_zero(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        warehouse.fail("count_user_messages", _denied())
        warehouse.fail("count_user_messages_fallback", _denied())

        assert await repository.get_message_count_by_user_id("user-1", difference_in_hours=24) == 0


class TestUpdateMessages:
    """Tests for in-place message updates and deletions."""

    async def _seed(self, repository: ChatRepository) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        message = ChatMessage(
            id="m1",
            chat_id="chat-1",
            role=Role.ASSISTANT,
            parts=[{"type": "text", "text": "draft"}],
            chart_spec={"mark": "bar"},
            chart_error="timeout",
            created_at=T0,
        )
        await repository.save_messages(
            [message, _make_message("m2", minutes=1), _make_message("m3", minutes=2)],
            session_id="chat-1",
        )

    async def test_update_parts_keeps_chart_fields(self, repository: ChatRepository) -> None:
        await self._seed(repository)

        await repository.update_message("m1", [{"type": "text", "text": "final"}])

        [message] = await repository.get_message_by_id("m1")
        assert message.text == "final"
        assert message.chart_spec == {"mark": "bar"}
        assert message.chart_error == "timeout"

    async def test_update_can_set_and_clear_chart_fields(self, repository: ChatRepository) -> None:
        await self._seed(repository)

        await repository.update_message(
            "m1",
            [{"type": "text", "text": "final"}],
            chart_spec={"mark": "line"},
            chart_error=None,
        )

        [message] = await repository.get_message_by_id("m1")
        assert message.chart_spec == {"mark": "line"}
        assert message.chart_error is None

    async def test_update_answered_in(self, repository: ChatRepository) -> None:
        await self._seed(repository)

        await repository.update_message_answered_in("m1", 1500)

        [message] = await repository.get_message_by_id("m1")
        assert message.answered_in == 1500

    async def test_negative_answered_in_is_rejected(self, repository: ChatRepository) -> None:
        with pytest.raises(ValueError):
            await repository.update_message_answered_in("m1", -5)

    async def test_delete_after_timestamp_is_inclusive(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await self._seed(repository)

        await repository.delete_messages_by_chat_id_after_timestamp("chat-1", T0 + timedelta(minutes=1))

        assert [message.id for message in await repository.get_messages_by_chat_id("chat-1")] == ["m1"]
        assert "m2" not in warehouse.messages
        assert "chat:chat-1" in warehouse.messages

    async def test_soft_delete_after_timestamp_flags_rows(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await self._seed(repository)

        await repository.delete_messages_by_chat_id_after_timestamp("chat-1", T0 + timedelta(minutes=2), soft=True)

        assert [message.id for message in await repository.get_messages_by_chat_id("chat-1")] == ["m1", "m2"]
        assert warehouse.messages["m3"]["is_deleted"] is True

    async def test_soft_delete_chat_messages(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await self._seed(repository)

        await repository.soft_delete_chat_messages("chat-1", "user-1")

        assert await repository.get_messages_by_chat_id("chat-1") == []
        assert warehouse.messages["chat:chat-1"]["is_deleted"] is False


class TestUpdatesOnTimestampColumns:
    """UPDATE statements on a table whose time columns are TIMESTAMP."""

    @pytest.fixture(autouse=True)
    def _timestamp_table(self, warehouse: FakeWarehouse) -> None:
        warehouse.timestamp_columns = {"created_at", "updated_at"}

    def _put_answer(self, warehouse: FakeWarehouse) -> None:
        warehouse.put_message(
            message_id="m1",
            session_id="chat-1",
            chat_id="chat-1",
            user_id="user-1",
            role="assistant",
            content="draft",
            created_at="2024-01-15T09:00:00.000Z",
        )

    async def test_uses_type_learned_by_merge(
        self, repository: ChatRepository, stack: ChatStack, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        self._put_answer(warehouse)

        await repository.update_message_answered_in("m1", 900)

        assert stack.negotiator.state.preferred_mode is TemporalCastMode.BOTH
        assert warehouse.count("update_message_answered_in") == 1
        assert warehouse.messages["m1"]["answered_in"] == 900

    async def test_learns_type_from_rejected_update(
        self, repository: ChatRepository, stack: ChatStack, warehouse: FakeWarehouse
    ) -> None:
        self._put_answer(warehouse)

        await repository.update_message("m1", [{"type": "text", "text": "final"}])

        assert warehouse.count("update_message") == 2
        assert stack.negotiator.state.preferred_mode is TemporalCastMode.UPDATED_AT
        assert "final" in warehouse.messages["m1"]["parts_json"]

    async def test_soft_delete_after_timestamp(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        self._put_answer(warehouse)

        await repository.delete_messages_by_chat_id_after_timestamp("chat-1", T0, soft=True)

        assert warehouse.statements == [
            "soft_delete_messages_after",
            "soft_delete_messages_after_fallback",
            "soft_delete_messages_after",
        ]
        assert warehouse.messages["m1"]["is_deleted"] is True

    async def test_soft_delete_chat_messages(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        self._put_answer(warehouse)

        await repository.soft_delete_chat_messages("chat-1", "user-1")

        assert warehouse.count("soft_delete_chat_messages") == 2
        assert warehouse.messages["m1"]["is_deleted"] is True


class TestChatUpdates:
    """Tests for visibility and title changes."""

    async def test_visibility_updates_meta_and_backfills_messages(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        await repository.save_messages([_make_message("m1")], session_id="chat-1")

        updated = await repository.update_chat_visibility_by_id("chat-1", Visibility.PUBLIC)

        assert updated is not None and updated.visibility is Visibility.PUBLIC
        assert (await repository.get_chat_by_id("chat-1")).visibility is Visibility.PUBLIC
        assert warehouse.messages["m1"]["visibility"] == "public"

    async def test_backfill_failure_is_not_fatal(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        warehouse.fail("backfill_message_visibility", _denied())
        warehouse.fail("backfill_message_visibility_fallback", _denied())

        updated = await repository.update_chat_visibility_by_id("chat-1", Visibility.PUBLIC)

        assert updated is not None
        assert (await repository.get_chat_by_id("chat-1")).visibility is Visibility.PUBLIC

    async def test_visibility_of_unknown_chat_is_none(self, repository: ChatRepository) -> None:
        assert await repository.update_chat_visibility_by_id("missing", Visibility.PUBLIC) is None

    async def test_update_title(self, repository: ChatRepository) -> None:
        original = await repository.save_chat("chat-1", "user-1", "New chat")

        updated = await repository.update_chat_title_by_id("chat-1", "Revenue by region")

        assert updated.title == "Revenue by region"
        assert updated.created_at == original.created_at
        assert (await repository.get_chat_by_id("chat-1")).title == "Revenue by region"

    async def test_unapplied_update_returns_stored_chat(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "New chat")
        warehouse.fail("merge_message_row", error_response(400, "Query error: MERGE is not supported for this table"))

        result = await repository.update_chat_title_by_id("chat-1", "Revenue by region")

        assert result is not None and result.title == "New chat"
        assert warehouse.count("find_message_row") == 1


class TestProviderSessions:
    async def test_upsert_and_get(self, repository: ChatRepository) -> None:
        first = await repository.upsert_provider_session("chat-1", "vertex", "upstream-1", "user-1")

        second = await repository.upsert_provider_session("chat-1", "vertex", "upstream-2", "user-1")
        loaded = await repository.get_provider_session_by_chat_id("chat-1", "vertex")

        assert loaded == second
        assert loaded.session_id == "upstream-2"
        assert loaded.created_at == first.created_at

    async def test_providers_are_separate(self, repository: ChatRepository) -> None:
        await repository.upsert_provider_session("chat-1", "vertex", "upstream-1", "user-1")

        assert await repository.get_provider_session_by_chat_id("chat-1", "openai") is None


class TestDeleteChats:
    """Tests for hard deletion of chats."""

    async def test_delete_removes_every_row_of_the_chat(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "Title")
        await repository.save_messages([_make_message("m1")], session_id="chat-1")
        await repository.upsert_provider_session("chat-1", "vertex", "upstream-1", "user-1")
        warehouse.put_message(
            message_id="provider:chat-1:openai",
            session_id=PROVIDERS_SESSION,
            user_id="user-1",
            role="system",
            content="legacy-upstream",
        )

        deleted = await repository.delete_chat_by_id("chat-1")

        assert deleted is not None and deleted.title == "Title"
        assert warehouse.messages == {}
        assert await repository.get_chat_by_id("chat-1") is None

    async def test_delete_all_counts_deleted_chats(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "One")
        await repository.save_chat("chat-2", "user-1", "Two")
        await repository.save_chat("chat-3", "user-2", "Other user")

        assert await repository.delete_all_chats_by_user_id("user-1") == 2
        assert list(warehouse.messages) == ["chat:chat-3"]

    async def test_delete_all_tolerates_partial_failure(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "One")
        await repository.save_chat("chat-2", "user-1", "Two")
        warehouse.fail("delete_chat_messages", _denied())
        warehouse.fail("delete_chat_messages_fallback", _denied())

        assert await repository.delete_all_chats_by_user_id("user-1") == 1

    async def test_delete_all_raises_when_nothing_was_deleted(
        self, repository: ChatRepository, warehouse: FakeWarehouse
    ) -> None:
        await repository.save_chat("chat-1", "user-1", "One")
        warehouse.fail("delete_chat_messages", _denied())
        warehouse.fail("delete_chat_messages_fallback", _denied())

        with pytest.raises(ServiceError):
            await repository.delete_all_chats_by_user_id("user-1")

    async def test_delete_all_without_chats_is_zero(self, repository: ChatRepository) -> None:
        assert await repository.delete_all_chats_by_user_id("nobody") == 0


class TestEnsureReady:
    """Tests for eager table creation and schema discovery."""

    async def test_creates_tables_and_reads_schema_once(self, warehouse: FakeWarehouse) -> None:
        warehouse.timestamp_columns = {"created_at", "updated_at"}
        settings = make_settings(auto_create_tables=True, schema_probe_enabled=True)

        async with create_test_chat_stack(httpx.MockTransport(warehouse.handler), settings=settings) as stack:
            await stack.repository.ensure_ready()
            await stack.repository.ensure_ready()

            assert warehouse.ddl
            assert warehouse.count("probe_columns") == 1
            assert stack.negotiator.state.preferred_mode is TemporalCastMode.BOTH

    async def test_sends_nothing_when_both_are_off(self, repository: ChatRepository, warehouse: FakeWarehouse) -> None:
        await repository.ensure_ready()

        assert warehouse.statements == []
        assert warehouse.ddl == []
