"""Attachment metadata and answer feedback, each in its own insert-only table."""

import time
from datetime import datetime
from typing import Callable
from uuid import uuid4

import structlog

from chatstore.config import WarehouseSettings
from chatstore.models.base import utc_now
from chatstore.models.file import ChatFile, Feedback
from chatstore.models.tables import FeedbackRecord
from chatstore.models.warehouse import InsertRow, QueryParameter
from chatstore.services.codec import EntityCodec, format_timestamp
from chatstore.services.executor import RequestExecutor
from chatstore.services.schema import TableManager
from chatstore.services.store import NOT_DELETED, WarehouseStore


class FileStore(WarehouseStore):
    def __init__(
        self,
        executor: RequestExecutor,
        codec: EntityCodec,
        tables: TableManager,
        settings: WarehouseSettings,
        logger: structlog.stdlib.BoundLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
        token_factory: Callable[[], str] = lambda: uuid4().hex[:10],
    ) -> None:
        super().__init__(
            executor,
            tables,
            settings,
            logger=logger or structlog.get_logger(__name__),
            clock=clock,
            now=now,
        )
        self._codec = codec
        self._token_factory = token_factory

    async def insert_file_metadata(self, file: ChatFile) -> None:
        """Record an uploaded file. Re-sending the same ``file_id`` is deduplicated."""
        record = self._codec.encode_file(file)
        await self._tables.ensure_tables()
        await self._executor.insert_all(
            self._settings.files_table,
            [InsertRow(insert_id=file.file_id, json_row=record.model_dump())],
        )
        self._logger.info("file_metadata_inserted", file_id=file.file_id, session_id=file.session_id)

    async def get_session_files(self, user_id: str, session_id: str) -> list[ChatFile]:
        table = self._settings.files_table_ref
        rows = await self._rows(
            "get_session_files",
            f"""
SELECT
  file_id, session_id, user_id, chat_id, message_id, filename, content_type,
  CAST(file_size AS STRING) AS file_size, gcs_url, object_path, created_at,
  CAST(is_deleted AS STRING) AS is_deleted
FROM `{table}`
WHERE user_id = @user_id
  AND session_id = @session_id
  AND {NOT_DELETED}
ORDER BY created_at
""",
            [
                QueryParameter.string("user_id", user_id),
                QueryParameter.string("session_id", session_id),
            ],
            fallback_sql=f"""
SELECT
  file_id, session_id, user_id, filename, content_type,
  CAST(file_size AS STRING) AS file_size, gcs_url, created_at
FROM `{table}`
WHERE user_id = @user_id
  AND session_id = @session_id
ORDER BY created_at
""",
        )
        files = (self._codec.decode_file(row) for row in rows)
        return [file for file in files if file is not None]

    async def insert_feedback(self, feedback: Feedback) -> str:
        """Append a feedback row.

        Returns:
            The insert id used for the row.
        """
        created_at = format_timestamp(feedback.created_at)
        created_ms = int(feedback.created_at.timestamp() * 1000)
        insert_id = f"{feedback.message_id}:{created_ms}:{self._token_factory()}"
        row = FeedbackRecord.model_validate({**feedback.model_dump(), "created_at": created_at}).model_dump()

        await self._tables.ensure_tables()
        await self._executor.insert_all(self._settings.feedbacks_table, [InsertRow(insert_id=insert_id, json_row=row)])
        self._logger.info("feedback_inserted", message_id=feedback.message_id, insert_id=insert_id)
        return insert_id
