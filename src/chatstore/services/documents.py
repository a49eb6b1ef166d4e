"""Artifact documents and user accounts kept as meta-rows of the messages table."""

import time
from datetime import datetime
from typing import Callable
from uuid import uuid4

import structlog

from chatstore.config import WarehouseSettings
from chatstore.models.base import utc_now
from chatstore.models.document import Document, UserAccount
from chatstore.models.enums import DocumentKind
from chatstore.models.warehouse import QueryParameter
from chatstore.services.codec import DOCUMENTS_SESSION, USERS_SESSION, EntityCodec, format_timestamp
from chatstore.services.executor import RequestExecutor
from chatstore.services.negotiator import SchemaNegotiator
from chatstore.services.schema import TableManager
from chatstore.services.store import NOT_DELETED, WarehouseStore

_DOCUMENT_COLUMNS = "message_id, user_id, role, content, parts_json, created_at"


class DocumentStore(WarehouseStore):
    """Versioned documents and user accounts.

    Every ``save_document`` call writes a new version row; readers pick the
    versions by the document id stored in the row payload.
    """

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
        id_factory: Callable[[], str] = lambda: str(uuid4()),
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
        self._id_factory = id_factory

    async def save_document(
        self,
        id: str,
        title: str,
        kind: DocumentKind,
        content: str,
        user_id: str,
    ) -> Document:
        document = Document(id=id, title=title, kind=kind, content=content, user_id=user_id, created_at=self._now())
        await self._tables.ensure_tables()
        await self._negotiator.upsert(self._codec.encode_document(document))
        self._logger.info("document_saved", document_id=id, kind=kind.value)
        return document

    async def get_documents_by_id(self, id: str) -> list[Document]:
        """All versions of a document, oldest first."""
        rows = await self._rows(
            "get_document_versions",
            self._document_sql(order="ASC"),
            self._document_params(id),
            fallback_sql=self._document_sql(order="ASC", fallback=True),
        )
        return self._decode_documents(rows)

    async def get_document_by_id(self, id: str) -> Document | None:
        """Latest version of a document."""
        rows = await self._rows(
            "get_latest_document",
            self._document_sql(order="DESC", limit=1),
            self._document_params(id),
            fallback_sql=self._document_sql(order="DESC", limit=1, fallback=True),
        )
        documents = self._decode_documents(rows)
        return documents[0] if documents else None

    async def delete_documents_by_id_after_timestamp(self, id: str, timestamp: datetime) -> list[Document]:
        """Delete the versions created strictly after ``timestamp``.

        Returns:
            The versions that were deleted.
        """
        params = [*self._document_params(id), QueryParameter.string("threshold", format_timestamp(timestamp))]
        after = "AND SAFE_CAST(created_at AS TIMESTAMP) > SAFE_CAST(@threshold AS TIMESTAMP)"
        rows = await self._rows(
            "list_document_versions_after",
            f"""
SELECT {_DOCUMENT_COLUMNS}
FROM `{self._table}`
WHERE session_id = @session_id
  AND JSON_VALUE(parts_json, '$.id') = @document_id
  {after}
  AND {NOT_DELETED}
""",
            params,
            fallback_sql=f"""
SELECT {_DOCUMENT_COLUMNS}
FROM `{self._table}`
WHERE session_id = @session_id
  AND JSON_VALUE(parts_json, '$.id') = @document_id
  AND created_at > @threshold
""",
        )
        await self._run(
            "delete_document_versions_after",
            f"""
DELETE FROM `{self._table}`
WHERE session_id = @session_id
  AND JSON_VALUE(parts_json, '$.id') = @document_id
  {after}
""",
            params,
        )
        return self._decode_documents(rows)

    async def get_users_by_email(self, email: str) -> list[UserAccount]:
        rows = await self._rows(
            "get_users_by_email",
            f"""
SELECT message_id, user_id, role, content, parts_json, created_at
FROM `{self._table}`
WHERE session_id = @session_id
  AND role = 'system'
  AND content = @email
  AND {NOT_DELETED}
ORDER BY SAFE_CAST(created_at AS TIMESTAMP) DESC
""",
            [
                QueryParameter.string("session_id", USERS_SESSION),
                QueryParameter.string("email", email),
            ],
            fallback_sql=f"""
SELECT message_id, user_id, role, content, parts_json
FROM `{self._table}`
WHERE session_id = @session_id
  AND role = 'system'
  AND content = @email
ORDER BY created_at DESC
""",
        )
        users = (self._codec.decode_user(row) for row in rows)
        return [user for user in users if user is not None]

    async def create_user(self, email: str, password_hash: str | None = None) -> UserAccount:
        """Store a new account. Hashing the password is the caller's job."""
        user = UserAccount(id=self._id_factory(), email=email, password_hash=password_hash, created_at=self._now())
        await self._tables.ensure_tables()
        await self._negotiator.upsert(self._codec.encode_user(user))
        self._logger.info("user_created", user_id=user.id)
        return user

    def _document_params(self, id: str) -> list[QueryParameter]:
        return [
            QueryParameter.string("session_id", DOCUMENTS_SESSION),
            QueryParameter.string("document_id", id),
        ]

    def _document_sql(self, order: str, limit: int | None = None, fallback: bool = False) -> str:
        ordering = "created_at" if fallback else "SAFE_CAST(created_at AS TIMESTAMP)"
        live = "" if fallback else f"AND {NOT_DELETED}"
        limit_clause = f"LIMIT {limit}" if limit else ""
        return f"""
SELECT {_DOCUMENT_COLUMNS}
FROM `{self._table}`
WHERE session_id = @session_id
  AND JSON_VALUE(parts_json, '$.id') = @document_id
  {live}
ORDER BY {ordering} {order}
{limit_clause}
"""

    def _decode_documents(self, rows: list[dict[str, str | None]]) -> list[Document]:
        documents = (self._codec.decode_document(row) for row in rows)
        return [document for document in documents if document is not None]
