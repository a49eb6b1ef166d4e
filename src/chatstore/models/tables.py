"""SQLModel table definitions for the warehouse tables.

These classes are the single declaration of the physical schema. They are
never bound to a SQL engine; instead the column metadata drives:

1. **DDL**: ``CREATE TABLE`` and ``ADD COLUMN IF NOT EXISTS`` statements are
   rendered from ``__table__.columns`` (see ``services/schema.py``).

2. **MERGE columns**: the upsert writes every non-key column of
   ``ChatMessageRecord`` unless the live table is known to lack it.

3. **Row payloads**: the codec builds records and hands ``model_dump()`` to the
   query parameters or to ``insertAll``.

Timestamps are STRING columns holding ISO-8601 text. Tables created out of band
may declare them as TIMESTAMP; the negotiator copes with either.
"""

from sqlmodel import Field, SQLModel


class ChatMessageRecord(SQLModel, table=True):
    """Physical row of the messages table.

    Conversation messages and meta-rows (chat, provider session, document,
    user) share this shape. ``message_id`` is unique across all of them.
    """

    __tablename__ = "chat_messages"

    message_id: str = Field(primary_key=True)
    session_id: str | None = None
    chat_id: str | None = None
    user_id: str | None = None
    role: str | None = None
    content: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    parts_json: str | None = None
    attachments_json: str | None = None
    chart_spec_json: str | None = None
    chart_error: str | None = None
    answered_in: int | None = None
    visibility: str | None = None
    is_deleted: bool | None = False


class ChatFileRecord(SQLModel, table=True):
    """Physical row of the attachment metadata table."""

    __tablename__ = "chat_files"

    file_id: str = Field(primary_key=True)
    session_id: str | None = None
    user_id: str | None = None
    chat_id: str | None = None
    message_id: str | None = None
    filename: str | None = None
    content_type: str | None = None
    file_size: int | None = None
    gcs_url: str | None = None
    object_path: str | None = None
    created_at: str | None = None
    is_deleted: bool | None = False


class FeedbackRecord(SQLModel, table=True):
    """Physical row of the feedback table. Insert-only."""

    __tablename__ = "feedbacks"

    message_id: str = Field(primary_key=True)
    created_at: str = Field(primary_key=True)
    session_id: str | None = None
    user_id: str | None = None
    role: str | None = None
    content: str | None = None
    feedback_message: str | None = None
