from chatstore.models.chat import Chat, ChatPage, ProviderSession
from chatstore.models.document import Document, UserAccount
from chatstore.models.entity import StoredEntity
from chatstore.models.enums import (
    DocumentKind,
    ParameterType,
    Role,
    RowKind,
    TemporalCastMode,
    UpsertOutcome,
    Visibility,
)
from chatstore.models.file import ChatFile, Feedback
from chatstore.models.message import ChatMessage
from chatstore.models.warehouse import InsertRow, QueryParameter, QueryRequest, QueryResult

__all__ = [
    "Chat",
    "ChatFile",
    "ChatMessage",
    "ChatPage",
    "Document",
    "DocumentKind",
    "Feedback",
    "InsertRow",
    "ParameterType",
    "ProviderSession",
    "QueryParameter",
    "QueryRequest",
    "QueryResult",
    "Role",
    "RowKind",
    "StoredEntity",
    "TemporalCastMode",
    "UpsertOutcome",
    "UserAccount",
    "Visibility",
]
