from typing import Annotated, Union

from pydantic import Field, TypeAdapter

from chatstore.models.chat import Chat, ProviderSession
from chatstore.models.document import Document, UserAccount
from chatstore.models.message import ChatMessage

StoredEntity = Annotated[
    Union[Chat, ChatMessage, ProviderSession, Document, UserAccount],
    Field(discriminator="row_kind"),
]
"""Any entity that lives in the messages table, tagged by ``row_kind``."""

stored_entity_adapter: TypeAdapter[StoredEntity] = TypeAdapter(StoredEntity)

__all__ = ["StoredEntity", "stored_entity_adapter"]
