"""Exception taxonomy for warehouse access.

Every failure that leaves the request executor is a ``WarehouseError`` whose
``retryable`` flag says whether trying again later can help.
"""

import re

_UNRECOGNIZED_NAME = re.compile(r"unrecognized name:\s*([a-z0-9_]+)", re.IGNORECASE)
_TEMPORAL_ASSIGNMENT = re.compile(r"cannot be assigned to (created_at|updated_at)", re.IGNORECASE)


class WarehouseError(Exception):
    """Base class for warehouse errors."""

    retryable: bool = False


class NetworkError(WarehouseError):
    """Transport failure (connect, read, timeout) before a response arrived."""

    retryable = True


class ServiceError(WarehouseError):
    """The service answered with a non-2xx status."""

    def __init__(self, status: int, reason: str, message: str, retryable: bool = False) -> None:
        super().__init__(f"BigQuery error: {status} - {message}")
        self.status = status
        self.reason = reason
        self.detail = message
        self.retryable = retryable


class RateLimitError(ServiceError):
    """Rate limit hit, or refused locally while the cooldown window is open."""

    def __init__(
        self,
        status: int = 429,
        reason: str = "jobratelimitexceeded",
        message: str = "rate limit exceeded",
        cooldown_remaining: float = 0.0,
    ) -> None:
        super().__init__(status, reason, message, retryable=True)
        self.cooldown_remaining = cooldown_remaining


class SchemaMismatchError(ServiceError):
    """The live table disagrees with the statement (unknown column, wrong type).

    Never retried by the executor; the schema negotiator reacts to it.
    """

    def __init__(self, status: int, reason: str, message: str) -> None:
        super().__init__(status, reason, message, retryable=False)

    @property
    def unrecognized_column(self) -> str | None:
        match = _UNRECOGNIZED_NAME.search(self.detail)
        return match.group(1).lower() if match else None

    @property
    def is_temporal_mismatch(self) -> bool:
        return _TEMPORAL_ASSIGNMENT.search(self.detail) is not None


class InsertError(WarehouseError):
    """insertAll accepted the request but rejected rows."""

    def __init__(self, table: str, errors: list) -> None:
        super().__init__(f"BigQuery insert errors on {table}: {errors}")
        self.table = table
        self.errors = errors


class OwnershipResolutionError(WarehouseError):
    """The owning user of a chat cannot be determined."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Failed to resolve chat owner for chat {chat_id!r}")
        self.chat_id = chat_id


class EntityNotFoundError(WarehouseError):
    """A referenced entity (e.g. a pagination cursor chat) does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id!r}")
        self.entity = entity
        self.entity_id = entity_id


def is_schema_mismatch_message(message: str) -> bool:
    return bool(_UNRECOGNIZED_NAME.search(message) or _TEMPORAL_ASSIGNMENT.search(message))


__all__ = [
    "EntityNotFoundError",
    "InsertError",
    "NetworkError",
    "OwnershipResolutionError",
    "RateLimitError",
    "SchemaMismatchError",
    "ServiceError",
    "WarehouseError",
    "is_schema_mismatch_message",
]
