"""Factory functions for creating and wiring the warehouse stores.

Provides a production factory that talks to the BigQuery REST API and a test
factory that routes every request through an injected ``httpx`` transport, so
tests run without network access.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

import httpx
import structlog

from chatstore.config import WarehouseSettings, get_settings
from chatstore.models.base import utc_now
from chatstore.models.tables import ChatFileRecord, ChatMessageRecord, FeedbackRecord
from chatstore.services.codec import EntityCodec
from chatstore.services.documents import DocumentStore
from chatstore.services.executor import RequestExecutor
from chatstore.services.files import FileStore
from chatstore.services.negotiator import SchemaNegotiator
from chatstore.services.repository import ChatRepository
from chatstore.services.schema import TableManager
from chatstore.services.tokens import AccessTokenProvider, StaticTokenProvider

_TEST_TOKEN = "test-token"


@dataclass
class ChatStack:
    """Everything one client needs, sharing a single executor and its state."""

    settings: WarehouseSettings
    executor: RequestExecutor
    tables: TableManager
    negotiator: SchemaNegotiator
    codec: EntityCodec
    repository: ChatRepository
    documents: DocumentStore
    files: FileStore
    owned_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ChatStack":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.executor.aclose()
        if self.owned_client is not None:
            await self.owned_client.aclose()


def create_chat_stack(
    settings: WarehouseSettings | None = None,
    token_provider: AccessTokenProvider | None = None,
    client: httpx.AsyncClient | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    now: Callable[[], datetime] = utc_now,
) -> ChatStack:
    """Create a production ChatStack.

    Args:
        settings: Warehouse settings. Defaults to the cached env-based settings.
        token_provider: Bearer token source. Defaults to a static provider built
            from ``settings.access_token``.
        client: HTTP client to share. The executor creates its own if omitted.
        logger: Logger bound into every service.
        sleep: Replacement for ``asyncio.sleep`` between retries.
        now: Wall clock used for entity timestamps.

    Returns:
        Configured ChatStack ready for use.

    Raises:
        ValueError: If no token provider is given and no access token is configured.
    """
    settings = settings or get_settings()
    logger = logger or structlog.get_logger(__name__)

    if token_provider is None:
        if not settings.access_token:
            raise ValueError("an access token provider or BQ_ACCESS_TOKEN is required")
        token_provider = StaticTokenProvider(settings.access_token)

    executor_options = {"sleep": sleep} if sleep is not None else {}
    executor = RequestExecutor(
        settings=settings,
        token_provider=token_provider,
        client=client,
        logger=logger,
        **executor_options,
    )

    tables = TableManager(
        executor=executor,
        tables={
            settings.messages_table_ref: ChatMessageRecord,
            settings.files_table_ref: ChatFileRecord,
            settings.feedbacks_table_ref: FeedbackRecord,
        },
        enabled=settings.auto_create_tables,
        logger=logger,
    )

    negotiator = SchemaNegotiator(
        executor=executor,
        project_id=settings.project_id,
        dataset=settings.dataset,
        table=settings.messages_table,
        probe_enabled=settings.schema_probe_enabled,
        probe_ttl_seconds=settings.schema_probe_ttl_seconds,
        logger=logger,
    )

    codec = EntityCodec(logger=logger, clock=now)

    return ChatStack(
        settings=settings,
        executor=executor,
        tables=tables,
        negotiator=negotiator,
        codec=codec,
        repository=ChatRepository(executor, negotiator, codec, tables, settings, logger=logger, now=now),
        documents=DocumentStore(executor, negotiator, codec, tables, settings, logger=logger, now=now),
        files=FileStore(executor, codec, tables, settings, logger=logger, now=now),
    )


def create_test_chat_stack(
    transport: httpx.AsyncBaseTransport,
    settings: WarehouseSettings | None = None,
    now: Callable[[], datetime] = utc_now,
) -> ChatStack:
    """Create a ChatStack whose HTTP traffic goes to ``transport``.

    Retries do not sleep and the schema probe is disabled unless the given
    settings enable it. Each call creates independent state, so tests don't
    interfere.

    Args:
        transport: Usually an ``httpx.MockTransport``.
        settings: Overrides for the test defaults.
        now: Wall clock used for entity timestamps.

    Returns:
        Configured ChatStack with a fake network.
    """
    settings = settings or WarehouseSettings(
        _env_file=None,
        project_id="test-project",
        dataset="test_dataset",
        schema_probe_enabled=False,
    )

    async def no_sleep(_: float) -> None:
        return None

    client = httpx.AsyncClient(transport=transport)
    stack = create_chat_stack(
        settings=settings,
        token_provider=StaticTokenProvider(_TEST_TOKEN),
        client=client,
        sleep=no_sleep,
        now=now,
    )
    stack.owned_client = client
    return stack


def create_stack_from_env(access_token: str | None = None, auto_create_tables: bool = False) -> ChatStack:
    """Stack for the CLI, using env settings and an optional token override."""
    settings = get_settings()
    if auto_create_tables:
        settings = settings.model_copy(update={"auto_create_tables": True})
    token = access_token or settings.access_token
    if not token:
        raise ValueError("set BQ_ACCESS_TOKEN or pass --access-token")
    return create_chat_stack(settings=settings, token_provider=StaticTokenProvider(token))
