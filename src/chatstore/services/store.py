"""Shared read/write plumbing for the warehouse-backed stores."""

import time
from datetime import datetime
from typing import Any, Callable, Sequence

import structlog

from chatstore.config import WarehouseSettings
from chatstore.errors import RateLimitError, WarehouseError
from chatstore.models.base import utc_now
from chatstore.models.warehouse import QueryParameter, QueryRequest, QueryResult
from chatstore.services.executor import LogThrottle, RequestExecutor
from chatstore.services.schema import TableManager

NOT_DELETED = "(is_deleted IS NULL OR is_deleted = FALSE)"


def is_rate_limited(error: WarehouseError) -> bool:
    return isinstance(error, RateLimitError) or getattr(error, "status", None) == 429


class WarehouseStore:
    """Base class holding the executor, table manager and read-error throttle."""

    def __init__(
        self,
        executor: RequestExecutor,
        tables: TableManager,
        settings: WarehouseSettings,
        logger: structlog.stdlib.BoundLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._executor = executor
        self._tables = tables
        self._settings = settings
        self._logger = logger or structlog.get_logger(__name__)
        self._now = now
        self._read_errors = LogThrottle(settings.read_error_log_interval_ms / 1000, clock=clock)

    async def _rows(
        self,
        name: str,
        sql: str,
        params: Sequence[QueryParameter],
        fallback_sql: str | None = None,
    ) -> list[dict[str, str | None]]:
        """Run a read, retrying once with ``fallback_sql`` unless rate limited."""
        return (await self._query(name, sql, params, fallback_sql)).rows

    async def _run(
        self,
        name: str,
        sql: str,
        params: Sequence[QueryParameter],
        fallback_sql: str | None = None,
    ) -> None:
        await self._tables.ensure_tables()
        await self._query(name, sql, params, fallback_sql)

    async def _query(
        self,
        name: str,
        sql: str,
        params: Sequence[QueryParameter],
        fallback_sql: str | None,
    ) -> QueryResult:
        try:
            return await self._executor.query(QueryRequest(name=name, sql=sql, params=tuple(params)))
        except WarehouseError as error:
            if fallback_sql is None or is_rate_limited(error):
                raise
            self._logger.debug("query_using_fallback", statement=name, error=str(error))
        return await self._executor.query(QueryRequest(name=f"{name}_fallback", sql=fallback_sql, params=tuple(params)))

    def _log_read_failure(self, event: str, error: WarehouseError, **context: Any) -> None:
        if self._read_errors.should_log(event):
            self._logger.warning(event, error=str(error), **context)
