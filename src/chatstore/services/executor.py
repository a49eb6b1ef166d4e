"""Request executor for the BigQuery REST API.

Every call goes through ``execute()``, which classifies failures, retries the
transient ones with exponential backoff and jitter, and opens a cooldown window
when the service reports a rate limit. While the window is open, calls fail
fast without touching the network.
"""

import asyncio
import json
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
import structlog

from chatstore.config import WarehouseSettings
from chatstore.errors import (
    InsertError,
    NetworkError,
    RateLimitError,
    SchemaMismatchError,
    ServiceError,
    WarehouseError,
    is_schema_mismatch_message,
)
from chatstore.models.warehouse import InsertRow, QueryRequest, QueryResult
from chatstore.services.tokens import AccessTokenProvider

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_REASONS = frozenset(
    {
        "backenderror",
        "internalerror",
        "jobratelimitexceeded",
        "ratelimitexceeded",
        "resourcesexhausted",
        "resourceexhausted",
        "timeout",
    }
)
RATE_LIMIT_REASONS = frozenset(
    {
        "jobratelimitexceeded",
        "ratelimitexceeded",
        "resourcesexhausted",
        "resourceexhausted",
    }
)
RETRYABLE_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def normalize_reason(value: str | None) -> str:
    return (value or "unknown").strip().lower().replace("_", "")


def parse_error_response(error_text: str) -> tuple[str, str]:
    """Extract ``(reason, message)`` from an error body, keeping raw text if not JSON."""
    message = error_text
    reason = "unknown"
    try:
        parsed = json.loads(error_text)
    except ValueError:
        return reason, message

    error = parsed.get("error") if isinstance(parsed, dict) else None
    if not isinstance(error, dict):
        return reason, message

    if isinstance(error.get("message"), str) and error["message"]:
        message = error["message"]
    errors = error.get("errors")
    first = errors[0] if isinstance(errors, list) and errors else None
    first_reason = first.get("reason") if isinstance(first, dict) else None
    if isinstance(first_reason, str) and first_reason:
        reason = first_reason
    elif isinstance(error.get("status"), str) and error["status"]:
        reason = error["status"]
    return normalize_reason(reason), message


@dataclass
class LogThrottle:
    """Allows one log line per key per interval."""

    interval: float
    clock: Callable[[], float] = time.monotonic
    _last_logged: dict[str, float] = field(default_factory=dict)

    def should_log(self, key: str = "default") -> bool:
        now = self.clock()
        last = self._last_logged.get(key)
        if last is not None and now - last < self.interval:
            return False
        self._last_logged[key] = now
        return True


@dataclass
class CooldownState:
    """Rate-limit cooldown owned by one executor."""

    until: float = 0.0

    def remaining(self, now: float) -> float:
        return max(0.0, self.until - now)


class RequestExecutor:
    """Issues authenticated POSTs to the warehouse with retry and cooldown.

    Owns its ``httpx.AsyncClient`` unless one is injected. Clock, sleep and
    jitter are injectable so tests can drive backoff and cooldown
    deterministically.
    """

    def __init__(
        self,
        settings: WarehouseSettings,
        token_provider: AccessTokenProvider,
        client: httpx.AsyncClient | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._settings = settings
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self._logger = logger or structlog.get_logger(__name__)
        self._clock = clock
        self._sleep = sleep
        self._jitter = jitter
        self._max_attempts = max(1, settings.request_max_attempts)
        self._base_delay = settings.request_base_delay_ms / 1000
        self._max_delay = settings.request_max_delay_ms / 1000
        self._cooldown_seconds = settings.rate_limit_cooldown_ms / 1000
        self.cooldown = CooldownState()
        self._rate_limit_log = LogThrottle(settings.rate_limit_log_interval_ms / 1000, clock=clock)

    async def __aenter__(self) -> "RequestExecutor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def compute_backoff(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (1-based)."""
        exponential = self._base_delay * 2 ** (attempt - 1)
        jitter = self._jitter() * self._base_delay
        return min(exponential + jitter, self._max_delay)

    async def execute(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST ``body`` to ``path`` and return the decoded JSON response.

        Raises:
            RateLimitError: Cooldown active or rate limit reported.
            SchemaMismatchError: Statement does not fit the live table.
            ServiceError: Other non-2xx responses, after retries if transient.
            NetworkError: Transport failures, after retries.
        """
        remaining = self.cooldown.remaining(self._clock())
        if remaining > 0:
            if self._rate_limit_log.should_log():
                self._logger.warning(
                    "rate_limit_cooldown_active",
                    path=path,
                    remaining_ms=int(remaining * 1000),
                )
            raise RateLimitError(
                message=f"rate-limit cooldown active ({int(remaining * 1000)}ms remaining)",
                cooldown_remaining=remaining,
            )

        url = f"{self._settings.base_url}/{path}"
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._send(url, body)
            except RateLimitError:
                raise
            except WarehouseError as error:
                if not error.retryable or attempt >= self._max_attempts:
                    raise
                delay = self.compute_backoff(attempt)
                self._logger.info(
                    "warehouse_request_retry",
                    path=path,
                    attempt=attempt,
                    delay_ms=int(delay * 1000),
                    error=str(error),
                )
                await self._sleep(delay)

        raise WarehouseError("BigQuery request failed after retries")

    async def query(self, request: QueryRequest) -> QueryResult:
        payload = await self.execute(self._settings.query_path, request.to_body())
        result = QueryResult.from_response(payload)
        self._logger.debug("query_executed", statement=request.name, row_count=len(result.rows))
        return result

    async def insert_all(self, table: str, rows: list[InsertRow]) -> None:
        """Stream rows into ``table``, ignoring columns the table lacks.

        Raises:
            InsertError: If the service rejected any row.
        """
        if not rows:
            return
        payload = await self.execute(
            self._settings.insert_all_path(table),
            {"ignoreUnknownValues": True, "rows": [row.to_wire() for row in rows]},
        )
        insert_errors = payload.get("insertErrors") or []
        if insert_errors:
            raise InsertError(table, insert_errors)
        self._logger.debug("rows_inserted", table=table, row_count=len(rows))

    async def _send(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        token = await self._token_provider.get_token()
        try:
            response = await self._client.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except RETRYABLE_TRANSPORT_ERRORS as exc:
            raise NetworkError(f"BigQuery request failed: {exc!r}") from exc
        except httpx.HTTPError as exc:
            raise WarehouseError(f"BigQuery request failed: {exc}") from exc

        if response.is_success:
            return response.json()
        raise self._classify(response.status_code, response.text)

    def _classify(self, status: int, error_text: str) -> ServiceError:
        reason, message = parse_error_response(error_text)

        if reason in RATE_LIMIT_REASONS:
            self.cooldown.until = self._clock() + self._cooldown_seconds
            if self._rate_limit_log.should_log():
                self._logger.warning(
                    "rate_limit_detected",
                    reason=reason,
                    cooldown_ms=int(self._cooldown_seconds * 1000),
                )
            return RateLimitError(status=status, reason=reason, message=message)

        if status == 400 and is_schema_mismatch_message(message):
            return SchemaMismatchError(status, reason, message)

        retryable = status in RETRYABLE_STATUSES or reason in RETRYABLE_REASONS
        return ServiceError(status, reason, message, retryable=retryable)
