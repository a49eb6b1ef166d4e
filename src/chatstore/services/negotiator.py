"""Schema-adaptive upsert of rows into the messages table.

The live table may lack optional columns or declare ``created_at`` and
``updated_at`` as TIMESTAMP instead of STRING, typically after manual DDL or a
partial migration. The negotiator keeps learning which statement shape works:

1. A capability probe reads ``INFORMATION_SCHEMA.COLUMNS`` once per TTL and
   seeds the disabled columns and the temporal cast mode.
2. A MERGE keyed on ``message_id`` is built from the learned state.
3. "Unrecognized name" errors disable the named column and retry the mode.
4. Temporal assignment errors rank the untried cast modes and retry them.
5. When nothing works, a conditional insert keeps the write from being lost.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

from chatstore.errors import SchemaMismatchError, WarehouseError
from chatstore.models.enums import TemporalCastMode, UpsertOutcome
from chatstore.models.tables import ChatMessageRecord
from chatstore.models.warehouse import InsertRow, QueryParameter, QueryRequest
from chatstore.services.executor import RequestExecutor
from chatstore.services.schema import column_names

MERGE_COLUMNS: tuple[str, ...] = tuple(name for name in column_names(ChatMessageRecord) if name != "message_id")
TEMPORAL_COLUMNS = ("created_at", "updated_at")
CAST_MODE_ORDER: tuple[TemporalCastMode, ...] = tuple(TemporalCastMode)

_ASSIGNMENT_PATTERN = re.compile(
    r"value of type\s+([a-z0-9_]+)\s+cannot be assigned to\s+(created_at|updated_at),\s+which has type\s+([a-z0-9_]+)"
)

# Source expressions for columns that need more than a bare parameter.
_SOURCE_EXPRESSIONS = {
    "chart_spec_json": "NULLIF(@chart_spec_json, '')",
    "chart_error": "NULLIF(@chart_error, '')",
    "answered_in": "SAFE_CAST(NULLIF(@answered_in, '') AS INT64)",
    "visibility": "NULLIF(@visibility, '')",
}


@dataclass
class NegotiationState:
    """What the negotiator has learned about the live messages table."""

    preferred_mode: TemporalCastMode = TemporalCastMode.NONE
    disabled_columns: set[str] = field(default_factory=set)
    probed_at: float | None = None


def parse_temporal_requirements(message: str) -> dict[str, bool]:
    """Map each temporal column named in ``message`` to whether it needs a cast."""
    requirements: dict[str, bool] = {}
    for source_type, column, target_type in _ASSIGNMENT_PATTERN.findall(message.lower()):
        if source_type == "string" and target_type == "timestamp":
            requirements[column] = True
        elif source_type == "timestamp" and target_type == "string":
            requirements[column] = False
    return requirements


def rank_cast_modes(requirements: dict[str, bool], attempted: set[TemporalCastMode]) -> list[TemporalCastMode]:
    """Order untried modes by fewest requirement mismatches, then fewest casts."""

    def score(mode: TemporalCastMode) -> tuple[int, int, int]:
        flags = {"created_at": mode.casts_created_at, "updated_at": mode.casts_updated_at}
        if not requirements:
            return (0, 0, CAST_MODE_ORDER.index(mode))
        mismatches = sum(1 for column, needed in requirements.items() if flags[column] != needed)
        casts = sum(flags.values())
        return (mismatches, casts, CAST_MODE_ORDER.index(mode))

    return sorted((mode for mode in CAST_MODE_ORDER if mode not in attempted), key=score)


def build_merge_request(
    table_ref: str,
    record: ChatMessageRecord,
    mode: TemporalCastMode,
    disabled_columns: set[str],
) -> QueryRequest:
    enabled = [column for column in MERGE_COLUMNS if column not in disabled_columns]

    def source_expression(column: str) -> str:
        if column == "created_at" and mode.casts_created_at:
            return "SAFE_CAST(@created_at AS TIMESTAMP)"
        if column == "updated_at" and mode.casts_updated_at:
            return "SAFE_CAST(@updated_at AS TIMESTAMP)"
        return _SOURCE_EXPRESSIONS.get(column, f"@{column}")

    source_select = ",\n    ".join(f"{source_expression(column)} AS {column}" for column in enabled)
    update_set = ",\n  ".join(f"{column} = source.{column}" for column in enabled)
    insert_columns = ", ".join(["message_id", *enabled])
    insert_values = ", ".join(f"source.{column}" for column in ["message_id", *enabled])

    sql = f"""
MERGE `{table_ref}` AS target
USING (
  SELECT
    @message_id AS message_id,
    {source_select}
) AS source
ON target.message_id = source.message_id
WHEN MATCHED THEN UPDATE SET
  {update_set}
WHEN NOT MATCHED THEN
  INSERT ({insert_columns})
  VALUES ({insert_values})
"""
    params = [_merge_parameter(record, "message_id")]
    params.extend(_merge_parameter(record, column) for column in enabled)
    return QueryRequest(name="merge_message_row", sql=sql, params=tuple(params))


def _merge_parameter(record: ChatMessageRecord, column: str) -> QueryParameter:
    value = getattr(record, column)
    if column == "is_deleted":
        return QueryParameter.boolean(column, bool(value))
    # Nullable columns travel as '' and are turned back into NULL by NULLIF.
    return QueryParameter.string(column, "" if value is None else str(value))


class SchemaNegotiator:
    """Upserts physical rows into the messages table, adapting to drift.

    The learned state is owned by the instance, so separate stacks (and tests)
    never share it.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        project_id: str,
        dataset: str,
        table: str,
        probe_enabled: bool = True,
        probe_ttl_seconds: float = 600.0,
        logger: structlog.stdlib.BoundLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._executor = executor
        self._dataset_ref = f"{project_id}.{dataset}"
        self._table = table
        self._table_ref = f"{project_id}.{dataset}.{table}"
        self._probe_enabled = probe_enabled
        self._probe_ttl = probe_ttl_seconds
        self._logger = logger or structlog.get_logger(__name__)
        self._clock = clock
        self.state = NegotiationState()

    async def ensure_probed(self) -> None:
        if not self._probe_enabled:
            return
        probed_at = self.state.probed_at
        if probed_at is not None and self._clock() - probed_at < self._probe_ttl:
            return
        await self.probe()

    async def probe(self) -> bool:
        """Read the live column types and seed the negotiation state.

        Returns:
            True if the table was found and the state updated.
        """
        self.state.probed_at = self._clock()
        request = QueryRequest(
            name="probe_columns",
            sql=f"""
SELECT column_name, data_type
FROM `{self._dataset_ref}.INFORMATION_SCHEMA.COLUMNS`
WHERE table_name = @table_name
""",
            params=(QueryParameter.string("table_name", self._table),),
        )
        try:
            result = await self._executor.query(request)
        except WarehouseError as error:
            self._logger.warning("schema_probe_failed", table=self._table_ref, error=str(error))
            return False

        column_types = {
            (row.get("column_name") or "").lower(): (row.get("data_type") or "").upper() for row in result.rows
        }
        column_types.pop("", None)
        if not column_types:
            self._logger.info("schema_probe_table_missing", table=self._table_ref)
            return False

        self.state.disabled_columns = {column for column in MERGE_COLUMNS if column not in column_types}
        self.state.preferred_mode = TemporalCastMode.from_flags(
            created_at=column_types.get("created_at") == "TIMESTAMP",
            updated_at=column_types.get("updated_at") == "TIMESTAMP",
        )
        self._logger.info(
            "schema_probe_completed",
            table=self._table_ref,
            cast_mode=self.state.preferred_mode.value,
            disabled_columns=sorted(self.state.disabled_columns),
        )
        return True

    def updated_at_expression(self) -> str:
        """``@updated_at`` as the learned cast mode assigns it."""
        if self.state.preferred_mode.casts_updated_at:
            return "SAFE_CAST(@updated_at AS TIMESTAMP)"
        return "@updated_at"

    def learn_updated_at(self, error: SchemaMismatchError) -> bool:
        """Adopt the ``updated_at`` type reported by ``error``.

        Returns:
            True if the learned cast mode changed.
        """
        needs_cast = parse_temporal_requirements(error.detail).get("updated_at")
        mode = self.state.preferred_mode
        if needs_cast is None or needs_cast == mode.casts_updated_at:
            return False
        self.state.preferred_mode = TemporalCastMode.from_flags(created_at=mode.casts_created_at, updated_at=needs_cast)
        self._logger.info("update_shape_learned", cast_mode=self.state.preferred_mode.value)
        return True

    async def upsert(self, record: ChatMessageRecord) -> UpsertOutcome:
        """Insert or update ``record`` by ``message_id``.

        Raises:
            WarehouseError: If both the MERGE and the conditional insert fail.
        """
        await self.ensure_probed()

        attempted: set[TemporalCastMode] = set()
        pending: list[TemporalCastMode] = [self.state.preferred_mode]
        disabled = set(self.state.disabled_columns)
        last_error: WarehouseError | None = None

        while pending:
            mode = pending.pop(0)
            if mode in attempted:
                continue
            attempted.add(mode)

            while True:
                try:
                    await self._executor.query(build_merge_request(self._table_ref, record, mode, disabled))
                except SchemaMismatchError as error:
                    last_error = error
                    column = error.unrecognized_column
                    if column in MERGE_COLUMNS and column not in disabled:
                        self._logger.info("merge_column_disabled", column=column, cast_mode=mode.value)
                        disabled.add(column)
                        continue
                    if error.is_temporal_mismatch:
                        pending.extend(rank_cast_modes(parse_temporal_requirements(error.detail), attempted))
                    break
                except WarehouseError as error:
                    last_error = error
                    pending.clear()
                    break
                else:
                    self._remember(mode, disabled)
                    return UpsertOutcome.MERGED

        self.state.disabled_columns = disabled
        self._logger.warning(
            "merge_failed_using_insert_fallback",
            message_id=record.message_id,
            error=str(last_error),
        )
        return await self._insert_if_absent(record)

    def _remember(self, mode: TemporalCastMode, disabled: set[str]) -> None:
        if mode != self.state.preferred_mode or disabled != self.state.disabled_columns:
            self._logger.info(
                "merge_shape_learned",
                cast_mode=mode.value,
                disabled_columns=sorted(disabled),
            )
        self.state.preferred_mode = mode
        self.state.disabled_columns = set(disabled)

    async def _insert_if_absent(self, record: ChatMessageRecord) -> UpsertOutcome:
        existing = await self._executor.query(
            QueryRequest(
                name="find_message_row",
                sql=f"""
SELECT 1 AS found
FROM `{self._table_ref}`
WHERE message_id = @message_id
LIMIT 1
""",
                params=(QueryParameter.string("message_id", record.message_id),),
            )
        )
        if existing.rows:
            self._logger.warning("insert_fallback_row_exists", message_id=record.message_id)
            return UpsertOutcome.ALREADY_PRESENT

        row = record.model_dump()
        await self._executor.insert_all(self._table, [InsertRow(insert_id=record.message_id, json_row=row)])
        return UpsertOutcome.INSERTED
