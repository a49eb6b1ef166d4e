"""Table creation for the warehouse tables.

DDL is rendered from the SQLModel table metadata so the physical schema is
declared in one place (``models/tables.py``). Creation runs at most once per
``TableManager``: concurrent early callers await the same in-flight task.
"""

import asyncio

import structlog
from sqlalchemy import Boolean, Column, Float, Integer
from sqlmodel import SQLModel

from chatstore.errors import WarehouseError
from chatstore.models.warehouse import QueryRequest
from chatstore.services.executor import RequestExecutor


def bigquery_type(column: Column) -> str:
    """Map a SQLAlchemy column type onto its BigQuery type name."""
    if isinstance(column.type, Boolean):
        return "BOOL"
    if isinstance(column.type, Integer):
        return "INT64"
    if isinstance(column.type, Float):
        return "FLOAT64"
    return "STRING"


def column_names(model: type[SQLModel]) -> list[str]:
    return [column.name for column in model.__table__.columns]


def build_table_ddl(table_ref: str, model: type[SQLModel]) -> list[str]:
    """CREATE TABLE IF NOT EXISTS plus one ADD COLUMN IF NOT EXISTS per column."""
    columns = list(model.__table__.columns)
    column_defs = ",\n  ".join(f"{column.name} {bigquery_type(column)}" for column in columns)
    statements = [f"CREATE TABLE IF NOT EXISTS `{table_ref}` (\n  {column_defs}\n)"]
    statements.extend(
        f"ALTER TABLE `{table_ref}` ADD COLUMN IF NOT EXISTS {column.name} {bigquery_type(column)}"
        for column in columns
    )
    return statements


class TableManager:
    """Creates the warehouse tables once per process when auto-create is on.

    A failed attempt disables auto-create for the lifetime of the manager;
    tables then have to be created out of band.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        tables: dict[str, type[SQLModel]],
        enabled: bool = False,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._executor = executor
        self._tables = tables
        self._enabled = enabled
        self._logger = logger or structlog.get_logger(__name__)
        self.tables_ensured = False
        self.auto_create_disabled = False
        self._in_flight: asyncio.Task[None] | None = None

    async def ensure_tables(self) -> None:
        if not self._enabled or self.tables_ensured or self.auto_create_disabled:
            return

        if self._in_flight is None:
            self._in_flight = asyncio.ensure_future(self._create_tables())

        task = self._in_flight
        try:
            await asyncio.shield(task)
        except WarehouseError as error:
            self.auto_create_disabled = True
            self._logger.warning("auto_create_tables_disabled", error=str(error))
        finally:
            if self._in_flight is task and task.done():
                self._in_flight = None

    async def _create_tables(self) -> None:
        for table_ref, model in self._tables.items():
            for index, ddl in enumerate(build_table_ddl(table_ref, model)):
                await self._executor.query(QueryRequest(name=f"ddl_{model.__tablename__}_{index}", sql=ddl))
        self.tables_ensured = True
        self._logger.info("warehouse_tables_ensured", tables=list(self._tables))
