"""Wire models for the BigQuery REST query and insertAll endpoints."""

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from chatstore.models.enums import ParameterType


class QueryParameter(BaseModel):
    name: str
    type: ParameterType = ParameterType.STRING
    value: str | int | bool

    model_config = ConfigDict(frozen=True)

    @classmethod
    def string(cls, name: str, value: str) -> "QueryParameter":
        return cls(name=name, type=ParameterType.STRING, value=value)

    @classmethod
    def int64(cls, name: str, value: int) -> "QueryParameter":
        return cls(name=name, type=ParameterType.INT64, value=value)

    @classmethod
    def boolean(cls, name: str, value: bool) -> "QueryParameter":
        return cls(name=name, type=ParameterType.BOOL, value=value)

    def to_wire(self) -> dict[str, Any]:
        if isinstance(self.value, bool):
            wire_value = "true" if self.value else "false"
        else:
            wire_value = str(self.value)
        return {
            "name": self.name,
            "parameterType": {"type": self.type.value},
            "parameterValue": {"value": wire_value},
        }


class QueryRequest(BaseModel):
    """A named, parameterized GoogleSQL statement.

    ``name`` identifies the statement in logs and is sent as the ``statement``
    job label, so it must be a valid label value (lowercase, digits, ``_``).
    """

    name: str
    sql: str
    params: tuple[QueryParameter, ...] = ()

    model_config = ConfigDict(frozen=True)

    def param(self, name: str) -> str | int | bool | None:
        for parameter in self.params:
            if parameter.name == name:
                return parameter.value
        return None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "query": self.sql,
            "useLegacySql": False,
            "labels": {"statement": self.name},
        }
        if self.params:
            body["parameterMode"] = "NAMED"
            body["queryParameters"] = [p.to_wire() for p in self.params]
        return body


class QueryResult(BaseModel):
    """Rows of a query response keyed by column name. Cell values stay strings."""

    rows: list[dict[str, str | None]] = Field(default_factory=list)
    total_rows: int | None = None

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "QueryResult":
        schema = payload.get("schema") or {}
        fields = [field.get("name") for field in schema.get("fields") or []]
        rows: list[dict[str, str | None]] = []
        for raw_row in payload.get("rows") or []:
            mapped: dict[str, str | None] = {}
            for index, cell in enumerate(raw_row.get("f") or []):
                if index < len(fields) and fields[index]:
                    value = cell.get("v") if isinstance(cell, Mapping) else None
                    mapped[fields[index]] = None if value is None else str(value)
            rows.append(mapped)
        total = payload.get("totalRows")
        return cls(rows=rows, total_rows=int(total) if total is not None else None)

    def first(self) -> dict[str, str | None] | None:
        return self.rows[0] if self.rows else None


class InsertRow(BaseModel):
    insert_id: str
    json_row: dict[str, Any]

    model_config = ConfigDict(frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return {"insertId": self.insert_id, "json": self.json_row}


__all__ = ["InsertRow", "QueryParameter", "QueryRequest", "QueryResult"]
