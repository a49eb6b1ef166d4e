from chatstore.models.enums import TemporalCastMode
from chatstore.models.warehouse import InsertRow, QueryParameter, QueryRequest, QueryResult


class TestQueryRequest:
    def test_body_without_params_omits_parameter_mode(self) -> None:
        body = QueryRequest(name="ddl_chat_messages_0", sql="SELECT 1").to_body()

        assert body == {
            "query": "SELECT 1",
            "useLegacySql": False,
            "labels": {"statement": "ddl_chat_messages_0"},
        }

    def test_body_with_named_params(self) -> None:
        request = QueryRequest(
            name="lookup",
            sql="SELECT @a, @b, @c",
            params=(
                QueryParameter.string("a", "x"),
                QueryParameter.int64("b", 3),
                QueryParameter.boolean("c", False),
            ),
        )

        body = request.to_body()

        assert body["parameterMode"] == "NAMED"
        assert body["queryParameters"] == [
            {"name": "a", "parameterType": {"type": "STRING"}, "parameterValue": {"value": "x"}},
            {"name": "b", "parameterType": {"type": "INT64"}, "parameterValue": {"value": "3"}},
            {"name": "c", "parameterType": {"type": "BOOL"}, "parameterValue": {"value": "false"}},
        ]
        assert request.param("b") == 3
        assert request.param("missing") is None


class TestQueryResult:
    def test_maps_cells_onto_schema_fields(self) -> None:
        payload = {
            "schema": {"fields": [{"name": "message_id"}, {"name": "answered_in"}]},
            "rows": [{"f": [{"v": "m1"}, {"v": None}]}, {"f": [{"v": "m2"}, {"v": 7}]}],
            "totalRows": "2",
        }

        result = QueryResult.from_response(payload)

        assert result.rows == [
            {"message_id": "m1", "answered_in": None},
            {"message_id": "m2", "answered_in": "7"},
        ]
        assert result.total_rows == 2
        assert result.first() == {"message_id": "m1", "answered_in": None}

    def test_dml_response_has_no_rows(self) -> None:
        result = QueryResult.from_response({"numDmlAffectedRows": "3"})

        assert result.rows == []
        assert result.first() is None


def test_insert_row_wire_shape() -> None:
    row = InsertRow(insert_id="m1", json_row={"message_id": "m1"})

    assert row.to_wire() == {"insertId": "m1", "json": {"message_id": "m1"}}


def test_temporal_cast_mode_flags_round_trip() -> None:
    for mode in TemporalCastMode:
        assert TemporalCastMode.from_flags(mode.casts_created_at, mode.casts_updated_at) is mode
