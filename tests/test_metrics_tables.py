from ndis_core.metrics_tables import compute_table_view, table_to_csv


def test_table_view_columns_come_from_first_row():
    rows = [{"code": "E1", "description": None}, {"code": "E2", "description": "Duplicate"}]

    view = compute_table_view("errors", rows)

    assert view["table_name"] == "errors"
    assert view["columns"] == ["code", "description"]
    assert view["row_count"] == 2
    assert view["null_counts"] == {"code": 0, "description": 1}


def test_table_view_of_empty_table():
    view = compute_table_view("errors", [])

    assert view["columns"] == []
    assert view["rows"] == []
    assert view["row_count"] == 0


def test_csv_encodes_nested_values_as_json():
    csv_bytes = table_to_csv([{"id": 1, "state_management": {"errors": ["E1"]}}])

    lines = csv_bytes.decode("utf-8").splitlines()
    assert lines[0] == "id,state_management"
    assert lines[1] == '1,"{""errors"": [""E1""]}"'


def test_csv_of_no_rows_is_empty():
    assert table_to_csv([]) == b""


def test_nullable_integer_columns_stay_integers():
    """A null in an integer column must not turn its other values into floats."""
    rows = [{"id": 1, "provider_id": 98765}, {"id": 2, "provider_id": None}]

    view = compute_table_view("providers", rows)

    assert view["rows"] == [{"id": 1, "provider_id": 98765}, {"id": 2, "provider_id": None}]
    assert isinstance(view["rows"][0]["provider_id"], int)
    assert table_to_csv(rows).decode("utf-8").splitlines() == ["id,provider_id", "1,98765", "2,"]
