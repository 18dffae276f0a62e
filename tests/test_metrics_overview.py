from ndis_core.metrics_distributions import compute_invoice_stats
from ndis_core.metrics_overview import compute_overview

RECORDS = [
    {
        "id": 1,
        "amount": 100.0,
        "category": "Therapy",
        "created_at": "2024-01-01T09:00:00Z",
        "state_management": '{"errors": []}',
        "status": "paid",
    },
    {
        "id": 2,
        "amount": 50.0,
        "category": "Therapy",
        "created_at": "2024-01-01T15:00:00Z",
        "state_management": '{"errors": ["E1"]}',
        "status": "paid",
    },
    {
        "id": 3,
        "amount": 25.5,
        "category": "Transport",
        "created_at": "2024-01-02T09:00:00Z",
        "state_management": '{"errors": []}',
        "status": None,
    },
]


def test_overview_tiles():
    overview = compute_overview(RECORDS)

    assert overview["total_records"] == 3
    assert overview["column_count"] == 6
    assert overview["numeric_columns"] == ["id", "amount"]
    assert overview["columns_used"]["value"] == "amount"
    assert overview["total_value"] == 175.5


def test_overview_category_and_timeline():
    overview = compute_overview(RECORDS)

    assert overview["categories"] == [{"name": "Therapy", "count": 2}, {"name": "Transport", "count": 1}]
    assert overview["timeline"] == [{"date": "2024-01-01", "count": 2}, {"date": "2024-01-02", "count": 1}]


def test_status_column_skips_json_blobs():
    overview = compute_overview(RECORDS)

    assert overview["columns_used"]["status"] == "status"
    assert {s["name"]: s["value"] for s in overview["statuses"]} == {"paid": 2, "Unknown": 1}


def test_overview_charts_are_vega_lite_specs():
    charts = compute_overview(RECORDS)["charts"]

    assert set(charts) == {"categories", "timeline", "statuses"}
    assert all("$schema" in spec for spec in charts.values())


def test_empty_overview():
    overview = compute_overview([])

    assert overview["total_records"] == 0
    assert overview["charts"] == {}


def test_total_value_reads_the_same_column_as_invoice_stats():
    records = [{"id": 1, "fee": None, "total": 40}, {"id": 2, "fee": 5.0, "total": 60}]

    overview = compute_overview(records)
    stats = compute_invoice_stats(records)

    assert overview["columns_used"]["value"] == stats["amount_column"] == "total"
    assert overview["total_value"] == stats["total_amount"] == 100.0
