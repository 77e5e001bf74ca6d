"""
Tests for the ingestion command line
"""
from src.codeleads.ingestion import cli


def test_preview(tmp_path, csv_factory, rows_factory):
    source = tmp_path / "march.csv"
    source.write_text(csv_factory(rows_factory(2, "Austin", "TX") + rows_factory(1, "Boston", "MA")))

    output = cli.preview(source)

    assert output["total_rows"] == 3
    assert output["city_column"] == "city"
    assert [(c["city"], c["row_count"]) for c in output["locations"]] == [("Austin", 2), ("Boston", 1)]


def test_split_writes_one_file_per_location(tmp_path, csv_factory, rows_factory):
    source = tmp_path / "march.csv"
    source.write_text(csv_factory(rows_factory(2, "Austin", "TX") + rows_factory(1, "San Antonio", "TX")))

    output = cli.split(source, tmp_path / "splits", None, None)

    assert output["total_rows"] == 3
    assert sorted(p.name for p in (tmp_path / "splits").iterdir()) == [
        "Austin_TX_march.csv", "San_Antonio_TX_march.csv",
    ]
    austin = (tmp_path / "splits" / "Austin_TX_march.csv").read_text().splitlines()
    assert austin[0].startswith("address,city,state")
    assert len(austin) == 3


def test_main_reports_domain_errors(tmp_path, csv_factory, rows_factory):
    source = tmp_path / "march.csv"
    source.write_text(csv_factory(rows_factory(1, "Austin", "TX")))

    code = cli.main(["split", str(source), "--output", str(tmp_path / "out"), "--fallback-state", "Texas"])

    assert code == 1
    assert not (tmp_path / "out").exists()
