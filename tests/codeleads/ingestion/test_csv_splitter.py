"""
Tests for splitting multi-location spreadsheets
"""
import pytest

from src.codeleads.exceptions import ValidationError
from src.codeleads.ingestion.csv_reader import read_table
from src.codeleads.ingestion.csv_splitter import CsvSplitter, SplitResult, split_by_location


def test_three_locations_cover_every_row(csv_factory, rows_factory):
    rows = (
        rows_factory(50, "Austin", "TX")
        + rows_factory(30, "Dallas", "TX")
        + rows_factory(20, "Boston", "MA")
    )

    result = split_by_location(csv_factory(rows))

    assert result.group_sizes == {"Austin|TX": 50, "Dallas|TX": 30, "Boston|MA": 20}
    assert result.skipped_rows == 0
    assert sum(result.group_sizes.values()) == result.total_rows == 100


def test_rows_without_location_are_skipped_and_counted(csv_factory, rows_factory):
    rows = rows_factory(60, "Austin", "TX") + rows_factory(35, "Dallas", "TX")
    rows += [(f"{n} Elm St", "", "", "78701", f"X-{n}", "Trash", "2024-02-01") for n in range(5)]

    result = split_by_location(csv_factory(rows))

    assert result.skipped_rows == 5
    assert sum(result.group_sizes.values()) == 95
    assert sum(result.group_sizes.values()) + result.skipped_rows == result.total_rows


def test_fallbacks_apply_per_field(csv_factory):
    rows = [
        ("1 Main St", "Austin", "", "", "", "", ""),
        ("2 Main St", "", "TX", "", "", "", ""),
        ("3 Main St", "", "", "", "", "", ""),
        ("4 Main St", "Boston", "MA", "", "", "", ""),
    ]

    result = CsvSplitter().split(csv_factory(rows), fallback_city="austin", fallback_state="tx")

    assert result.group_sizes == {"Austin|TX": 3, "Boston|MA": 1}
    assert result.skipped_rows == 0


def test_missing_state_without_fallback_is_skipped(csv_factory):
    rows = [("1 Main St", "Austin", "", "", "", "", "")]

    result = CsvSplitter().split(csv_factory(rows))

    assert result.groups == {}
    assert result.skipped_rows == 1


def test_group_rows_carry_resolved_location(csv_factory):
    rows = [("1 Main St", " austin ", "tx", "78701", "C-1", "Weeds", "2024-01-01")]

    result = split_by_location(csv_factory(rows))

    record = result.groups["Austin|TX"][0]
    assert record["city"] == "Austin"
    assert record["state"] == "TX"
    assert record["case_id"] == "C-1"


def test_to_csv_keeps_header_order_and_adds_location_columns():
    text = "Address,Zip\n1 Main St,78701\n2 Main St,78702\n"

    result = CsvSplitter().split(text, fallback_city="Austin", fallback_state="TX")
    df = read_table(result.to_csv("Austin|TX"))

    assert list(df.columns) == ["Address", "Zip", "city", "state"]
    assert df["Zip"].tolist() == ["78701", "78702"]
    assert set(df["city"]) == {"Austin"}


def test_to_csv_unknown_key():
    result = SplitResult()

    with pytest.raises(KeyError):
        result.to_csv("Nowhere|ZZ")


def test_split_key():
    assert SplitResult.split_key("San Antonio|TX") == ("San Antonio", "TX")


@pytest.mark.parametrize("kwargs", [
    {"fallback_city": "Trailer in yard"},
    {"fallback_state": "Texas"},
])
def test_invalid_fallback_rejected(csv_factory, rows_factory, kwargs):
    with pytest.raises(ValidationError):
        CsvSplitter().split(csv_factory(rows_factory(2, "Austin", "TX")), **kwargs)


def test_malformed_csv_rejected():
    with pytest.raises(ValidationError):
        split_by_location("")
