"""
Tests for CSV reading and location detection
"""
import pytest

from src.codeleads.exceptions import ValidationError
from src.codeleads.ingestion.csv_reader import find_city_column, find_state_column, read_table
from src.codeleads.ingestion.location_detector import LocationDetector


class TestReadTable:

    def test_cells_stay_strings(self):
        df = read_table("address,zip\n1 Main St,02134\n")

        assert df.loc[0, "zip"] == "02134"

    def test_strips_byte_order_mark_and_header_whitespace(self):
        df = read_table("\ufeff address , city\n1 Main St,Austin\n")

        assert list(df.columns) == ["address", "city"]

    @pytest.mark.parametrize("text", ["", "   \n", "address,city\n"])
    def test_rejects_empty_input(self, text):
        with pytest.raises(ValidationError):
            read_table(text)

    def test_rejects_ragged_rows(self):
        with pytest.raises(ValidationError):
            read_table("a,b\n1,2\n1,2,3,4\n")


class TestColumnDetection:

    def test_exact_city_header_preferred(self):
        assert find_city_column(["Owner City", "City", "State"]) == "City"

    def test_falls_back_to_header_containing_city(self):
        assert find_city_column(["address", "Property City"]) == "Property City"

    def test_municipality_counts_as_city(self):
        assert find_city_column(["Municipality"]) == "Municipality"

    def test_state_aliases(self):
        assert find_state_column(["ST"]) == "ST"
        assert find_state_column(["province"]) is None


class TestLocationDetector:

    def test_ranks_by_row_count_then_name(self, csv_factory, rows_factory):
        rows = (
            rows_factory(2, "Dallas", "TX")
            + rows_factory(5, "Austin", "TX")
            + rows_factory(2, "Boston", "MA")
        )
        result = LocationDetector().detect(csv_factory(rows))

        assert [(c.city, c.state, c.row_count) for c in result.candidates] == [
            ("Austin", "TX", 5),
            ("Boston", "MA", 2),
            ("Dallas", "TX", 2),
        ]
        assert result.total_rows == 9
        assert result.is_multi_location
        assert result.city_column == "city"

    def test_normalizes_spelling_variants_into_one_candidate(self, csv_factory):
        rows = [
            ("1 Main St", "austin", "tx", "", "", "", ""),
            ("2 Main St", " AUSTIN ", "TX", "", "", "", ""),
        ]
        result = LocationDetector().detect(csv_factory(rows))

        assert len(result.candidates) == 1
        assert result.candidates[0].key == "Austin|TX"
        assert not result.is_multi_location

    def test_reports_undetected_rows(self, csv_factory):
        rows = [
            ("1 Main St", "Austin", "TX", "", "", "", ""),
            ("2 Main St", "Trailer in yard", "TX", "", "", "", ""),
            ("3 Main St", "", "TX", "", "", "", ""),
        ]
        result = LocationDetector().detect(csv_factory(rows))

        assert result.undetected_rows == {1, 2}
        assert result.candidates[0].row_count == 1

    def test_missing_state_column_gives_empty_state(self):
        result = LocationDetector().detect("address,city\n1 Main St,Austin\n")

        assert result.candidates[0].state == ""
        assert result.state_column is None
