"""
Unit tests for address_standardizer module
"""
import pytest

from src.codeleads.transformers.address_standardizer import (
    AddressStandardizer,
    StandardizedAddress,
    build_address_key,
)


class TestAddressStandardizer:
    """Tests for AddressStandardizer class"""

    def test_standardize_simple_address(self):
        """Test standardizing a simple address"""
        standardizer = AddressStandardizer()

        result = standardizer.standardize("123 Main Street", city="Austin", state="tx", zip_code="78701")

        assert result.street_number == "123"
        assert result.street_name == "MAIN"
        assert result.street_type == "ST"
        assert result.city == "AUSTIN"
        assert result.state == "TX"
        assert result.zip_code == "78701"
        assert result.street_line == "123 MAIN ST"

    def test_standardize_with_unit(self):
        """Test standardizing address with unit number"""
        result = AddressStandardizer().standardize("789 Elm Street APT 4B")

        assert result.street_name == "ELM"
        assert result.street_type == "ST"
        assert result.unit_type == "APT"
        assert result.unit_number == "4B"
        assert result.street_line == "789 ELM ST APT 4B"

    def test_spelling_variants_share_one_key(self):
        standardizer = AddressStandardizer()

        a = standardizer.standardize("123 North Main Street", "Austin", "TX", "78701")
        b = standardizer.standardize("123  n. main st.", "austin", "tx", "78701-1234")

        assert a.address_key == b.address_key

    def test_empty_address(self):
        result = AddressStandardizer().standardize("   ")

        assert result == StandardizedAddress()
        assert result.address_key is None

    @pytest.mark.parametrize("value,expected", [
        ("78701", "78701"),
        ("78701-1234", "78701"),
        ("2134", "02134"),
        ("123", None),
        ("", None),
        (None, None),
    ])
    def test_normalize_zip(self, value, expected):
        assert AddressStandardizer.normalize_zip(value) == expected


def test_build_address_key_is_lowercase_and_pipe_joined():
    assert build_address_key("123  MAIN ST", "Austin", "TX", None) == "123 main st|austin|tx|"
