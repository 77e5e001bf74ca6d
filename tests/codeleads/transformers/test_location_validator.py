"""
Unit tests for location_validator module
"""
import pytest

from src.codeleads.transformers.location_validator import (
    CityNameValidator,
    normalize_city,
    normalize_state,
)


class TestCityNameValidator:
    """Tests for CityNameValidator class"""

    @pytest.mark.parametrize("value", ["Austin", "san antonio", "  El   Paso ", "Fort Worth", "St Louis"])
    def test_accepts_plausible_city_names(self, value):
        assert CityNameValidator().is_valid(value)

    @pytest.mark.parametrize("value,rule", [
        ("", "empty"),
        ("   ", "empty"),
        (None, "empty"),
        ("A", "length"),
        ("X" * 31, "length"),
        ("123 Elm", "starts_with_letter"),
        ("01/15/2024", "starts_with_letter"),
        ("Travis County", "no_county"),
        ("Austin 78701", "trailing_zip"),
        ("San Antonio 78205", "trailing_zip"),
        ("One Two Three Four Five", "max_words"),
        ("Austin (north)", "no_special_chars"),
        ("Trailer in yard", "no_blacklisted_token"),
        ("Unknown", "no_blacklisted_token"),
        ("N/A", "no_blacklisted_token"),
    ])
    def test_rejection_reason_names_first_failing_rule(self, value, rule):
        assert CityNameValidator().rejection_reason(value) == rule

    def test_normalize_returns_title_case_or_none(self):
        validator = CityNameValidator()

        assert validator.normalize("  san   antonio ") == "San Antonio"
        assert validator.normalize("DALLAS") == "Dallas"
        assert validator.normalize("Debris on property") is None

    def test_city_with_zip_suffix_is_rejected(self):
        validator = CityNameValidator()

        assert validator.normalize("Austin 78701") is None
        assert validator.normalize("Austin") == "Austin"
        assert validator.is_valid("Austin 787")

    def test_extend_blacklist(self):
        validator = CityNameValidator()
        assert validator.is_valid("Springfield")

        validator.extend_blacklist(["Springfield"])

        assert validator.rejection_reason("Springfield") == "no_blacklisted_token"

    def test_add_rule_runs_after_builtin_rules(self):
        validator = CityNameValidator()
        validator.add_rule("texas_only", lambda v: v.lower() in {"austin", "houston"})

        assert validator.is_valid("Austin")
        assert validator.rejection_reason("Denver") == "texas_only"

    def test_custom_blacklist_replaces_default(self):
        validator = CityNameValidator(blacklist={"gotham"})

        assert validator.is_valid("Trailer Park")
        assert not validator.is_valid("Gotham")


class TestNormalizers:

    def test_normalize_city_collapses_whitespace(self):
        assert normalize_city("  new   york ") == "New York"

    @pytest.mark.parametrize("value,expected", [
        ("tx", "TX"),
        (" Ca ", "CA"),
        ("Texas", None),
        ("T", None),
        ("", None),
        (None, None),
        ("1A", None),
    ])
    def test_normalize_state(self, value, expected):
        assert normalize_state(value) == expected
