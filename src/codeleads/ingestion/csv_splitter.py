"""
CSV Splitter

Splits one multi-jurisdiction spreadsheet into per-location CSVs, each of
which becomes the input of an independent ingestion job.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from src.codeleads.exceptions import ValidationError
from src.codeleads.ingestion.csv_reader import read_table, find_city_column, find_state_column
from src.codeleads.ingestion.location_detector import resolve_locations
from src.codeleads.transformers.location_validator import CityNameValidator, normalize_city, normalize_state
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SplitResult:
    """
    Output of a split.

    Attributes:
        groups: ``City|ST`` key -> rows (header -> cell) with resolved city/state
        skipped_rows: Rows with no usable city or state after fallbacks
        total_rows: Data rows in the input
        headers: Column order used when serializing groups
    """
    groups: Dict[str, List[Dict[str, str]]] = field(default_factory=dict)
    skipped_rows: int = 0
    total_rows: int = 0
    headers: List[str] = field(default_factory=list)

    @property
    def group_sizes(self) -> Dict[str, int]:
        return {key: len(rows) for key, rows in self.groups.items()}

    def to_csv(self, key: str) -> str:
        """Serialize one group back to CSV text with the original header order."""
        if key not in self.groups:
            raise KeyError(key)
        return pd.DataFrame(self.groups[key], columns=self.headers).to_csv(index=False)

    @staticmethod
    def split_key(key: str) -> tuple:
        city, _, state = key.partition("|")
        return city, state


def _or_default(value, default):
    return default if value is None or pd.isna(value) else value


class CsvSplitter:
    """
    Groups rows by normalized ``City|ST``.

    Fallbacks apply per field: a row with a valid city but no state takes
    the fallback state, and the reverse. A row that still lacks either part
    is skipped and counted.
    """

    def __init__(self, validator: Optional[CityNameValidator] = None):
        self.validator = validator or CityNameValidator()

    def split(self, csv_text: str, fallback_city: Optional[str] = None,
              fallback_state: Optional[str] = None) -> SplitResult:
        """
        Split CSV text by location.

        Args:
            csv_text: Raw CSV with header row
            fallback_city: City for rows without a detectable one
            fallback_state: 2-letter state for rows without a detectable one

        Returns:
            SplitResult whose group sizes plus skipped_rows equal total_rows

        Raises:
            ValidationError: Malformed CSV or an unusable fallback
        """
        city_default = self._check_fallback_city(fallback_city)
        state_default = self._check_fallback_state(fallback_state)

        df = read_table(csv_text).reset_index(drop=True)
        headers = list(df.columns)
        city_col = find_city_column(headers) or "city"
        state_col = find_state_column(headers) or "state"
        out_headers = headers + [c for c in (city_col, state_col) if c not in headers]

        locations = resolve_locations(df, self.validator)

        result = SplitResult(total_rows=len(df), headers=out_headers)
        for idx, record in zip(df.index, df.to_dict(orient="records")):
            city = _or_default(locations.at[idx, "city"], city_default)
            state = _or_default(locations.at[idx, "state"], state_default)
            if not city or not state:
                result.skipped_rows += 1
                continue
            record[city_col] = city
            record[state_col] = state
            result.groups.setdefault(f"{city}|{state}", []).append(record)

        logger.info(
            "csv_split_completed",
            total_rows=result.total_rows,
            groups=len(result.groups),
            skipped_rows=result.skipped_rows,
        )
        return result

    def _check_fallback_city(self, fallback_city: Optional[str]) -> Optional[str]:
        if fallback_city is None or not fallback_city.strip():
            return None
        if not self.validator.is_valid(fallback_city):
            raise ValidationError(f"Fallback city is not a valid city name: {fallback_city!r}")
        return normalize_city(fallback_city)

    @staticmethod
    def _check_fallback_state(fallback_state: Optional[str]) -> Optional[str]:
        if fallback_state is None or not fallback_state.strip():
            return None
        state = normalize_state(fallback_state)
        if state is None:
            raise ValidationError(f"Fallback state must be a 2-letter code: {fallback_state!r}")
        return state


def split_by_location(csv_text: str, fallback_city: Optional[str] = None,
                      fallback_state: Optional[str] = None) -> SplitResult:
    """Split CSV text with the default city validator."""
    return CsvSplitter().split(csv_text, fallback_city, fallback_state)
