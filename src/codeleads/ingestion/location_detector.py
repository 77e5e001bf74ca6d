"""
Location Detection

Scans a spreadsheet's city and state columns and reports which
jurisdictions it covers, so that a multi-city upload can be previewed and
split before any job is created.
"""
from typing import Optional

import pandas as pd

from src.codeleads.ingestion.csv_reader import read_table, find_city_column, find_state_column
from src.codeleads.models.location import DetectionResult, LocationCandidate
from src.codeleads.transformers.location_validator import CityNameValidator, normalize_state
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


def resolve_locations(df: pd.DataFrame, validator: CityNameValidator) -> pd.DataFrame:
    """
    Per-row normalized city and state.

    Returns:
        DataFrame aligned with df with ``city`` and ``state`` columns; cells
        that fail validation are None
    """
    headers = list(df.columns)
    city_col = find_city_column(headers)
    state_col = find_state_column(headers)

    cities = df[city_col].map(validator.normalize) if city_col else pd.Series([None] * len(df), index=df.index)
    states = df[state_col].map(normalize_state) if state_col else pd.Series([None] * len(df), index=df.index)

    return pd.DataFrame({"city": cities, "state": states}, index=df.index)


class LocationDetector:
    """
    Detects the city/state groups present in a CSV.

    Candidates are ranked by row count (descending), ties broken by city
    then state, so the output is deterministic for a given input.
    """

    def __init__(self, validator: Optional[CityNameValidator] = None):
        self.validator = validator or CityNameValidator()

    def detect(self, csv_text: str) -> DetectionResult:
        """
        Detect locations in CSV text.

        Args:
            csv_text: Raw CSV with header row

        Returns:
            DetectionResult with ranked candidates and undetected row indices

        Raises:
            ValidationError: If the CSV cannot be parsed
        """
        df = read_table(csv_text).reset_index(drop=True)
        return self.detect_frame(df)

    def detect_frame(self, df: pd.DataFrame) -> DetectionResult:
        headers = list(df.columns)
        locations = resolve_locations(df, self.validator)

        detected = locations[locations["city"].notna()].copy()
        detected["state"] = detected["state"].fillna("")
        undetected = set(int(i) for i in locations.index[locations["city"].isna()])

        candidates = []
        if not detected.empty:
            counts = (
                detected.groupby(["city", "state"]).size()
                .reset_index(name="row_count")
                .sort_values(by=["row_count", "city", "state"], ascending=[False, True, True])
            )
            candidates = [
                LocationCandidate(city=row.city, state=row.state, row_count=int(row.row_count))
                for row in counts.itertuples(index=False)
            ]

        logger.info(
            "locations_detected",
            total_rows=len(df),
            candidates=len(candidates),
            undetected_rows=len(undetected),
        )

        return DetectionResult(
            candidates=candidates,
            undetected_rows=undetected,
            total_rows=len(df),
            city_column=find_city_column(headers),
            state_column=find_state_column(headers),
        )
