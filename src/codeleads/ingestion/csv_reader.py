"""
CSV Reading Helpers

Parses uploaded spreadsheet text into a pandas DataFrame of strings and
locates the city and state columns.
"""
from io import StringIO
from typing import List, Optional

import pandas as pd

from src.codeleads.exceptions import ValidationError
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)

CITY_HEADERS = ("city", "municipality")
STATE_HEADERS = ("state", "st")


def read_table(csv_text: str) -> pd.DataFrame:
    """
    Parse CSV text into a DataFrame where every cell is a string.

    Header names are trimmed; cells keep their text verbatim apart from
    missing trailing cells, which become empty strings.

    Args:
        csv_text: Raw CSV text with a header row

    Returns:
        DataFrame with one row per data record

    Raises:
        ValidationError: Empty input, unparseable rows or no data rows
    """
    if csv_text is None or not csv_text.strip():
        raise ValidationError("CSV is empty")

    try:
        df = pd.read_csv(
            StringIO(csv_text.lstrip("\ufeff")),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.warning("csv_parse_failed", error=str(e))
        raise ValidationError(f"Malformed CSV: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    if all(c.lower().startswith("unnamed:") for c in df.columns):
        raise ValidationError("CSV has no header row")
    if df.empty:
        raise ValidationError("CSV has a header but no data rows")

    return df.fillna("")


def find_city_column(headers: List[str]) -> Optional[str]:
    """
    Pick the city column: ``city`` or ``municipality`` first, otherwise the
    first header containing "city" (case-insensitive).
    """
    lowered = {h: h.strip().lower() for h in headers}
    for h, low in lowered.items():
        if low in CITY_HEADERS:
            return h
    for h, low in lowered.items():
        if "city" in low:
            return h
    return None


def find_state_column(headers: List[str]) -> Optional[str]:
    for h in headers:
        if h.strip().lower() in STATE_HEADERS:
            return h
    return None


def find_column(headers: List[str], aliases: tuple) -> Optional[str]:
    """First header whose lower-cased name is one of aliases, in alias order."""
    lowered = {h.strip().lower(): h for h in headers}
    for alias in aliases:
        if alias in lowered:
            return lowered[alias]
    return None
