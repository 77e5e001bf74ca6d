"""
Location Data Models

Pydantic models for location detection results.
"""
from typing import List, Optional, Set
from pydantic import BaseModel, Field


class LocationCandidate(BaseModel):
    """
    One detected jurisdiction in a spreadsheet.

    Attributes:
        city: Normalized city name
        state: 2-letter state code, empty when the sheet carries none
        row_count: Number of rows that resolved to this city/state
    """

    city: str = Field(..., description="Normalized city name")
    state: str = Field("", description="2-letter state code")
    row_count: int = Field(0, ge=0, description="Rows in this location")

    @property
    def key(self) -> str:
        return f"{self.city}|{self.state}"


class DetectionResult(BaseModel):
    """Ranked candidates plus the rows without a usable location."""

    candidates: List[LocationCandidate] = Field(default_factory=list)
    undetected_rows: Set[int] = Field(default_factory=set, description="0-based data row indices")
    total_rows: int = Field(0, ge=0)
    city_column: Optional[str] = None
    state_column: Optional[str] = None

    @property
    def is_multi_location(self) -> bool:
        return len(self.candidates) > 1
