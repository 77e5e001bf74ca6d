"""
Address Standardization Transformer

Normalizes street addresses from violation spreadsheets and builds the
natural key used to deduplicate properties across uploads.
"""
import re
from typing import Optional
from dataclasses import dataclass

from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class StandardizedAddress:
    """
    Standardized address components.

    Attributes:
        street_number: House/building number
        street_name: Street name (normalized)
        street_type: Street type (ST, AVE, RD, etc.)
        unit_type: Unit type (APT, UNIT, STE, etc.)
        unit_number: Unit number
        city: City name
        state: State abbreviation
        zip_code: 5-digit ZIP code
        street_line: Street address including unit, no locality
    """
    street_number: Optional[str] = None
    street_name: Optional[str] = None
    street_type: Optional[str] = None
    unit_type: Optional[str] = None
    unit_number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    street_line: Optional[str] = None

    @property
    def address_key(self) -> Optional[str]:
        """Natural key ``street|city|st|zip`` in lower case, or None without a street."""
        if not self.street_line:
            return None
        return build_address_key(self.street_line, self.city, self.state, self.zip_code)


def build_address_key(address: str, city: Optional[str], state: Optional[str], zip_code: Optional[str]) -> str:
    parts = [address, city or "", state or "", zip_code or ""]
    return "|".join(" ".join(p.split()) for p in parts).lower()


class AddressStandardizer:
    """
    Standardizes addresses to a consistent format across uploads.

    Handles common variations, abbreviations, and formatting inconsistencies
    so that "123 North Main Street" and "123 n main st" share one key.
    """

    STREET_TYPES = {
        'ALLEY': 'ALY', 'AVENUE': 'AVE', 'BOULEVARD': 'BLVD', 'CIRCLE': 'CIR',
        'COURT': 'CT', 'DRIVE': 'DR', 'EXPRESSWAY': 'EXPY', 'HIGHWAY': 'HWY',
        'LANE': 'LN', 'PARKWAY': 'PKWY', 'PLACE': 'PL', 'ROAD': 'RD',
        'STREET': 'ST', 'TERRACE': 'TER', 'TRAIL': 'TRL', 'WAY': 'WAY',
        'LOOP': 'LOOP', 'PATH': 'PATH', 'PIKE': 'PIKE', 'PLAZA': 'PLZ',
        'POINT': 'PT', 'RIDGE': 'RDG', 'RUN': 'RUN', 'SQUARE': 'SQ'
    }

    UNIT_TYPES = {
        'APARTMENT': 'APT', 'BUILDING': 'BLDG', 'FLOOR': 'FL',
        'SUITE': 'STE', 'UNIT': 'UNIT', 'ROOM': 'RM', '#': 'UNIT'
    }

    DIRECTIONS = {
        'NORTH': 'N', 'SOUTH': 'S', 'EAST': 'E', 'WEST': 'W',
        'NORTHEAST': 'NE', 'NORTHWEST': 'NW', 'SOUTHEAST': 'SE', 'SOUTHWEST': 'SW'
    }

    _UNIT_PATTERN = re.compile(
        r'(?:^|\s|,)(#|APT|APARTMENT|UNIT|SUITE|STE|BLDG|BUILDING|FL|FLOOR|RM|ROOM)\.?\s*#?\s*([A-Z0-9\-]+)\s*$'
    )

    def standardize(self, address: str, city: Optional[str] = None,
                    state: Optional[str] = None, zip_code: Optional[str] = None) -> StandardizedAddress:
        """
        Standardize a street address.

        Args:
            address: Raw street address
            city: City name (already validated by the caller)
            state: State abbreviation
            zip_code: ZIP code

        Returns:
            StandardizedAddress with normalized components
        """
        if not address or not address.strip():
            return StandardizedAddress()

        cleaned = re.sub(r'[.,]+(?=\s|$)', ' ', address.strip().upper())
        cleaned = ' '.join(cleaned.split())

        unit_type, unit_number, cleaned = self._extract_unit(cleaned)
        street_number, street_name, street_type = self._parse_street(cleaned)

        street_parts = [p for p in (street_number, street_name, street_type) if p]
        if unit_type and unit_number:
            street_parts.append(f"{unit_type} {unit_number}")

        return StandardizedAddress(
            street_number=street_number,
            street_name=street_name,
            street_type=street_type,
            unit_type=unit_type,
            unit_number=unit_number,
            city=' '.join(city.split()).upper() if city else None,
            state=state.strip().upper() if state else None,
            zip_code=self.normalize_zip(zip_code),
            street_line=' '.join(street_parts) if street_parts else None,
        )

    def _extract_unit(self, address: str) -> tuple[Optional[str], Optional[str], str]:
        """
        Extract a trailing unit designator from the address.

        Returns:
            Tuple of (unit_type, unit_number, remaining_address)
        """
        match = self._UNIT_PATTERN.search(address)
        if not match:
            return None, None, address

        unit_type = self.UNIT_TYPES.get(match.group(1), match.group(1))
        return unit_type, match.group(2), address[:match.start()].strip()

    def _parse_street(self, address: str) -> tuple[Optional[str], Optional[str], Optional[str]]:
        """
        Parse street components from address.

        Returns:
            Tuple of (street_number, street_name, street_type)
        """
        parts = address.split()
        if not parts:
            return None, None, None

        street_number = None
        if parts[0].replace('-', '').isdigit():
            street_number = parts[0]
            parts = parts[1:]

        if not parts:
            return street_number, None, None

        street_type = None
        if len(parts) > 1 and (parts[-1] in self.STREET_TYPES or parts[-1] in self.STREET_TYPES.values()):
            street_type = self.STREET_TYPES.get(parts[-1], parts[-1])
            parts = parts[:-1]

        street_name = ' '.join(self.DIRECTIONS.get(part, part) for part in parts)
        return street_number, street_name or None, street_type

    @staticmethod
    def normalize_zip(zip_code: Optional[str]) -> Optional[str]:
        """
        Normalize ZIP code to 5 digits.

        ZIP+4 and values that lost a leading zero in a spreadsheet
        (``2134`` for ``02134``) are both accepted.

        Args:
            zip_code: Raw ZIP code

        Returns:
            5-digit ZIP code or None
        """
        if not zip_code:
            return None

        text = str(zip_code).strip()
        if re.fullmatch(r'\d{4}', text):
            return text.zfill(5)

        digits = re.sub(r'\D', '', text)
        if len(digits) >= 5:
            return digits[:5]

        return None
