"""
Location Validation Transformer

Decides whether a spreadsheet cell is plausibly a city name and normalizes
city and state values into grouping keys. Violation spreadsheets frequently
carry descriptions, vehicle notes or dates in the "city" column, so every
candidate passes an ordered list of named rules before it is counted.
"""
import re
from typing import Callable, Iterable, List, Optional, Tuple

from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)

Rule = Callable[[str], bool]

# Words that show up in free-text fields pasted into the city column
DEFAULT_BLACKLIST = frozenset({
    # filler words typical of sentences
    'the', 'when', 'there', 'this', 'that', 'with', 'from', 'have', 'will', 'shall', 'must',
    # vehicle and descriptive terms
    'trailer', 'truck', 'vehicle', 'picture', 'address', 'owner', 'property',
    'additional', 'continuing', 'believe', 'action', 'constitute', 'eyesore',
    # violation keywords
    'violation', 'debris', 'trash', 'weeds', 'overgrown', 'illegal', 'unpermitted',
    'hazard', 'unsafe', 'repair', 'maintain', 'fence', 'yard', 'building',
    # field headers and placeholders
    'description', 'location', 'status', 'unknown', 'n/a', 'none', 'null',
})

_DATE_SHAPES = (
    re.compile(r'^\d{1,2}[-/]\d{1,2}'),
    re.compile(r'\d{4}-\d{2}-\d{2}'),
)
_STATE_CODE = re.compile(r'^[A-Za-z]{2}$')
_FORBIDDEN_CHARS = re.compile(r'[:;()\[\]#@*&]')
_TRAILING_ZIP = re.compile(r'\s\d{5}$')


def normalize_city(value: str) -> str:
    """Trim, collapse inner whitespace and capitalize each word."""
    return ' '.join(word.capitalize() for word in value.split())


def normalize_state(value: Optional[str]) -> Optional[str]:
    """
    Accept a 2-letter state code.

    Returns:
        Upper-cased code, or None for anything that is not exactly two letters
    """
    if value is None:
        return None
    text = str(value).strip()
    if not _STATE_CODE.match(text):
        return None
    return text.upper()


class CityNameValidator:
    """
    Strategy object holding an ordered list of named rules.

    Each rule receives the trimmed candidate and returns True when the
    candidate is acceptable. Rules can be appended and the blacklist
    extended without changing callers.

    Usage:
        validator = CityNameValidator()
        validator.normalize("  san   antonio ")   # "San Antonio"
        validator.normalize("Trailer in yard")    # None
    """

    def __init__(self, blacklist: Optional[Iterable[str]] = None, max_words: int = 4,
                 min_length: int = 2, max_length: int = 30):
        self.blacklist = set(DEFAULT_BLACKLIST if blacklist is None else blacklist)
        self.max_words = max_words
        self.min_length = min_length
        self.max_length = max_length
        self.rules: List[Tuple[str, Rule]] = [
            ("length", lambda v: self.min_length <= len(v) <= self.max_length),
            ("starts_with_letter", lambda v: v[:1].isalpha()),
            ("not_numeric", lambda v: not v.replace(' ', '').isdigit()),
            ("not_date", lambda v: not any(p.search(v) for p in _DATE_SHAPES)),
            ("no_county", lambda v: 'county' not in v.lower()),
            ("trailing_zip", lambda v: not _TRAILING_ZIP.search(v)),
            ("max_words", lambda v: len(v.split()) <= self.max_words),
            ("no_special_chars", lambda v: not _FORBIDDEN_CHARS.search(v)),
            ("no_blacklisted_token", self._has_no_blacklisted_token),
        ]

    def add_rule(self, name: str, rule: Rule) -> None:
        self.rules.append((name, rule))

    def extend_blacklist(self, words: Iterable[str]) -> None:
        self.blacklist.update(w.lower() for w in words)

    def _has_no_blacklisted_token(self, value: str) -> bool:
        tokens = re.findall(r"[a-z/]+", value.lower())
        return not any(token in self.blacklist for token in tokens)

    def rejection_reason(self, value: Optional[str]) -> Optional[str]:
        """
        Name of the first rule the value fails, or None if it passes.
        """
        if value is None:
            return "empty"
        candidate = ' '.join(str(value).split())
        if not candidate:
            return "empty"
        for name, rule in self.rules:
            if not rule(candidate):
                return name
        return None

    def is_valid(self, value: Optional[str]) -> bool:
        return self.rejection_reason(value) is None

    def normalize(self, value: Optional[str]) -> Optional[str]:
        """
        Validate and normalize a city cell.

        Args:
            value: Raw cell text

        Returns:
            Normalized city name, or None if the cell is not a usable city
        """
        reason = self.rejection_reason(value)
        if reason is not None:
            if reason != "empty":
                logger.debug("city_candidate_rejected", value=str(value)[:40], rule=reason)
            return None
        return normalize_city(str(value))
