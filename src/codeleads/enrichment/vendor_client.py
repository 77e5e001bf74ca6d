"""
Skip-Trace Vendor Client

Blocking requests-based client for the BatchData skip-trace endpoint. One
call resolves one street address to zero or more owner contacts.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from config.settings import settings
from src.codeleads.exceptions import VendorError, VendorNoMatch, VendorTimeoutError
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ContactRecord:
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class LookupResult:
    """
    Contacts found for one address.

    Attributes:
        contacts: One record per phone number, or a single email-only record
        raw: Vendor payload as returned
    """
    contacts: List[ContactRecord] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


def parse_contacts(payload: Dict[str, Any]) -> List[ContactRecord]:
    """
    Flatten a vendor payload into contact records.

    Every phone becomes a record carrying the owner name and first email;
    a payload with emails but no phones yields one email-only record.
    """
    owner = payload.get("owner_name") or None
    phones = [p for p in (payload.get("phones") or []) if p]
    emails = [e for e in (payload.get("emails") or []) if e]
    first_email = emails[0] if emails else None

    if phones:
        return [ContactRecord(name=owner, phone=phone, email=first_email) for phone in phones]
    if emails:
        return [ContactRecord(name=owner, email=first_email)]
    return []


class SkipTraceClient:
    """
    Client for the skip-trace API.

    Usage:
        client = SkipTraceClient()
        result = client.lookup("123 MAIN ST, Austin, TX 78701")
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            base_url: Override the default API URL (for testing)
            api_key: Bearer token (defaults to settings.vendor_api_key)
            timeout: Per-request timeout in seconds
            session: Pre-configured requests session
        """
        self.base_url = (base_url or settings.vendor_base_url).rstrip("/")
        self.api_key = api_key or settings.vendor_api_key
        self.timeout = timeout or settings.vendor_timeout_seconds
        self.session = session or requests.Session()

    def lookup(self, address: str, phone_hint: Optional[str] = None) -> LookupResult:
        """
        Skip-trace one address.

        Args:
            address: Full single-line address
            phone_hint: Optional known phone to improve matching

        Returns:
            LookupResult with at least one contact

        Raises:
            VendorNoMatch: 404 or a payload without contacts
            VendorTimeoutError: No answer within the timeout
            VendorError: Transport failure, non-success status or bad payload
        """
        body = {"address": address}
        if phone_hint:
            body["phone_hint"] = phone_hint

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self.session.post(
                f"{self.base_url}/skip-trace", json=body, headers=headers, timeout=self.timeout
            )
        except requests.Timeout as e:
            logger.warning("skiptrace_request_timeout", timeout=self.timeout)
            raise VendorTimeoutError(f"Skip-trace timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            logger.error("skiptrace_request_failed", error=str(e))
            raise VendorError(f"Skip-trace request failed: {e}") from e

        if response.status_code == 404:
            raise VendorNoMatch("No skip-trace match", {"address": address})
        if response.status_code >= 400:
            logger.error("skiptrace_api_error", status_code=response.status_code, response=response.text[:200])
            raise VendorError(f"Skip-trace API failed: {response.status_code}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise VendorError("Skip-trace API returned invalid JSON", status_code=response.status_code) from e

        contacts = parse_contacts(payload if isinstance(payload, dict) else {})
        if not contacts:
            raise VendorNoMatch("Skip-trace returned no contacts", {"address": address})

        return LookupResult(contacts=contacts, raw=payload)
