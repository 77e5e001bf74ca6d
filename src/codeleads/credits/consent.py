"""
Consent Store

Durable record that a user accepted the skip-trace terms. The client IP is
stored only as a SHA-256 digest.
"""
import hashlib
from typing import Optional

from src.codeleads.db.base import utcnow
from src.codeleads.db.models import ConsentRecord
from src.codeleads.db.session import SessionFactory, session_scope
from src.codeleads.models.credits import ConsentView
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


def hash_client(client_ip: Optional[str]) -> str:
    return hashlib.sha256((client_ip or "unknown").encode("utf-8")).hexdigest()


class ConsentStore:
    """Reads and writes consent_records."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory

    def record(self, user_id: str, client_ip: Optional[str] = None,
               user_agent: Optional[str] = None) -> ConsentView:
        """
        Record acceptance, refreshing the timestamp if the user already consented.

        Args:
            user_id: Accepting user
            client_ip: Caller address (hashed before storage)
            user_agent: Caller agent string

        Returns:
            The stored consent
        """
        with session_scope(self.session_factory) as session:
            consent = session.get(ConsentRecord, user_id)
            if consent is None:
                consent = ConsentRecord(user_id=user_id)
                session.add(consent)
            consent.consented_at = utcnow()
            consent.client_hash = hash_client(client_ip)
            consent.user_agent = (user_agent or "")[:500] or None
            session.flush()
            logger.info("skiptrace_consent_recorded", user_id=user_id)
            return ConsentView.model_validate(consent)

    def get(self, user_id: str) -> Optional[ConsentView]:
        with session_scope(self.session_factory) as session:
            consent = session.get(ConsentRecord, user_id)
            return ConsentView.model_validate(consent) if consent else None

    def has_consent(self, user_id: str) -> bool:
        return self.get(user_id) is not None
