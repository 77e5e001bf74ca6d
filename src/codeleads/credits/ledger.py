"""
Credit Ledger

Append-only record of credit movements. A user's balance is the sum of
their entries and is never stored anywhere else.

Every append is guarded by a compare-and-swap on the user's CreditAccount
version, taken in the same transaction as the insert:

    1. read version v, then SUM(delta)
    2. check the balance rule
    3. UPDATE credit_accounts SET version = v + 1 WHERE user_id = u AND version = v
    4. INSERT the entry

If step 3 touches no row another writer got there first; the transaction
is rolled back and the whole sequence retried.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.settings import settings
from src.codeleads.db.models import CreditAccount, LedgerEntry
from src.codeleads.db.session import SessionFactory, session_scope
from src.codeleads.exceptions import (
    InsufficientCreditsError,
    LedgerContentionError,
    ValidationError,
)
from src.codeleads.models.credits import LedgerEntryView
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)

REASON_CHARGE = "skiptrace_charge"
REASON_REFUND = "skiptrace_refund"
REASON_GRANT = "grant"


def refund_key(run_id: str, property_id: str) -> str:
    return f"refund:{run_id}:{property_id}"


class CreditLedger:
    """
    Charges, refunds and grants against the shared credit balance.

    Usage:
        ledger = CreditLedger()
        ledger.grant("user-1", 10)
        ledger.charge("user-1", 3, correlation_id=run_id)
        ledger.refund("user-1", 1, correlation_id=run_id,
                      idempotency_key=refund_key(run_id, property_id))
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None, max_retries: Optional[int] = None):
        self.session_factory = session_factory
        self.max_retries = max_retries or settings.ledger_cas_max_retries

    def balance(self, user_id: str) -> int:
        with session_scope(self.session_factory) as session:
            return self._sum(session, user_id)

    def entries(self, user_id: str, limit: int = 100) -> List[LedgerEntryView]:
        """Most recent entries first."""
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.id.desc())
                .limit(limit)
            ).scalars().all()
            return [LedgerEntryView.model_validate(row) for row in rows]

    def count_by_correlation(self, correlation_id: str, reason: str) -> int:
        with session_scope(self.session_factory) as session:
            return session.scalar(
                select(func.count()).select_from(LedgerEntry).where(
                    LedgerEntry.correlation_id == correlation_id,
                    LedgerEntry.reason == reason,
                )
            )

    def charge(self, user_id: str, amount: int, reason: str = REASON_CHARGE,
               correlation_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> LedgerEntryView:
        """
        Debit amount credits as one entry.

        Raises:
            InsufficientCreditsError: Balance is below amount; nothing is appended
            LedgerContentionError: CAS retries exhausted
        """
        self._check_amount(amount)
        entry = self._append(user_id, -amount, reason, correlation_id=correlation_id, meta=meta)
        logger.info("credits_charged", user_id=user_id, amount=amount, correlation_id=correlation_id)
        return entry

    def refund(self, user_id: str, amount: int = 1, reason: str = REASON_REFUND,
               correlation_id: Optional[str] = None, idempotency_key: Optional[str] = None,
               property_id: Optional[str] = None,
               meta: Optional[Dict[str, Any]] = None) -> Optional[LedgerEntryView]:
        """
        Credit amount back as one entry.

        Returns:
            The new entry, or None when idempotency_key was already used
        """
        self._check_amount(amount)
        try:
            entry = self._append(
                user_id, amount, reason,
                correlation_id=correlation_id,
                idempotency_key=idempotency_key,
                property_id=property_id,
                meta=meta,
            )
        except IntegrityError:
            if idempotency_key is None:
                raise
            entry = None

        if entry is None:
            logger.info("refund_already_applied", user_id=user_id, idempotency_key=idempotency_key)
            return None

        logger.info("credits_refunded", user_id=user_id, amount=amount, idempotency_key=idempotency_key)
        return entry

    def grant(self, user_id: str, amount: int, reason: str = REASON_GRANT,
              correlation_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> LedgerEntryView:
        """Add purchased or plan credits."""
        self._check_amount(amount)
        entry = self._append(user_id, amount, reason, correlation_id=correlation_id, meta=meta)
        logger.info("credits_granted", user_id=user_id, amount=amount, reason=reason)
        return entry

    @staticmethod
    def _check_amount(amount: int):
        if not isinstance(amount, int) or amount <= 0:
            raise ValidationError(f"Credit amount must be a positive integer, got {amount!r}")

    def _append(self, user_id: str, delta: int, reason: str, correlation_id: Optional[str] = None,
                idempotency_key: Optional[str] = None, property_id: Optional[str] = None,
                meta: Optional[Dict[str, Any]] = None) -> Optional[LedgerEntryView]:
        for attempt in range(1, self.max_retries + 1):
            with session_scope(self.session_factory) as session:
                if idempotency_key and self._key_used(session, idempotency_key):
                    return None

                version = self._ensure_account(session, user_id)
                balance = self._sum(session, user_id)
                if delta < 0 and balance + delta < 0:
                    raise InsufficientCreditsError(user_id, -delta, balance)

                swapped = session.execute(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id, CreditAccount.version == version)
                    .values(version=version + 1)
                ).rowcount
                if swapped != 1:
                    session.rollback()
                    logger.debug("ledger_cas_conflict", user_id=user_id, attempt=attempt)
                    continue

                entry = LedgerEntry(
                    user_id=user_id,
                    delta=delta,
                    reason=reason,
                    correlation_id=correlation_id,
                    property_id=property_id,
                    idempotency_key=idempotency_key,
                    meta=meta or {},
                )
                session.add(entry)
                session.flush()
                return LedgerEntryView.model_validate(entry)

        logger.error("ledger_cas_retries_exhausted", user_id=user_id, retries=self.max_retries)
        raise LedgerContentionError(
            f"Could not update credits for {user_id} after {self.max_retries} attempts",
            {"user_id": user_id},
        )

    @staticmethod
    def _sum(session: Session, user_id: str) -> int:
        return int(session.scalar(
            select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(LedgerEntry.user_id == user_id)
        ))

    @staticmethod
    def _key_used(session: Session, idempotency_key: str) -> bool:
        return session.scalar(
            select(LedgerEntry.id).where(LedgerEntry.idempotency_key == idempotency_key)
        ) is not None

    @staticmethod
    def _ensure_account(session: Session, user_id: str) -> int:
        version = session.scalar(select(CreditAccount.version).where(CreditAccount.user_id == user_id))
        if version is not None:
            return version
        try:
            with session.begin_nested():
                session.add(CreditAccount(user_id=user_id, version=0))
                session.flush()
            return 0
        except IntegrityError:
            return session.scalar(select(CreditAccount.version).where(CreditAccount.user_id == user_id))
