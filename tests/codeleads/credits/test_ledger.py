"""
Tests for the append-only credit ledger
"""
import threading

import pytest
from sqlalchemy import select

from src.codeleads.credits.ledger import REASON_REFUND, CreditLedger, refund_key
from src.codeleads.db.models import CreditAccount, LedgerEntry
from src.codeleads.db.session import session_scope
from src.codeleads.exceptions import AppendOnlyViolationError, InsufficientCreditsError, ValidationError


@pytest.fixture
def ledger(session_factory):
    return CreditLedger(session_factory, max_retries=50)


class TestCreditLedger:

    def test_new_user_has_zero_balance(self, ledger):
        assert ledger.balance("nobody") == 0

    def test_balance_is_sum_of_entries(self, ledger):
        ledger.grant("user-1", 10)
        ledger.charge("user-1", 4, correlation_id="run-1")
        ledger.refund("user-1", 1, correlation_id="run-1", idempotency_key=refund_key("run-1", "p1"))

        assert ledger.balance("user-1") == 7
        assert [e.delta for e in ledger.entries("user-1")] == [1, -4, 10]

    def test_charge_beyond_balance_rejected_without_entry(self, ledger):
        ledger.grant("user-1", 10)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            ledger.charge("user-1", 12)

        assert exc_info.value.balance == 10
        assert exc_info.value.requested == 12
        assert ledger.balance("user-1") == 10
        assert len(ledger.entries("user-1")) == 1

    def test_charge_to_exactly_zero_allowed(self, ledger):
        ledger.grant("user-1", 3)
        ledger.charge("user-1", 3)

        assert ledger.balance("user-1") == 0

    @pytest.mark.parametrize("amount", [0, -5, 1.5])
    def test_amount_must_be_positive_integer(self, ledger, amount):
        with pytest.raises(ValidationError):
            ledger.grant("user-1", amount)

    def test_refund_with_same_key_applies_once(self, ledger):
        ledger.grant("user-1", 5)
        ledger.charge("user-1", 5, correlation_id="run-1")
        key = refund_key("run-1", "p1")

        first = ledger.refund("user-1", correlation_id="run-1", idempotency_key=key, property_id="p1")
        second = ledger.refund("user-1", correlation_id="run-1", idempotency_key=key, property_id="p1")

        assert first is not None
        assert first.idempotency_key == "refund:run-1:p1"
        assert second is None
        assert ledger.balance("user-1") == 1
        assert ledger.count_by_correlation("run-1", REASON_REFUND) == 1

    def test_every_append_bumps_account_version(self, ledger, session_factory):
        ledger.grant("user-1", 5)
        ledger.charge("user-1", 2)

        with session_scope(session_factory) as session:
            assert session.get(CreditAccount, "user-1").version == 2

    def test_concurrent_charges_never_overdraw(self, ledger):
        ledger.grant("user-1", 20)
        errors = []

        def spend():
            for _ in range(5):
                try:
                    ledger.charge("user-1", 1)
                except InsufficientCreditsError as e:
                    errors.append(e)

        threads = [threading.Thread(target=spend) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        charges = [e for e in ledger.entries("user-1", limit=1000) if e.delta < 0]
        assert len(charges) == 20
        assert len(errors) == 10
        assert ledger.balance("user-1") == 0


class TestAppendOnly:

    def test_update_rejected(self, ledger, session_factory):
        ledger.grant("user-1", 5)

        with pytest.raises(AppendOnlyViolationError):
            with session_scope(session_factory) as session:
                entry = session.execute(select(LedgerEntry)).scalar_one()
                entry.delta = 500

        assert ledger.balance("user-1") == 5

    def test_delete_rejected(self, ledger, session_factory):
        ledger.grant("user-1", 5)

        with pytest.raises(AppendOnlyViolationError):
            with session_scope(session_factory) as session:
                session.delete(session.execute(select(LedgerEntry)).scalar_one())

        assert ledger.balance("user-1") == 5
