"""
Credit ledger and skip-trace consent.
"""
from src.codeleads.credits.consent import ConsentStore
from src.codeleads.credits.ledger import CreditLedger, refund_key

__all__ = ["ConsentStore", "CreditLedger", "refund_key"]
