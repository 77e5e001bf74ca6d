"""
Error Taxonomy

Exceptions raised by the ingestion pipeline, the credit ledger and the
enrichment manager. API handlers map these onto HTTP status codes.
"""
from typing import Any, Dict, Optional


class CodeLeadsError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CodeLeadsError):
    """Malformed spreadsheet or unusable request input."""


class NotFoundError(CodeLeadsError):
    """Referenced job, run or property does not exist."""


class InsufficientCreditsError(CodeLeadsError):
    """Charge would take the user's balance below zero."""

    def __init__(self, user_id: str, requested: int, balance: int):
        super().__init__(
            f"Insufficient credits: requested {requested}, balance {balance}",
            {"user_id": user_id, "requested": requested, "balance": balance},
        )
        self.user_id = user_id
        self.requested = requested
        self.balance = balance


class ConsentRequiredError(CodeLeadsError):
    """User has not accepted the skip-trace terms."""

    def __init__(self, user_id: str):
        super().__init__("Skip-trace consent is required before enrichment", {"user_id": user_id})
        self.user_id = user_id


class RunLimitExceededError(CodeLeadsError):
    """Too many enrichment runs are already active for the user."""

    def __init__(self, user_id: str, active_runs: int, limit: int):
        super().__init__(
            f"{active_runs} enrichment runs already active (limit {limit})",
            {"user_id": user_id, "active_runs": active_runs, "limit": limit},
        )


class LedgerContentionError(CodeLeadsError):
    """Compare-and-swap on the credit account kept losing to other writers."""


class AppendOnlyViolationError(CodeLeadsError):
    """Attempt to update or delete a row of an append-only table."""


class InvalidTransitionError(CodeLeadsError):
    """Ingestion job status change that is not strictly forward."""


class RowError(CodeLeadsError):
    """Single spreadsheet row could not be normalized. Never fatal on its own."""

    def __init__(self, row_num: int, message: str):
        super().__init__(f"Row {row_num}: {message}", {"row_num": row_num})
        self.row_num = row_num


class FatalJobError(CodeLeadsError):
    """Ingestion stage cannot continue; the job terminates as FAILED."""


class VendorError(CodeLeadsError):
    """Skip-trace vendor call failed for a reason other than a timeout."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, {"status_code": status_code})
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class VendorTimeoutError(CodeLeadsError):
    """Skip-trace vendor call did not answer within the per-call timeout."""


class VendorNoMatch(CodeLeadsError):
    """Vendor answered but holds no contacts for the address. A result, not a failure."""
