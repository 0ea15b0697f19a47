# Overview: Business-rule error taxonomy shared by the ledger services.

"""
Ledger errors.

Every business-rule violation is raised before commit; the enclosing unit
of work is rolled back by run_with_retry and nothing is retried. Each class
carries the HTTP status the API surfaces it with.
"""


class LedgerError(Exception):
    """Base class for ledger business-rule violations."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class NotFoundError(LedgerError):
    """A referenced product, person, transaction or payment does not exist."""
    status_code = 404


class InsufficientStockError(LedgerError):
    """Requested quantity exceeds stock on hand for a tracked product."""
    status_code = 409


class OverAllocationError(LedgerError):
    """Manual allocations add up to more than the payment amount."""
    status_code = 400


class InvalidStateError(LedgerError):
    """Status transition not permitted from the current state."""
    status_code = 409


class AlreadyRefundedError(InvalidStateError):
    pass


class ValidationError(LedgerError):
    """400-level input problem."""
    status_code = 400


class AmbiguousPersonError(LedgerError):
    """Name/phone lookup matched more than one person; caller must pick one by id."""
    status_code = 409
