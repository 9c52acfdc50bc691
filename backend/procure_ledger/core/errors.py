"""Error taxonomy for the procurement and ledger engine.

Primary-path failures raise one of these and abort the whole operation.
Tolerance breaches are never errors: they become discrepancies on the match.
"""
import uuid
from decimal import Decimal
from typing import Any


class ProcurementError(Exception):
    """Base class. ``code`` is a stable machine-readable identifier."""

    default_code = "PROCUREMENT_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def __str__(self) -> str:
        return self.message


class ValidationError(ProcurementError):
    """Missing or contradictory input. Nothing has been written."""

    default_code = "VALIDATION_ERROR"


class NotFoundError(ProcurementError):
    """A referenced order, receipt, bill or account does not exist."""

    default_code = "NOT_FOUND"


class ConflictError(ProcurementError):
    """The operation already happened (or is happening) elsewhere.

    ``existing_id`` points at the result that already exists, when there is one.
    """

    default_code = "CONFLICT"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: Any | None = None,
        existing_id: uuid.UUID | str | None = None,
    ):
        super().__init__(message, code, details)
        self.existing_id = existing_id


class ImbalancedLedgerError(ProcurementError):
    """Debits and credits differ by more than the currency epsilon."""

    default_code = "IMBALANCED_LEDGER"

    def __init__(self, total_debit: Decimal, total_credit: Decimal, errors: list[str] | None = None):
        difference = total_debit - total_credit
        super().__init__(
            f"Ledger entries are not balanced: debits {total_debit:.2f} != credits {total_credit:.2f} "
            f"(difference {difference:.2f})",
            details={"errors": errors or []},
        )
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.difference = difference


class PermissionDeniedError(ProcurementError):
    """The acting user lacks the capability for this operation."""

    default_code = "PERMISSION_DENIED"


class AccountingIntegrationError(ProcurementError):
    """Unexpected failure inside the procurement → accounting bridge."""

    default_code = "ACCOUNTING_INTEGRATION_FAILED"
