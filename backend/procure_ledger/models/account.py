import enum

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from procure_ledger.db.base import Base, TimestampMixin, UUIDMixin


class AccountType(str, enum.Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class SystemAccountRole(str, enum.Enum):
    """Accounts the GL generators post to without the caller naming them."""

    ACCOUNTS_RECEIVABLE = "ACCOUNTS_RECEIVABLE"
    ACCOUNTS_PAYABLE = "ACCOUNTS_PAYABLE"
    REVENUE = "REVENUE"
    EXPENSES = "EXPENSES"
    CGST_PAYABLE = "CGST_PAYABLE"
    SGST_PAYABLE = "SGST_PAYABLE"
    IGST_PAYABLE = "IGST_PAYABLE"
    CGST_INPUT = "CGST_INPUT"
    SGST_INPUT = "SGST_INPUT"
    IGST_INPUT = "IGST_INPUT"
    TDS_PAYABLE = "TDS_PAYABLE"


class Account(Base, UUIDMixin, TimestampMixin):
    """Chart of accounts row."""

    __tablename__ = "accounts"

    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)  # AccountType
    system_role: Mapped[str | None] = mapped_column(
        String(50), nullable=True, unique=True
    )  # SystemAccountRole
    is_bank_account: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
