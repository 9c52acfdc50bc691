import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_ledger.db.base import Base, TimestampMixin, UUIDMixin


class TransactionType(str, enum.Enum):
    CUSTOMER_INVOICE = "CUSTOMER_INVOICE"
    CUSTOMER_PAYMENT = "CUSTOMER_PAYMENT"
    VENDOR_BILL = "VENDOR_BILL"
    VENDOR_PAYMENT = "VENDOR_PAYMENT"


class TransactionStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    PAID = "PAID"
    VOID = "VOID"


class PaymentStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class GSTType(str, enum.Enum):
    CGST_SGST = "CGST_SGST"
    IGST = "IGST"


class FinancialTransaction(Base, UUIDMixin, TimestampMixin):
    """Bill, invoice or payment. Any row with ledger entries must balance."""

    __tablename__ = "transactions"

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    transaction_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TransactionStatus.DRAFT.value)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    # Counterparty (vendor or customer)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    entity_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Bill/invoice amounts
    subtotal: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    gst_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cgst_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    sgst_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    igst_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    tds_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    outstanding_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    payment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Payment fields
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    bank_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=True
    )
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Procurement references
    purchase_order_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), nullable=True, index=True
    )
    goods_receipt_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("goods_receipts.id"), nullable=True, index=True
    )
    vendor_invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    gl_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    line_items: Mapped[list["BillLineItem"]] = relationship(
        "BillLineItem", back_populates="transaction", order_by="BillLineItem.line_number"
    )
    entries: Mapped[list["LedgerEntry"]] = relationship(
        "LedgerEntry", back_populates="transaction", order_by="LedgerEntry.line_number"
    )


class BillLineItem(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "bill_line_items"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=0)
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    po_line_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("po_line_items.id"), nullable=True
    )

    transaction: Mapped["FinancialTransaction"] = relationship(
        "FinancialTransaction", back_populates="line_items"
    )


class LedgerEntry(Base, UUIDMixin, TimestampMixin):
    """One debit or credit line of a transaction."""

    __tablename__ = "ledger_entries"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("accounts.id"), nullable=False, index=True)
    account_code: Mapped[str | None] = mapped_column(String(20), nullable=True)  # denormalized
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    debit: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    credit: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    cost_centre_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    transaction: Mapped["FinancialTransaction"] = relationship(
        "FinancialTransaction", back_populates="entries"
    )


class PaymentAllocation(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "payment_allocations"

    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bill_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False, index=True
    )
    bill_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    original_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
