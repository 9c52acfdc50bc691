import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_ledger.db.base import Base, TimestampMixin, UUIDMixin


class MatchStatus(str, enum.Enum):
    MATCHED = "MATCHED"
    PARTIALLY_MATCHED = "PARTIALLY_MATCHED"
    NOT_MATCHED = "NOT_MATCHED"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED_WITH_VARIANCE = "APPROVED_WITH_VARIANCE"
    REJECTED = "REJECTED"


class ApprovalStatus(str, enum.Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LineStatus(str, enum.Enum):
    MATCHED = "MATCHED"
    VARIANCE_WITHIN_TOLERANCE = "VARIANCE_WITHIN_TOLERANCE"
    VARIANCE_EXCEEDS_TOLERANCE = "VARIANCE_EXCEEDS_TOLERANCE"


class DiscrepancyType(str, enum.Enum):
    QUANTITY_MISMATCH = "QUANTITY_MISMATCH"
    PRICE_MISMATCH = "PRICE_MISMATCH"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    ITEM_NOT_ORDERED = "ITEM_NOT_ORDERED"
    ITEM_NOT_RECEIVED = "ITEM_NOT_RECEIVED"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class MatchType(str, enum.Enum):
    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"
    SYSTEM_ASSISTED = "SYSTEM_ASSISTED"


class ToleranceConfig(Base, UUIDMixin, TimestampMixin):
    """Matching policy. Read-only while a match runs."""

    __tablename__ = "tolerance_configs"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity_tolerance_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=5)
    price_tolerance_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=2)
    amount_tolerance_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=5)
    amount_tolerance_absolute: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    allow_quantity_overage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_quantity_shortage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_price_increase: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_price_decrease: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    comparison_mode: Mapped[str] = mapped_column(
        String(30), nullable=False, default="PERCENTAGE"
    )  # ABSOLUTE, PERCENTAGE, WHICHEVER_IS_LOWER
    auto_approve_if_within_tolerance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_approve_max_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ThreeWayMatch(Base, UUIDMixin, TimestampMixin):
    """One reconciliation run of PO, goods receipt and vendor bill."""

    __tablename__ = "three_way_matches"

    match_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), nullable=False, index=True
    )
    goods_receipt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("goods_receipts.id"), nullable=False, index=True
    )
    vendor_bill_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False, index=True
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    po_number: Mapped[str] = mapped_column(String(100), nullable=False)
    gr_number: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor_bill_number: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor_invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    overall_match_percentage: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False, default=0)

    # Financial summary
    po_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    gr_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    invoice_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    variance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    variance_percentage: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=0)
    po_tax_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    invoice_tax_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    tax_variance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)

    total_lines: Mapped[int] = mapped_column(nullable=False, default=0)
    matched_lines: Mapped[int] = mapped_column(nullable=False, default=0)
    unmatched_lines: Mapped[int] = mapped_column(nullable=False, default=0)
    discrepancy_count: Mapped[int] = mapped_column(nullable=False, default=0)
    critical_discrepancy_count: Mapped[int] = mapped_column(nullable=False, default=0)
    within_tolerance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tolerance_config_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tolerance_configs.id"), nullable=True
    )

    # Approval
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approval_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApprovalStatus.NOT_REQUIRED.value
    )
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    approved_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    rejected_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    posted_bill_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    match_type: Mapped[str] = mapped_column(String(20), nullable=False, default=MatchType.AUTOMATIC.value)
    matched_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    matched_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    line_items: Mapped[list["MatchLineItem"]] = relationship(
        "MatchLineItem", back_populates="match", order_by="MatchLineItem.line_number"
    )
    discrepancies: Mapped[list["MatchDiscrepancy"]] = relationship(
        "MatchDiscrepancy", back_populates="match"
    )


class MatchLineItem(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "match_line_items"

    match_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("three_way_matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    po_line_item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("po_line_items.id"), nullable=False)
    gr_line_item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("gr_line_items.id"), nullable=False)
    bill_line_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bill_line_items.id"), nullable=True
    )

    ordered_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    accepted_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    invoiced_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    quantity_matched: Mapped[bool] = mapped_column(Boolean, nullable=False)
    quantity_variance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    quantity_variance_percentage: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)

    po_unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    invoice_unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    price_matched: Mapped[bool] = mapped_column(Boolean, nullable=False)
    price_variance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    price_variance_percentage: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)

    po_line_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    gr_line_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    invoice_line_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    amount_matched: Mapped[bool] = mapped_column(Boolean, nullable=False)
    amount_variance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    amount_variance_percentage: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)

    line_status: Mapped[str] = mapped_column(String(40), nullable=False)
    within_tolerance: Mapped[bool] = mapped_column(Boolean, nullable=False)
    discrepancy_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    match: Mapped["ThreeWayMatch"] = relationship("ThreeWayMatch", back_populates="line_items")


class MatchDiscrepancy(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "match_discrepancies"

    match_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("three_way_matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    match_line_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("match_line_items.id"), nullable=True
    )
    discrepancy_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    expected_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actual_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    variance: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    variance_percentage: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    financial_impact: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    match: Mapped["ThreeWayMatch"] = relationship("ThreeWayMatch", back_populates="discrepancies")
    line_item: Mapped["MatchLineItem | None"] = relationship("MatchLineItem")
