import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_ledger.db.base import Base, TimestampMixin, UUIDMixin


class GoodsReceiptStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ISSUES_FOUND = "ISSUES_FOUND"


class OverallCondition(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    CONDITIONALLY_ACCEPTED = "CONDITIONALLY_ACCEPTED"
    REJECTED = "REJECTED"


class ItemCondition(str, enum.Enum):
    GOOD = "GOOD"
    DAMAGED = "DAMAGED"
    DEFECTIVE = "DEFECTIVE"
    INCOMPLETE = "INCOMPLETE"


class BillClaimState(str, enum.Enum):
    UNSET = "UNSET"
    CLAIMED = "CLAIMED"
    SET = "SET"


@dataclass(frozen=True)
class BillClaim:
    """Bill reference on a receipt: UNSET, CLAIMED (creation in flight) or SET(bill_id)."""

    state: BillClaimState
    bill_id: uuid.UUID | None = None

    @property
    def is_unset(self) -> bool:
        return self.state is BillClaimState.UNSET

    @property
    def is_claimed(self) -> bool:
        return self.state is BillClaimState.CLAIMED

    @property
    def is_set(self) -> bool:
        return self.state is BillClaimState.SET


class GoodsReceipt(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "goods_receipts"
    __table_args__ = (
        CheckConstraint(
            "(bill_claim_state = 'SET' AND bill_id IS NOT NULL)"
            " OR (bill_claim_state <> 'SET' AND bill_id IS NULL)",
            name="ck_goods_receipts_bill_claim",
        ),
    )

    gr_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), nullable=False, index=True
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendors.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=GoodsReceiptStatus.IN_PROGRESS.value, index=True
    )
    overall_condition: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OverallCondition.ACCEPTED.value
    )
    has_issues: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    issues_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Inspection
    inspection_type: Mapped[str] = mapped_column(String(30), nullable=False, default="DELIVERY_SITE")
    inspection_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    inspection_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    inspected_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    inspected_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Payment approval (flips once)
    approved_for_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_approved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    payment_approved_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Bill claim
    bill_claim_state: Mapped[str] = mapped_column(
        String(10), nullable=False, default=BillClaimState.UNSET.value
    )
    bill_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Accounting hand-off
    sent_to_accounting_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accounting_assignee_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    accounting_assignee_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sent_to_accounting_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    sent_to_accounting_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    project_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    line_items: Mapped[list["GRLineItem"]] = relationship(
        "GRLineItem", back_populates="gr", order_by="GRLineItem.line_number"
    )

    @property
    def bill_claim(self) -> BillClaim:
        return BillClaim(BillClaimState(self.bill_claim_state), self.bill_id)


class GRLineItem(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "gr_line_items"

    gr_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    po_line_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("po_line_items.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    ordered_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    accepted_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    rejected_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    condition: Mapped[str] = mapped_column(String(20), nullable=False, default=ItemCondition.GOOD.value)
    condition_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    has_issues: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    issues: Mapped[list | None] = mapped_column(JSON, nullable=True)

    gr: Mapped["GoodsReceipt"] = relationship("GoodsReceipt", back_populates="line_items")
