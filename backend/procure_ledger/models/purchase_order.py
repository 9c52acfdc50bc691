import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_ledger.db.base import Base, TimestampMixin, UUIDMixin


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"


class PurchaseOrder(Base, UUIDMixin, TimestampMixin):
    """Commitment to a vendor. Created upstream; read-only to the matching core."""

    __tablename__ = "purchase_orders"

    po_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendors.id"), nullable=False, index=True
    )
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="APPROVED"
    )  # DRAFT, APPROVED, PARTIALLY_DELIVERED, DELIVERED, CLOSED, CANCELLED
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    subtotal: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    cgst: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    sgst: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    igst: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    total_tax: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    grand_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    # Advance payment terms; advance_payment_id is set once the advance is paid
    advance_payment_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    advance_percentage: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    advance_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    advance_payment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    advance_payment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_progress: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=0)
    project_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    line_items: Mapped[list["POLineItem"]] = relationship(
        "POLineItem", back_populates="po", order_by="POLineItem.line_number"
    )

    @property
    def is_interstate(self) -> bool:
        return Decimal(self.igst or 0) > 0


class POLineItem(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "po_line_items"

    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=0)  # percent
    quantity_delivered: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    quantity_accepted: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    quantity_rejected: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    invoiced_qty: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=0)
    delivery_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.PENDING.value
    )

    po: Mapped["PurchaseOrder"] = relationship("PurchaseOrder", back_populates="line_items")
