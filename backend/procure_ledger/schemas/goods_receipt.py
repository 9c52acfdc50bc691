"""Pydantic schemas for goods receipt endpoints."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from procure_ledger.models.goods_receipt import ItemCondition


# ─── Requests ───

class ReceiptItemIn(BaseModel):
    po_line_item_id: uuid.UUID
    received_quantity: Decimal = Field(ge=0)
    accepted_quantity: Decimal = Field(ge=0)
    rejected_quantity: Decimal = Field(default=Decimal("0"), ge=0)
    condition: ItemCondition = ItemCondition.GOOD
    condition_notes: str | None = None
    has_issues: bool = False
    issues: list[str] = []


class GoodsReceiptCreate(BaseModel):
    po_id: uuid.UUID
    inspection_date: datetime
    inspection_type: str = "DELIVERY_SITE"
    inspection_location: str | None = None
    project_id: str | None = None
    notes: str | None = None
    items: list[ReceiptItemIn] = Field(min_length=1)


class ApprovePaymentIn(BaseModel):
    bank_account_id: uuid.UUID


class SendToAccountingIn(BaseModel):
    accounting_user_id: uuid.UUID
    accounting_user_name: str


# ─── Responses ───

class GRLineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    po_line_item_id: uuid.UUID
    line_number: int
    description: str
    ordered_quantity: Decimal
    received_quantity: Decimal
    accepted_quantity: Decimal
    rejected_quantity: Decimal
    unit: str | None
    condition: str
    has_issues: bool


class GoodsReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    gr_number: str
    po_id: uuid.UUID
    vendor_id: uuid.UUID
    status: str
    overall_condition: str
    has_issues: bool
    inspection_date: datetime
    inspected_by_name: str | None
    completed_at: datetime | None
    approved_for_payment: bool
    payment_approved_at: datetime | None
    payment_id: uuid.UUID | None
    bill_claim_state: str
    bill_id: uuid.UUID | None
    created_at: datetime
    line_items: list[GRLineItemOut] = []


class GoodsReceiptCreated(BaseModel):
    id: uuid.UUID


class TaskCreated(BaseModel):
    task_id: uuid.UUID


class GoodsReceiptSummaryOut(BaseModel):
    """Receipt header without its items, for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    gr_number: str
    po_id: uuid.UUID
    status: str
    overall_condition: str
    has_issues: bool
    inspection_date: datetime
    completed_at: datetime | None
    sent_to_accounting_at: datetime | None
    accounting_assignee_name: str | None
    approved_for_payment: bool
    bill_claim_state: str
    bill_id: uuid.UUID | None
    created_at: datetime


class PendingBillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gr: GoodsReceiptSummaryOut
    vendor_name: str
    po_total_amount: Decimal
    currency: str
