"""Pydantic schemas for three-way match results."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from procure_ledger.models.matching import MatchType


class MatchCreate(BaseModel):
    purchase_order_id: uuid.UUID
    goods_receipt_id: uuid.UUID
    vendor_bill_id: uuid.UUID
    match_type: MatchType = MatchType.MANUAL


class MatchApproveIn(BaseModel):
    comments: str | None = None


class MatchRejectIn(BaseModel):
    reason: str = Field(min_length=1)


class MatchLineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    line_number: int
    description: str
    po_line_item_id: uuid.UUID
    gr_line_item_id: uuid.UUID
    bill_line_item_id: uuid.UUID | None
    ordered_quantity: Decimal
    received_quantity: Decimal
    accepted_quantity: Decimal
    invoiced_quantity: Decimal
    quantity_variance: Decimal
    quantity_variance_percentage: Decimal
    po_unit_price: Decimal
    invoice_unit_price: Decimal
    price_variance: Decimal
    price_variance_percentage: Decimal
    gr_line_total: Decimal
    invoice_line_total: Decimal
    amount_variance: Decimal
    amount_variance_percentage: Decimal
    line_status: str  # MATCHED, VARIANCE_WITHIN_TOLERANCE, VARIANCE_EXCEEDS_TOLERANCE
    within_tolerance: bool
    discrepancy_types: list[str] = []


class MatchDiscrepancyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    match_line_item_id: uuid.UUID | None
    discrepancy_type: str
    severity: str
    description: str
    field_name: str
    expected_value: str | None
    actual_value: str | None
    variance: Decimal | None
    variance_percentage: Decimal | None
    financial_impact: Decimal
    requires_approval: bool
    resolved: bool


class ThreeWayMatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    match_number: str
    purchase_order_id: uuid.UUID
    goods_receipt_id: uuid.UUID
    vendor_bill_id: uuid.UUID
    vendor_name: str | None
    po_number: str
    gr_number: str
    vendor_bill_number: str
    status: str
    overall_match_percentage: Decimal
    po_amount: Decimal
    gr_amount: Decimal
    invoice_amount: Decimal
    variance: Decimal
    variance_percentage: Decimal
    tax_variance: Decimal
    total_lines: int
    matched_lines: int
    unmatched_lines: int
    discrepancy_count: int
    critical_discrepancy_count: int
    within_tolerance: bool
    requires_approval: bool
    approval_status: str
    approved_by_name: str | None
    approved_at: datetime | None
    rejected_by_name: str | None
    rejection_reason: str | None
    posted_bill_id: uuid.UUID | None
    match_type: str
    matched_at: datetime | None
    created_at: datetime
    line_items: list[MatchLineItemOut] = []
    discrepancies: list[MatchDiscrepancyOut] = []
