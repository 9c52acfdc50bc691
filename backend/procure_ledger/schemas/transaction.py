"""Pydantic schemas for bills and their ledger entries."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_number: int
    account_code: str | None
    account_name: str | None
    debit: Decimal
    credit: Decimal
    description: str | None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_type: str
    transaction_number: str
    status: str
    transaction_date: datetime
    due_date: datetime | None
    currency: str
    entity_name: str | None
    subtotal: Decimal
    gst_type: str | None
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    payment_status: str | None
    purchase_order_id: uuid.UUID | None
    goods_receipt_id: uuid.UUID | None
    posted_at: datetime | None
    entries: list[LedgerEntryOut] = []
