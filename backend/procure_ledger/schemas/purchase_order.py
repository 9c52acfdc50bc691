"""Pydantic schemas for purchase order endpoints."""
import uuid

from pydantic import BaseModel


class AdvancePaymentIn(BaseModel):
    bank_account_id: uuid.UUID
