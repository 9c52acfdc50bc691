"""Vendor bill endpoints."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends

from procure_ledger.core.deps import get_service_context
from procure_ledger.schemas.transaction import TransactionOut
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.transactions import load_transaction, post_bill

router = APIRouter()


@router.get("/{bill_id}", response_model=TransactionOut, summary="Get a bill with its ledger entries")
async def get_bill(bill_id: uuid.UUID, ctx: Annotated[ServiceContext, Depends(get_service_context)]):
    return TransactionOut.model_validate(await load_transaction(ctx.db, bill_id))


@router.post("/{bill_id}/post", response_model=TransactionOut, summary="Post a draft bill to the ledger")
async def post(bill_id: uuid.UUID, ctx: Annotated[ServiceContext, Depends(get_service_context)]):
    await post_bill(ctx, bill_id)
    return TransactionOut.model_validate(await load_transaction(ctx.db, bill_id))
