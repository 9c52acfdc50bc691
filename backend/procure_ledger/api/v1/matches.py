"""Three-way match endpoints: run, read, approve, reject."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from procure_ledger.core.deps import get_service_context
from procure_ledger.rules.match_engine import load_match, perform_three_way_match
from procure_ledger.schemas.match import MatchApproveIn, MatchCreate, MatchRejectIn, ThreeWayMatchOut
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.match_approval import approve_match, reject_match

router = APIRouter()

Context = Annotated[ServiceContext, Depends(get_service_context)]


async def _match_out(ctx: ServiceContext, match_id: uuid.UUID) -> ThreeWayMatchOut:
    match = await load_match(ctx.db, match_id)
    if match is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Three-way match not found.")
    return ThreeWayMatchOut.model_validate(match)


@router.post(
    "",
    response_model=ThreeWayMatchOut,
    status_code=status.HTTP_201_CREATED,
    summary="Reconcile a purchase order, goods receipt and vendor bill",
)
async def run_match(body: MatchCreate, ctx: Context):
    match = await perform_three_way_match(
        ctx, body.purchase_order_id, body.goods_receipt_id, body.vendor_bill_id, body.match_type
    )
    return await _match_out(ctx, match.id)


@router.get("/{match_id}", response_model=ThreeWayMatchOut, summary="Get a match with lines and discrepancies")
async def get_match(match_id: uuid.UUID, ctx: Context):
    return await _match_out(ctx, match_id)


@router.post("/{match_id}/approve", response_model=ThreeWayMatchOut, summary="Approve a match and post its bill")
async def approve(match_id: uuid.UUID, body: MatchApproveIn, ctx: Context):
    await approve_match(ctx, match_id, body.comments)
    return await _match_out(ctx, match_id)


@router.post("/{match_id}/reject", response_model=ThreeWayMatchOut, summary="Reject a match")
async def reject(match_id: uuid.UUID, body: MatchRejectIn, ctx: Context):
    await reject_match(ctx, match_id, body.reason)
    return await _match_out(ctx, match_id)
