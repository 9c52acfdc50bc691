"""Goods receipt endpoints: inspection, completion, bill creation, payment approval."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status

from procure_ledger.core.deps import get_service_context
from procure_ledger.schemas.goods_receipt import (
    ApprovePaymentIn,
    GoodsReceiptCreate,
    GoodsReceiptCreated,
    GoodsReceiptOut,
    PendingBillOut,
    SendToAccountingIn,
    TaskCreated,
)
from procure_ledger.schemas.transaction import TransactionOut
from procure_ledger.services import accounting_integration, goods_receipts
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.transactions import load_transaction

router = APIRouter()

Context = Annotated[ServiceContext, Depends(get_service_context)]


async def _receipt_out(ctx: ServiceContext, gr_id: uuid.UUID) -> GoodsReceiptOut:
    gr = await goods_receipts.get_goods_receipt(ctx.db, gr_id)
    return GoodsReceiptOut.model_validate(gr)


# ─── POST /goods-receipts ───

@router.post(
    "",
    response_model=GoodsReceiptCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Record a goods receipt inspection against a purchase order",
)
async def create_goods_receipt(body: GoodsReceiptCreate, ctx: Context):
    data = goods_receipts.CreateGoodsReceiptInput(
        po_id=body.po_id,
        inspection_date=body.inspection_date,
        inspection_type=body.inspection_type,
        inspection_location=body.inspection_location,
        project_id=body.project_id,
        notes=body.notes,
        items=[goods_receipts.ReceiptItemInput(**item.model_dump()) for item in body.items],
    )
    gr_id = await goods_receipts.create_goods_receipt(ctx, data)
    return GoodsReceiptCreated(id=gr_id)


# ─── GET /goods-receipts/pending-billing ───

@router.get(
    "/pending-billing",
    response_model=list[PendingBillOut],
    summary="Completed receipts sent to accounting that still need a vendor bill",
)
async def list_pending_billing(ctx: Context):
    pending = await accounting_integration.list_goods_receipts_pending_billing(ctx.db)
    return [PendingBillOut.model_validate(item) for item in pending]


# ─── GET /goods-receipts/{gr_id} ───

@router.get("/{gr_id}", response_model=GoodsReceiptOut, summary="Get a goods receipt with its items")
async def get_goods_receipt(gr_id: uuid.UUID, ctx: Context):
    return await _receipt_out(ctx, gr_id)


# ─── POST /goods-receipts/{gr_id}/complete ───

@router.post("/{gr_id}/complete", response_model=GoodsReceiptOut, summary="Complete an inspection")
async def complete_goods_receipt(gr_id: uuid.UUID, ctx: Context):
    await goods_receipts.complete_goods_receipt(ctx, gr_id)
    return await _receipt_out(ctx, gr_id)


# ─── POST /goods-receipts/{gr_id}/bill ───

@router.post(
    "/{gr_id}/bill",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create the vendor bill for a completed goods receipt",
)
async def create_bill(gr_id: uuid.UUID, ctx: Context):
    bill = await accounting_integration.create_bill_from_goods_receipt(ctx, gr_id)
    return TransactionOut.model_validate(await load_transaction(ctx.db, bill.id))


# ─── POST /goods-receipts/{gr_id}/send-to-accounting ───

@router.post(
    "/{gr_id}/send-to-accounting",
    response_model=TaskCreated,
    summary="Hand a completed goods receipt to an accountant",
)
async def send_to_accounting(gr_id: uuid.UUID, body: SendToAccountingIn, ctx: Context):
    task_id = await accounting_integration.send_goods_receipt_to_accounting(
        ctx, gr_id, body.accounting_user_id, body.accounting_user_name
    )
    return TaskCreated(task_id=task_id)


# ─── POST /goods-receipts/{gr_id}/approve-payment ───

@router.post(
    "/{gr_id}/approve-payment",
    response_model=GoodsReceiptOut,
    summary="Approve a completed goods receipt for payment",
)
async def approve_payment(gr_id: uuid.UUID, body: ApprovePaymentIn, ctx: Context):
    await goods_receipts.approve_goods_receipt_for_payment(ctx, gr_id, body.bank_account_id)
    return await _receipt_out(ctx, gr_id)
