"""Purchase order endpoints: receipts against an order and its advance payment."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status

from procure_ledger.core.deps import get_service_context
from procure_ledger.schemas.goods_receipt import GoodsReceiptSummaryOut
from procure_ledger.schemas.purchase_order import AdvancePaymentIn
from procure_ledger.schemas.transaction import TransactionOut
from procure_ledger.services import goods_receipts, payments
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.transactions import load_transaction

router = APIRouter()

Context = Annotated[ServiceContext, Depends(get_service_context)]


@router.get(
    "/{po_id}/goods-receipts",
    response_model=list[GoodsReceiptSummaryOut],
    summary="List goods receipts recorded against a purchase order, newest first",
)
async def list_goods_receipts(po_id: uuid.UUID, ctx: Context):
    receipts = await goods_receipts.list_goods_receipts_for_po(ctx.db, po_id)
    return [GoodsReceiptSummaryOut.model_validate(gr) for gr in receipts]


@router.post(
    "/{po_id}/advance-payment",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Pay the advance a purchase order requires",
)
async def create_advance_payment(po_id: uuid.UUID, body: AdvancePaymentIn, ctx: Context):
    payment = await payments.create_advance_payment_from_po(ctx, po_id, body.bank_account_id)
    return TransactionOut.model_validate(await load_transaction(ctx.db, payment.id))
