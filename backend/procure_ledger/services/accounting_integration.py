"""Procurement → accounting bridge.

Completed goods receipt → vendor bill, and the hand-off of a receipt to the
accounting team. Bill creation is claim-then-create: the receipt's bill claim
moves UNSET → CLAIMED in its own commit, then the bill, its lines, its ledger
entries, the receipt's SET(bill_id) and the PO items' invoiced quantities are
committed together. Any failure after the claim releases it so the bill can
be retried.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from procure_ledger.core.auth import Capability
from procure_ledger.core.errors import (
    AccountingIntegrationError,
    ConflictError,
    NotFoundError,
    ProcurementError,
    ValidationError,
)
from procure_ledger.core.money import HUNDRED, ZERO, round_money, to_decimal
from procure_ledger.db.base import utcnow
from procure_ledger.models.goods_receipt import BillClaimState, GoodsReceipt, GoodsReceiptStatus, GRLineItem
from procure_ledger.models.matching import MatchType
from procure_ledger.models.purchase_order import PurchaseOrder
from procure_ledger.models.task import TaskCategory, TaskType
from procure_ledger.models.transaction import (
    BillLineItem,
    FinancialTransaction,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from procure_ledger.models.vendor import Vendor
from procure_ledger.services.audit import AuditEvent, record_audit_safely
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.gl_entries import BillGLInput, generate_bill_gl_entries, split_gst
from procure_ledger.services.saga import CompensatingSaga
from procure_ledger.services.sequences import generate_document_number
from procure_ledger.services.tasks import NewTask, complete_entity_task_safely, create_task_safely
from procure_ledger.services.transactions import stage_transaction

logger = logging.getLogger(__name__)

GOODS_RECEIPT_ENTITY = "GOODS_RECEIPT"
UNKNOWN_VENDOR = "Unknown vendor"


# ─── Bill claim ───

async def claim_bill_creation(db, gr_id: uuid.UUID) -> None:
    """UNSET → CLAIMED, atomically. Anything else is a conflict."""
    result = await db.execute(
        update(GoodsReceipt)
        .where(GoodsReceipt.id == gr_id, GoodsReceipt.bill_claim_state == BillClaimState.UNSET.value)
        .values(bill_claim_state=BillClaimState.CLAIMED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = (
            await db.execute(
                select(GoodsReceipt.bill_claim_state, GoodsReceipt.bill_id).where(GoodsReceipt.id == gr_id)
            )
        ).first()
        if current is None:
            raise NotFoundError(f"Goods receipt {gr_id} not found", code="GR_NOT_FOUND")
        raise ConflictError(
            "Bill already exists or is being created for this goods receipt",
            code="BILL_EXISTS",
            details={"claim_state": current.bill_claim_state},
            existing_id=current.bill_id,
        )
    await db.commit()


async def release_bill_claim(db, gr_id: uuid.UUID) -> None:
    """CLAIMED → UNSET so a failed bill creation can be retried."""
    await db.rollback()
    await db.execute(
        update(GoodsReceipt)
        .where(GoodsReceipt.id == gr_id, GoodsReceipt.bill_claim_state == BillClaimState.CLAIMED.value)
        .values(bill_claim_state=BillClaimState.UNSET.value, bill_id=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Released bill claim on goods receipt %s", gr_id)


# ─── Bill creation ───

async def _persist_bill(ctx: ServiceContext, gr: GoodsReceipt) -> FinancialTransaction:
    db = ctx.db
    po = (
        await db.execute(
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.line_items))
            .where(PurchaseOrder.id == gr.po_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().first()
    if po is None:
        raise NotFoundError(f"Purchase order {gr.po_id} not found", code="PO_NOT_FOUND")
    vendor = await db.get(Vendor, po.vendor_id)
    if vendor is None:
        raise NotFoundError(f"Vendor {po.vendor_id} not found", code="VENDOR_NOT_FOUND")

    gr_items = (
        await db.execute(select(GRLineItem).where(GRLineItem.gr_id == gr.id).order_by(GRLineItem.line_number))
    ).scalars().all()
    po_items = {item.id: item for item in po.line_items}

    subtotal = ZERO
    total_gst = ZERO
    lines: list[BillLineItem] = []
    invoiced: list[tuple] = []
    for gr_item in gr_items:
        po_item = po_items.get(gr_item.po_line_item_id)
        if po_item is None:
            logger.warning("PO item not found for GR item %s", gr_item.id)
            continue
        accepted = to_decimal(gr_item.accepted_quantity)
        if accepted <= 0:
            continue
        unit_price = to_decimal(po_item.unit_price)
        gst_rate = to_decimal(po_item.gst_rate)
        amount = round_money(accepted * unit_price)
        gst = round_money(amount * gst_rate / HUNDRED)
        # header totals are the sum of the rounded lines
        subtotal += amount
        total_gst += gst
        lines.append(
            BillLineItem(
                line_number=len(lines) + 1,
                description=po_item.description,
                quantity=accepted,
                unit_price=unit_price,
                amount=amount,
                gst_rate=gst_rate,
                gst_amount=gst,
                total_amount=amount + gst,
                po_line_item_id=po_item.id,
            )
        )
        invoiced.append((po_item, accepted))

    if subtotal == 0:
        raise ValidationError(
            f"Cannot create bill: goods receipt {gr.gr_number} has no accepted items",
            code="NO_ACCEPTED_ITEMS",
        )
    tax = split_gst(total_gst, po.is_interstate)
    total = subtotal + tax.total

    number = await generate_document_number(db, "BILL")
    gl = await generate_bill_gl_entries(
        db,
        BillGLInput(
            transaction_number=number,
            subtotal=subtotal,
            tax=tax,
            currency=po.currency,
            description=f"Bill for goods receipt {gr.gr_number}",
            entity_id=po.vendor_id,
            project_id=po.project_id or gr.project_id,
        ),
    )
    if not gl.success:
        raise AccountingIntegrationError(
            "Failed to generate GL entries for bill",
            code="GL_GENERATION_FAILED",
            details={"errors": gl.errors},
        )

    now = utcnow()
    bill = FinancialTransaction(
        transaction_type=TransactionType.VENDOR_BILL.value,
        transaction_number=number,
        status=TransactionStatus.POSTED.value,
        transaction_date=now,
        posted_at=now,
        due_date=now + timedelta(days=ctx.settings.BILL_DUE_DAYS),
        currency=po.currency,
        entity_id=po.vendor_id,
        entity_name=vendor.name,
        subtotal=subtotal,
        gst_type=tax.gst_type.value,
        cgst_amount=tax.cgst,
        sgst_amount=tax.sgst,
        igst_amount=tax.igst,
        tax_amount=tax.total,
        total_amount=total,
        paid_amount=Decimal("0"),
        outstanding_amount=total,
        payment_status=PaymentStatus.UNPAID.value,
        purchase_order_id=po.id,
        goods_receipt_id=gr.id,
        project_id=po.project_id or gr.project_id,
        description=f"Bill for PO {po.po_number}",
        notes=f"Auto-generated from goods receipt {gr.gr_number}",
        created_by=ctx.auth.user_id,
    )

    try:
        stage_transaction(db, bill, gl.entries, lines)
        for po_item, accepted in invoiced:
            po_item.invoiced_qty = to_decimal(po_item.invoiced_qty) + accepted
        result = await db.execute(
            update(GoodsReceipt)
            .where(GoodsReceipt.id == gr.id, GoodsReceipt.bill_claim_state == BillClaimState.CLAIMED.value)
            .values(bill_claim_state=BillClaimState.SET.value, bill_id=bill.id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Lost the bill claim on goods receipt {gr.gr_number}", code="CLAIM_LOST")
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return bill


async def create_bill_from_goods_receipt(ctx: ServiceContext, gr_id: uuid.UUID) -> FinancialTransaction:
    """Create and post the vendor bill for a completed goods receipt.

    Raises ConflictError if a bill exists or is being created for the receipt.
    """
    ctx.auth.require_any(
        (Capability.MANAGE_ACCOUNTING, Capability.APPROVE_GR, Capability.MANAGE_PROCUREMENT),
        "create vendor bills",
    )
    db = ctx.db
    gr = await db.get(GoodsReceipt, gr_id)
    if gr is None:
        raise NotFoundError(f"Goods receipt {gr_id} not found", code="GR_NOT_FOUND")
    if gr.status != GoodsReceiptStatus.COMPLETED.value:
        raise ValidationError(
            "Goods receipt must be completed before creating bill",
            code="INVALID_STATUS",
            details={"status": gr.status},
        )

    # rollbacks expire ``gr``; compensation must not touch its attributes
    receipt_id = gr.id
    saga = CompensatingSaga(f"create-bill:{gr.gr_number}")
    try:
        await saga.execute(
            "claim",
            lambda: claim_bill_creation(db, receipt_id),
            compensate=lambda _: release_bill_claim(db, receipt_id),
            compensation_name="release bill claim",
        )
        bill = await saga.execute("persist bill", lambda: _persist_bill(ctx, gr))
    except ProcurementError:
        raise
    except Exception as exc:
        raise AccountingIntegrationError(
            "Failed to create bill from goods receipt", code="BILL_CREATION_FAILED", details=str(exc)
        ) from exc

    await db.refresh(gr)
    logger.info("Created bill %s from goods receipt %s", bill.transaction_number, gr.gr_number)

    await complete_entity_task_safely(
        ctx.tasks, GOODS_RECEIPT_ENTITY, gr.id, TaskCategory.GR_BILL_REQUIRED.value, ctx.auth.user_id
    )
    if gr.sent_to_accounting_by_id:
        await create_task_safely(
            ctx.tasks,
            NewTask(
                task_type=TaskType.INFORMATIONAL,
                category=TaskCategory.GR_BILL_CREATED.value,
                user_id=gr.sent_to_accounting_by_id,
                assigned_by=ctx.auth.user_id,
                assigned_by_name=ctx.auth.display_name,
                title=f"Bill Created for {gr.gr_number}",
                message=f"Vendor bill {bill.transaction_number} has been created for goods receipt {gr.gr_number}.",
                entity_type=GOODS_RECEIPT_ENTITY,
                entity_id=gr.id,
                link_url=f"/procurement/goods-receipts/{gr.id}",
            ),
        )
    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "BILL_CREATED",
            "TRANSACTION",
            bill.id,
            entity_name=bill.transaction_number,
            description=f"Created bill {bill.transaction_number} from goods receipt {gr.gr_number}",
            after={"total_amount": str(bill.total_amount), "status": bill.status},
            metadata={"goods_receipt_id": str(gr.id), "purchase_order_id": str(gr.po_id)},
        ),
    )

    if ctx.settings.AUTO_THREE_WAY_MATCH_ON_BILL:
        from procure_ledger.rules.match_engine import perform_three_way_match

        try:
            await perform_three_way_match(ctx, gr.po_id, gr.id, bill.id, MatchType.SYSTEM_ASSISTED)
        except Exception:
            logger.warning("Automatic 3-way match failed for bill %s", bill.transaction_number, exc_info=True)
    return bill


# ─── Hand-off to accounting ───

async def send_goods_receipt_to_accounting(
    ctx: ServiceContext,
    gr_id: uuid.UUID,
    accounting_user_id: uuid.UUID,
    accounting_user_name: str,
) -> uuid.UUID:
    """Assign a completed receipt to an accountant and create their GR_BILL_REQUIRED task.

    The task is the point of the operation: if it cannot be created the
    receipt's hand-off fields are reverted and the error propagates.
    """
    ctx.auth.require_any((Capability.MANAGE_PROCUREMENT, Capability.APPROVE_GR), "send goods receipts to accounting")
    db = ctx.db
    gr = await db.get(GoodsReceipt, gr_id)
    if gr is None:
        raise NotFoundError(f"Goods receipt {gr_id} not found")
    if gr.status != GoodsReceiptStatus.COMPLETED.value:
        raise ValidationError("Only completed goods receipts can be sent to accounting")

    gr.sent_to_accounting_at = utcnow()
    gr.accounting_assignee_id = accounting_user_id
    gr.accounting_assignee_name = accounting_user_name
    gr.sent_to_accounting_by_id = ctx.auth.user_id
    gr.sent_to_accounting_by_name = ctx.auth.display_name
    await db.commit()

    try:
        task_id = await ctx.tasks.create_task(
            NewTask(
                task_type=TaskType.ACTIONABLE,
                category=TaskCategory.GR_BILL_REQUIRED.value,
                user_id=accounting_user_id,
                assigned_by=ctx.auth.user_id,
                assigned_by_name=ctx.auth.display_name,
                title=f"Create Bill for {gr.gr_number}",
                message=f"Goods receipt {gr.gr_number} is completed and requires a vendor bill.",
                entity_type=GOODS_RECEIPT_ENTITY,
                entity_id=gr.id,
                link_url="/accounting/grn-bills",
                priority="HIGH",
                auto_completable=True,
            )
        )
    except Exception:
        logger.error("Failed to create GR_BILL_REQUIRED task, reverting hand-off of %s", gr.gr_number, exc_info=True)
        gr.sent_to_accounting_at = None
        gr.accounting_assignee_id = None
        gr.accounting_assignee_name = None
        gr.sent_to_accounting_by_id = None
        gr.sent_to_accounting_by_name = None
        await db.commit()
        raise

    logger.info("Sent goods receipt %s to accounting user %s", gr.gr_number, accounting_user_id)
    return task_id


# ─── Receipts waiting for a bill ───

@dataclass
class GoodsReceiptPendingBill:
    gr: GoodsReceipt
    vendor_name: str
    po_total_amount: Decimal
    currency: str


async def list_goods_receipts_pending_billing(db) -> list[GoodsReceiptPendingBill]:
    """Completed receipts handed to accounting that have no bill yet, oldest hand-off first.

    Receipts whose bill is being created (CLAIMED) are left out along with
    those that already have one.
    """
    stmt = (
        select(GoodsReceipt, PurchaseOrder)
        .outerjoin(PurchaseOrder, PurchaseOrder.id == GoodsReceipt.po_id)
        .where(
            GoodsReceipt.status == GoodsReceiptStatus.COMPLETED.value,
            GoodsReceipt.sent_to_accounting_at.is_not(None),
            GoodsReceipt.bill_claim_state == BillClaimState.UNSET.value,
            GoodsReceipt.deleted_at.is_(None),
        )
        .order_by(GoodsReceipt.sent_to_accounting_at, GoodsReceipt.gr_number)
    )
    pending = []
    for gr, po in (await db.execute(stmt)).all():
        if po is None:
            logger.warning("Purchase order %s not found for goods receipt %s", gr.po_id, gr.gr_number)
            pending.append(GoodsReceiptPendingBill(gr, UNKNOWN_VENDOR, ZERO, "INR"))
            continue
        pending.append(
            GoodsReceiptPendingBill(
                gr=gr,
                vendor_name=po.vendor_name or UNKNOWN_VENDOR,
                po_total_amount=to_decimal(po.grand_total),
                currency=po.currency,
            )
        )
    return pending
