"""Goods receipt lifecycle: inspection, completion, payment approval.

IN_PROGRESS → COMPLETED (optionally via ISSUES_FOUND); approved_for_payment
flips once and only from COMPLETED. Completion and payment approval each do
their primary write first; tasks, automatic bill creation, payment creation
and audit entries follow as best-effort steps that are logged when they fail.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from procure_ledger.core.auth import Capability
from procure_ledger.core.errors import ConflictError, NotFoundError, ValidationError
from procure_ledger.core.money import to_decimal
from procure_ledger.db.base import utcnow
from procure_ledger.models.account import Account
from procure_ledger.models.goods_receipt import (
    BillClaimState,
    GoodsReceipt,
    GoodsReceiptStatus,
    GRLineItem,
    ItemCondition,
    OverallCondition,
)
from procure_ledger.models.purchase_order import DeliveryStatus, POLineItem, PurchaseOrder
from procure_ledger.models.task import TaskCategory, TaskType
from procure_ledger.services.accounting_integration import GOODS_RECEIPT_ENTITY, create_bill_from_goods_receipt
from procure_ledger.services.audit import AuditEvent, record_audit_safely
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.idempotency import generate_idempotency_key, with_idempotency
from procure_ledger.services.payments import create_payment_from_approved_receipt
from procure_ledger.services.sequences import generate_document_number
from procure_ledger.services.state_machine import goods_receipt_state_machine
from procure_ledger.services.tasks import NewTask, complete_entity_task_safely, create_task_safely

logger = logging.getLogger(__name__)


@dataclass
class ReceiptItemInput:
    po_line_item_id: uuid.UUID
    received_quantity: Decimal
    accepted_quantity: Decimal
    rejected_quantity: Decimal = Decimal("0")
    condition: ItemCondition = ItemCondition.GOOD
    condition_notes: str | None = None
    has_issues: bool = False
    issues: list[str] = field(default_factory=list)


@dataclass
class CreateGoodsReceiptInput:
    po_id: uuid.UUID
    inspection_date: datetime
    items: list[ReceiptItemInput]
    inspection_type: str = "DELIVERY_SITE"
    inspection_location: str | None = None
    project_id: str | None = None
    notes: str | None = None


def overall_condition(items: list[ReceiptItemInput]) -> OverallCondition:
    all_accepted = all(to_decimal(i.accepted_quantity) == to_decimal(i.received_quantity) for i in items)
    some_rejected = any(to_decimal(i.rejected_quantity) > 0 for i in items)
    has_issues = any(i.has_issues for i in items)

    condition = OverallCondition.ACCEPTED
    if some_rejected or has_issues:
        condition = OverallCondition.CONDITIONALLY_ACCEPTED
    if not all_accepted and all(to_decimal(i.accepted_quantity) == 0 for i in items):
        condition = OverallCondition.REJECTED
    return condition


def _validate_item(item: ReceiptItemInput, po_item: POLineItem | None, po_id: uuid.UUID) -> None:
    if po_item is None or po_item.po_id != po_id:
        raise ValidationError(
            f"Item {item.po_line_item_id} is not on purchase order {po_id}", code="UNKNOWN_PO_ITEM"
        )
    received = to_decimal(item.received_quantity)
    accepted = to_decimal(item.accepted_quantity)
    rejected = to_decimal(item.rejected_quantity)
    if received < 0 or accepted < 0 or rejected < 0:
        raise ValidationError(f'Quantities for "{po_item.description}" cannot be negative')

    remaining = to_decimal(po_item.quantity) - to_decimal(po_item.quantity_delivered)
    if received > remaining:
        raise ValidationError(
            f'Over-delivery not allowed: item "{po_item.description}" received {received} '
            f"but only {remaining} remaining",
            code="OVER_DELIVERY",
        )
    if accepted > received:
        raise ValidationError(
            f"Accepted quantity ({accepted}) cannot exceed received quantity ({received}) "
            f'for item "{po_item.description}"'
        )
    if rejected > received:
        raise ValidationError(
            f"Rejected quantity ({rejected}) cannot exceed received quantity ({received}) "
            f'for item "{po_item.description}"'
        )


def _delivery_status(delivered: Decimal, ordered: Decimal) -> DeliveryStatus:
    if delivered >= ordered:
        return DeliveryStatus.COMPLETE
    if delivered == 0:
        return DeliveryStatus.PENDING
    return DeliveryStatus.PARTIAL


# ─── Queries ───

async def get_goods_receipt(db, gr_id: uuid.UUID) -> GoodsReceipt:
    stmt = (
        select(GoodsReceipt)
        .options(selectinload(GoodsReceipt.line_items))
        .where(GoodsReceipt.id == gr_id, GoodsReceipt.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    gr = (await db.execute(stmt)).scalars().first()
    if gr is None:
        raise NotFoundError(f"Goods receipt {gr_id} not found")
    return gr


async def list_goods_receipts_for_po(db, po_id: uuid.UUID) -> list[GoodsReceipt]:
    stmt = (
        select(GoodsReceipt)
        .where(GoodsReceipt.po_id == po_id, GoodsReceipt.deleted_at.is_(None))
        .order_by(GoodsReceipt.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


# ─── Create ───

async def create_goods_receipt(ctx: ServiceContext, data: CreateGoodsReceiptInput) -> uuid.UUID:
    """Record an inspection against a PO. Retries with the same PO, user and day return the first receipt."""
    ctx.auth.require(Capability.INSPECT_GOODS, "create goods receipts")
    if not data.items:
        raise ValidationError("A goods receipt needs at least one item")

    key = generate_idempotency_key(
        "create-goods-receipt",
        data.po_id,
        f"{ctx.auth.user_id}-{data.inspection_date.date().isoformat()}",
    )
    return await with_idempotency(
        ctx.db,
        key,
        "create-goods-receipt",
        lambda: _create_goods_receipt(ctx, data),
        user_id=ctx.auth.user_id,
        metadata={"po_id": str(data.po_id)},
    )


async def _create_goods_receipt(ctx: ServiceContext, data: CreateGoodsReceiptInput) -> uuid.UUID:
    db = ctx.db
    gr_number = await generate_document_number(db, "GR")

    try:
        po = await db.get(PurchaseOrder, data.po_id)
        if po is None or po.deleted_at is not None:
            raise NotFoundError(f"Purchase order {data.po_id} not found")

        item_ids = [item.po_line_item_id for item in data.items]
        po_items = {
            row.id: row
            for row in (
                await db.execute(select(POLineItem).where(POLineItem.id.in_(item_ids)).with_for_update())
            ).scalars()
        }
        for item in data.items:
            _validate_item(item, po_items.get(item.po_line_item_id), po.id)

        condition = overall_condition(data.items)
        has_issues = any(item.has_issues for item in data.items)
        issues = [issue for item in data.items if item.has_issues for issue in item.issues]

        gr = GoodsReceipt(
            id=uuid.uuid4(),
            gr_number=gr_number,
            po_id=po.id,
            vendor_id=po.vendor_id,
            status=GoodsReceiptStatus.IN_PROGRESS.value,
            overall_condition=condition.value,
            has_issues=has_issues,
            issues_summary="; ".join(issues) if issues else None,
            inspection_type=data.inspection_type,
            inspection_location=data.inspection_location,
            inspection_date=data.inspection_date,
            inspected_by=ctx.auth.user_id,
            inspected_by_name=ctx.auth.display_name,
            bill_claim_state=BillClaimState.UNSET.value,
            project_id=data.project_id or po.project_id,
            notes=data.notes,
        )
        db.add(gr)

        for line_number, item in enumerate(data.items, start=1):
            po_item = po_items[item.po_line_item_id]
            received = to_decimal(item.received_quantity)
            accepted = to_decimal(item.accepted_quantity)
            rejected = to_decimal(item.rejected_quantity)
            db.add(
                GRLineItem(
                    gr_id=gr.id,
                    po_line_item_id=po_item.id,
                    line_number=line_number,
                    description=po_item.description,
                    ordered_quantity=po_item.quantity,
                    received_quantity=received,
                    accepted_quantity=accepted,
                    rejected_quantity=rejected,
                    unit=po_item.unit,
                    condition=item.condition.value,
                    condition_notes=item.condition_notes,
                    has_issues=item.has_issues,
                    issues=item.issues or None,
                )
            )
            po_item.quantity_delivered = to_decimal(po_item.quantity_delivered) + received
            po_item.quantity_accepted = to_decimal(po_item.quantity_accepted) + accepted
            po_item.quantity_rejected = to_decimal(po_item.quantity_rejected) + rejected
            po_item.delivery_status = _delivery_status(
                po_item.quantity_delivered, to_decimal(po_item.quantity)
            ).value

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Goods receipt %s created for PO %s", gr_number, po.po_number)
    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "GR_CREATED",
            GOODS_RECEIPT_ENTITY,
            gr.id,
            entity_name=gr_number,
            description=f"Created goods receipt {gr_number} for PO {po.po_number}",
            metadata={
                "purchase_order_id": str(po.id),
                "overall_condition": condition.value,
                "item_count": len(data.items),
                "has_issues": has_issues,
            },
        ),
    )
    return gr.id


# ─── Complete ───

async def complete_goods_receipt(ctx: ServiceContext, gr_id: uuid.UUID) -> GoodsReceipt:
    ctx.auth.require_any((Capability.APPROVE_GR, Capability.MANAGE_PROCUREMENT), "complete goods receipts")
    db = ctx.db
    gr = await db.get(GoodsReceipt, gr_id)
    if gr is None:
        raise NotFoundError(f"Goods receipt {gr_id} not found")
    current = GoodsReceiptStatus(gr.status)
    goods_receipt_state_machine.validate_transition(current, GoodsReceiptStatus.COMPLETED)

    now = utcnow()
    try:
        result = await db.execute(
            update(GoodsReceipt)
            .where(GoodsReceipt.id == gr.id, GoodsReceipt.status == current.value)
            .values(status=GoodsReceiptStatus.COMPLETED.value, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Goods receipt {gr.gr_number} changed status concurrently", existing_id=gr.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(gr)
    logger.info("Goods receipt %s completed", gr.gr_number)

    po = await db.get(PurchaseOrder, gr.po_id)
    if po is not None and po.created_by:
        await create_task_safely(
            ctx.tasks,
            NewTask(
                task_type=TaskType.ACTIONABLE,
                category=TaskCategory.GR_READY_FOR_PAYMENT.value,
                user_id=po.created_by,
                assigned_by=ctx.auth.user_id,
                assigned_by_name=ctx.auth.display_name,
                title=f"Approve Payment for GR {gr.gr_number}",
                message=(
                    f"Goods receipt {gr.gr_number} for PO {po.po_number} "
                    f"({po.vendor_name or 'vendor'}) is complete. Please review and approve for payment."
                ),
                entity_type=GOODS_RECEIPT_ENTITY,
                entity_id=gr.id,
                link_url=f"/procurement/goods-receipts/{gr.id}",
                priority="MEDIUM" if gr.overall_condition == OverallCondition.ACCEPTED.value else "HIGH",
                auto_completable=True,
            ),
        )

    if ctx.settings.AUTO_CREATE_BILL_ON_COMPLETION and gr.bill_claim.is_unset:
        try:
            await create_bill_from_goods_receipt(ctx, gr.id)
        except Exception:
            logger.error(
                "Error creating bill from goods receipt %s (can be created manually)", gr_id, exc_info=True
            )
        await db.refresh(gr)

    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "GR_COMPLETED",
            GOODS_RECEIPT_ENTITY,
            gr.id,
            entity_name=gr.gr_number,
            description=f"Completed goods receipt {gr.gr_number}",
            before={"status": current.value},
            after={"status": gr.status, "bill_claim_state": gr.bill_claim_state},
        ),
    )
    return gr


# ─── Payment approval ───

async def approve_goods_receipt_for_payment(
    ctx: ServiceContext, gr_id: uuid.UUID, bank_account_id: uuid.UUID
) -> GoodsReceipt:
    ctx.auth.require(Capability.MANAGE_ACCOUNTING, "approve goods receipts for payment")
    db = ctx.db

    bank_account = await db.get(Account, bank_account_id)
    if bank_account is None:
        raise NotFoundError(f"Bank account {bank_account_id} not found", code="BANK_ACCOUNT_NOT_FOUND")
    if not bank_account.is_bank_account:
        raise ValidationError(f"Account {bank_account.code} is not a bank account", code="NOT_A_BANK_ACCOUNT")

    gr = await db.get(GoodsReceipt, gr_id)
    if gr is None:
        raise NotFoundError(f"Goods receipt {gr_id} not found")
    if gr.status != GoodsReceiptStatus.COMPLETED.value:
        raise ValidationError("Goods receipt must be completed before approving payment", code="INVALID_STATUS")
    if gr.approved_for_payment:
        raise ConflictError("Goods receipt is already approved for payment", code="ALREADY_APPROVED", existing_id=gr.id)
    if not gr.bill_claim.is_set:
        raise ValidationError("No bill found for this goods receipt. Create the bill first.", code="BILL_NOT_FOUND")

    now = utcnow()
    try:
        result = await db.execute(
            update(GoodsReceipt)
            .where(
                GoodsReceipt.id == gr.id,
                GoodsReceipt.status == GoodsReceiptStatus.COMPLETED.value,
                GoodsReceipt.approved_for_payment.is_(False),
                GoodsReceipt.bill_claim_state == BillClaimState.SET.value,
            )
            .values(
                approved_for_payment=True,
                payment_approved_by=ctx.auth.user_id,
                payment_approved_by_name=ctx.auth.display_name,
                payment_approved_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Goods receipt is already approved for payment", code="ALREADY_APPROVED", existing_id=gr.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(gr)
    logger.info("Goods receipt %s approved for payment", gr.gr_number)

    try:
        await create_payment_from_approved_receipt(ctx, gr, bank_account_id)
    except Exception:
        logger.error("Error creating payment from goods receipt %s (can be created manually)", gr_id, exc_info=True)
    await db.refresh(gr)

    await complete_entity_task_safely(
        ctx.tasks, GOODS_RECEIPT_ENTITY, gr.id, TaskCategory.GR_READY_FOR_PAYMENT.value, ctx.auth.user_id
    )
    if gr.inspected_by and gr.inspected_by != ctx.auth.user_id:
        await create_task_safely(
            ctx.tasks,
            NewTask(
                task_type=TaskType.INFORMATIONAL,
                category=TaskCategory.GR_PAYMENT_APPROVED.value,
                user_id=gr.inspected_by,
                assigned_by=ctx.auth.user_id,
                assigned_by_name=ctx.auth.display_name,
                title=f"Payment Approved for GR {gr.gr_number}",
                message=f"Payment has been approved for goods receipt {gr.gr_number}.",
                entity_type=GOODS_RECEIPT_ENTITY,
                entity_id=gr.id,
                link_url=f"/procurement/goods-receipts/{gr.id}",
                priority="LOW",
            ),
        )
    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "GR_PAYMENT_APPROVED",
            GOODS_RECEIPT_ENTITY,
            gr.id,
            entity_name=gr.gr_number,
            description=f"Approved goods receipt {gr.gr_number} for payment",
            before={"approved_for_payment": False},
            after={"approved_for_payment": True, "payment_id": str(gr.payment_id) if gr.payment_id else None},
            metadata={"bank_account_id": str(bank_account_id)},
        ),
    )
    return gr
