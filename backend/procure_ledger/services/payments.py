"""Vendor payments: against bills, with allocation and bill balances, and in advance against a PO."""
import logging
import uuid
from decimal import Decimal

from sqlalchemy import update

from procure_ledger.core.auth import Capability
from procure_ledger.core.errors import (
    AccountingIntegrationError,
    ConflictError,
    NotFoundError,
    ProcurementError,
    ValidationError,
)
from procure_ledger.core.money import ZERO, round_money, to_decimal
from procure_ledger.db.base import utcnow
from procure_ledger.models.goods_receipt import GoodsReceipt
from procure_ledger.models.purchase_order import PurchaseOrder
from procure_ledger.models.transaction import (
    FinancialTransaction,
    PaymentAllocation,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from procure_ledger.services.audit import AuditEvent, record_audit_safely
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.gl_entries import PaymentGLInput, generate_vendor_payment_gl_entries
from procure_ledger.services.sequences import generate_document_number
from procure_ledger.services.transactions import stage_transaction

logger = logging.getLogger(__name__)


def allocate_payment(payment: FinancialTransaction, bill: FinancialTransaction, amount) -> PaymentAllocation:
    """Apply ``amount`` of a payment to a bill and update the bill's balances."""
    amount = round_money(amount)
    outstanding = round_money(bill.outstanding_amount)
    if amount <= 0:
        raise ValidationError("Allocated amount must be greater than zero")
    if amount > outstanding:
        raise ValidationError(
            f"Cannot allocate {amount} to bill {bill.transaction_number}: only {outstanding} outstanding",
            code="OVER_ALLOCATION",
        )

    remaining = outstanding - amount
    bill.paid_amount = to_decimal(bill.paid_amount) + amount
    bill.outstanding_amount = remaining
    if remaining == 0:
        bill.payment_status = PaymentStatus.PAID.value
        bill.status = TransactionStatus.PAID.value
    else:
        bill.payment_status = PaymentStatus.PARTIALLY_PAID.value

    return PaymentAllocation(
        payment_id=payment.id,
        bill_id=bill.id,
        bill_number=bill.transaction_number,
        original_amount=to_decimal(bill.total_amount),
        allocated_amount=amount,
        remaining_amount=remaining,
    )


async def create_payment_from_approved_receipt(
    ctx: ServiceContext, gr: GoodsReceipt, bank_account_id: uuid.UUID
) -> FinancialTransaction:
    """Pay the outstanding balance of the receipt's bill from ``bank_account_id``.

    Payment, allocation and the bill's paid/outstanding figures are committed
    together.
    """
    db = ctx.db
    if not gr.approved_for_payment:
        raise ValidationError(f"Goods receipt {gr.gr_number} is not approved for payment", code="NOT_APPROVED")
    claim = gr.bill_claim
    if not claim.is_set:
        raise ValidationError(
            f"No bill found for goods receipt {gr.gr_number}. Create the bill first.", code="BILL_NOT_FOUND"
        )

    bill = await db.get(FinancialTransaction, claim.bill_id)
    if bill is None:
        raise NotFoundError(f"Bill {claim.bill_id} not found", code="BILL_DOCUMENT_NOT_FOUND")
    if bill.status == TransactionStatus.PAID.value or bill.payment_status == PaymentStatus.PAID.value:
        raise ConflictError(f"Bill {bill.transaction_number} is already fully paid", code="ALREADY_PAID", existing_id=bill.id)

    amount: Decimal = round_money(bill.outstanding_amount or bill.total_amount)
    number = await generate_document_number(db, "PAY")
    gl = await generate_vendor_payment_gl_entries(
        db,
        PaymentGLInput(
            transaction_number=number,
            amount=amount,
            bank_account_id=bank_account_id,
            currency=bill.currency,
            description=f"Payment for {gr.gr_number}",
            entity_id=bill.entity_id,
            project_id=bill.project_id,
        ),
    )
    if not gl.success:
        raise AccountingIntegrationError(
            "Failed to generate GL entries for payment",
            code="GL_GENERATION_FAILED",
            details={"errors": gl.errors},
        )

    now = utcnow()
    payment = FinancialTransaction(
        id=uuid.uuid4(),
        transaction_type=TransactionType.VENDOR_PAYMENT.value,
        transaction_number=number,
        status=TransactionStatus.POSTED.value,
        transaction_date=now,
        posted_at=now,
        currency=bill.currency,
        entity_id=bill.entity_id,
        entity_name=bill.entity_name,
        amount=amount,
        total_amount=amount,
        bank_account_id=bank_account_id,
        payment_method="BANK_TRANSFER",
        reference_number=f"GR-{gr.gr_number}",
        goods_receipt_id=gr.id,
        purchase_order_id=bill.purchase_order_id,
        project_id=bill.project_id,
        description=f"Payment for goods receipt {gr.gr_number}",
        created_by=ctx.auth.user_id,
    )

    try:
        allocation = allocate_payment(payment, bill, amount)
        stage_transaction(db, payment, gl.entries)
        db.add(allocation)
        gr.payment_id = payment.id
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Created payment %s of %s for bill %s (GR %s)", number, amount, bill.transaction_number, gr.gr_number
    )
    return payment


# ─── Advance payments ───

ADVANCE_PAID = "PAID"


async def _stage_advance_payment(
    ctx: ServiceContext, po: PurchaseOrder, amount: Decimal, bank_account_id: uuid.UUID
) -> FinancialTransaction:
    db = ctx.db
    number = await generate_document_number(db, "PAY")
    percentage = to_decimal(po.advance_percentage)
    gl = await generate_vendor_payment_gl_entries(
        db,
        PaymentGLInput(
            transaction_number=number,
            amount=amount,
            bank_account_id=bank_account_id,
            currency=po.currency,
            description=f"Advance for {po.po_number}",
            entity_id=po.vendor_id,
            project_id=po.project_id,
        ),
    )
    if not gl.success:
        raise AccountingIntegrationError(
            "Failed to generate GL entries for advance payment",
            code="GL_GENERATION_FAILED",
            details={"errors": gl.errors},
        )

    now = utcnow()
    payment = FinancialTransaction(
        id=uuid.uuid4(),
        transaction_type=TransactionType.VENDOR_PAYMENT.value,
        transaction_number=number,
        status=TransactionStatus.POSTED.value,
        transaction_date=now,
        posted_at=now,
        currency=po.currency,
        entity_id=po.vendor_id,
        entity_name=po.vendor_name,
        amount=amount,
        total_amount=amount,
        bank_account_id=bank_account_id,
        payment_method="BANK_TRANSFER",
        reference_number=f"ADV-{po.po_number}",
        purchase_order_id=po.id,
        project_id=po.project_id,
        description=f"Advance payment ({percentage.normalize():f}% of PO value)",
        notes=f"Advance payment for PO {po.po_number}",
        created_by=ctx.auth.user_id,
    )
    # no allocations: the advance is settled against the final bill later
    stage_transaction(db, payment, gl.entries)

    result = await db.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == po.id, PurchaseOrder.advance_payment_id.is_(None))
        .values(
            advance_payment_id=payment.id,
            advance_payment_status=ADVANCE_PAID,
            payment_progress=percentage,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"Advance payment already exists for PO {po.po_number}", code="PAYMENT_EXISTS")
    return payment


async def create_advance_payment_from_po(
    ctx: ServiceContext, po_id: uuid.UUID, bank_account_id: uuid.UUID
) -> FinancialTransaction:
    """Pay a PO's advance from ``bank_account_id``: Dr Accounts Payable / Cr Bank.

    The payment, its ledger entries and the PO's advance reference are
    committed together; the PO can carry one advance only.
    """
    ctx.auth.require(Capability.MANAGE_ACCOUNTING, "create advance payments")
    db = ctx.db
    po = await db.get(PurchaseOrder, po_id, populate_existing=True)
    if po is None:
        raise NotFoundError(f"Purchase order {po_id} not found", code="PO_NOT_FOUND")
    if not po.advance_payment_required:
        raise ValidationError(
            f"Purchase order {po.po_number} does not require advance payment", code="ADVANCE_NOT_REQUIRED"
        )
    amount = round_money(po.advance_amount)
    if amount <= ZERO:
        raise ValidationError(
            "Invalid advance amount", code="INVALID_AMOUNT", details={"advance_amount": str(po.advance_amount)}
        )
    if po.advance_payment_id is not None:
        raise ConflictError(
            f"Advance payment already exists for PO {po.po_number}",
            code="PAYMENT_EXISTS",
            existing_id=po.advance_payment_id,
        )

    po_number = po.po_number
    try:
        payment = await _stage_advance_payment(ctx, po, amount, bank_account_id)
        await db.commit()
    except ProcurementError:
        await db.rollback()
        raise
    except Exception as exc:
        await db.rollback()
        raise AccountingIntegrationError(
            "Failed to create advance payment", code="PAYMENT_CREATION_FAILED", details=str(exc)
        ) from exc

    logger.info("Created advance payment %s of %s for PO %s", payment.transaction_number, amount, po_number)
    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "ADVANCE_PAYMENT_CREATED",
            "TRANSACTION",
            payment.id,
            entity_name=payment.transaction_number,
            description=f"Created advance payment {payment.transaction_number} for PO {po_number}",
            after={"amount": str(amount), "status": payment.status},
            metadata={"purchase_order_id": str(po_id)},
        ),
    )
    return payment
