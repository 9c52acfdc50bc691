"""Persistence gate for financial transactions, and bill posting.

Nothing that carries ledger entries reaches the database unless its debits
equal its credits within the currency epsilon. stage_transaction enforces the
gate and adds the rows to the session without committing, so callers can
fold the transaction into a larger atomic batch; save_transaction is the
standalone variant that commits.
"""
import logging
import uuid
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from procure_ledger.core.auth import Capability
from procure_ledger.core.errors import AccountingIntegrationError, NotFoundError, ValidationError
from procure_ledger.core.money import to_decimal
from procure_ledger.db.base import utcnow
from procure_ledger.models.purchase_order import PurchaseOrder
from procure_ledger.models.transaction import (
    BillLineItem,
    FinancialTransaction,
    GSTType,
    LedgerEntry,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from procure_ledger.services.audit import AuditEvent, record_audit_safely
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.gl_entries import (
    BillGLInput,
    GLEntry,
    TaxSplit,
    generate_bill_gl_entries,
    split_gst,
)
from procure_ledger.services.ledger_validator import assert_balanced

logger = logging.getLogger(__name__)


def stage_transaction(
    db: AsyncSession,
    txn: FinancialTransaction,
    entries: Iterable[GLEntry] = (),
    line_items: Iterable[BillLineItem] = (),
) -> FinancialTransaction:
    """Balance-check ``entries`` and add the transaction with its rows to the session.

    Raises ImbalancedLedgerError before anything is added.
    """
    entries = list(entries)
    if entries:
        assert_balanced(entries, txn.currency)
        txn.gl_generated_at = utcnow()

    if txn.id is None:
        txn.id = uuid.uuid4()
    db.add(txn)
    for number, line in enumerate(line_items, start=1):
        line.transaction_id = txn.id
        line.line_number = line.line_number or number
        db.add(line)
    for number, entry in enumerate(entries, start=1):
        db.add(_ledger_row(txn.id, number, entry))
    return txn


async def save_transaction(
    db: AsyncSession,
    txn: FinancialTransaction,
    entries: Iterable[GLEntry] = (),
    line_items: Iterable[BillLineItem] = (),
) -> FinancialTransaction:
    try:
        stage_transaction(db, txn, entries, line_items)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Saved %s %s", txn.transaction_type, txn.transaction_number)
    return txn


def _ledger_row(transaction_id: uuid.UUID, line_number: int, entry: GLEntry) -> LedgerEntry:
    return LedgerEntry(
        transaction_id=transaction_id,
        line_number=line_number,
        account_id=entry.account_id,
        account_code=entry.account_code,
        account_name=entry.account_name,
        debit=entry.debit,
        credit=entry.credit,
        description=entry.description,
        entity_id=entry.entity_id,
        cost_centre_id=entry.cost_centre_id,
    )


async def load_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> FinancialTransaction:
    stmt = (
        select(FinancialTransaction)
        .options(selectinload(FinancialTransaction.entries))
        .where(FinancialTransaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    txn = (await db.execute(stmt)).scalars().first()
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


async def _bill_tax_split(db: AsyncSession, bill: FinancialTransaction) -> TaxSplit:
    cgst = to_decimal(bill.cgst_amount)
    sgst = to_decimal(bill.sgst_amount)
    igst = to_decimal(bill.igst_amount)
    if cgst or sgst or igst:
        gst_type = GSTType.IGST if igst else GSTType.CGST_SGST
        return TaxSplit(gst_type=gst_type, cgst=cgst, sgst=sgst, igst=igst)

    interstate = False
    if bill.purchase_order_id is not None:
        po = await db.get(PurchaseOrder, bill.purchase_order_id)
        interstate = po is not None and po.is_interstate
    return split_gst(bill.tax_amount, interstate)


async def stage_bill_posting(db: AsyncSession, bill_id: uuid.UUID) -> tuple[FinancialTransaction, bool]:
    """Generate, balance-check and stage the ledger entries for a draft bill.

    Nothing is committed. The DRAFT -> POSTED move is a conditional update, so
    of two callers posting the same bill only one stages entries. Returns the
    bill and whether this call posted it; an already posted bill comes back
    with ``False``.
    """
    bill = await db.get(FinancialTransaction, bill_id, populate_existing=True)
    if bill is None:
        raise NotFoundError(f"Bill {bill_id} not found")
    if bill.transaction_type != TransactionType.VENDOR_BILL.value:
        raise ValidationError(f"Transaction {bill.transaction_number} is not a vendor bill")
    if bill.status in (TransactionStatus.POSTED.value, TransactionStatus.PAID.value):
        logger.info("Bill %s already %s; nothing to post", bill.transaction_number, bill.status)
        return bill, False
    if bill.status != TransactionStatus.DRAFT.value:
        raise ValidationError(f"Bill {bill.transaction_number} is {bill.status} and cannot be posted")

    existing_entries = await db.scalar(
        select(func.count()).select_from(LedgerEntry).where(LedgerEntry.transaction_id == bill.id)
    )
    if existing_entries:
        raise ValidationError(f"Draft bill {bill.transaction_number} already carries ledger entries")

    tax = await _bill_tax_split(db, bill)
    gl = await generate_bill_gl_entries(
        db,
        BillGLInput(
            transaction_number=bill.transaction_number,
            subtotal=to_decimal(bill.subtotal),
            tax=tax,
            currency=bill.currency,
            description=bill.description or f"Bill {bill.transaction_number}",
            entity_id=bill.entity_id,
            tds_amount=to_decimal(bill.tds_amount),
            project_id=bill.project_id,
        ),
    )
    if not gl.success:
        raise AccountingIntegrationError(
            "Failed to generate GL entries for bill",
            code="GL_GENERATION_FAILED",
            details={"errors": gl.errors, "bill_id": str(bill.id)},
        )
    assert_balanced(gl.entries, bill.currency)

    now = utcnow()
    result = await db.execute(
        update(FinancialTransaction)
        .where(
            FinancialTransaction.id == bill.id,
            FinancialTransaction.status == TransactionStatus.DRAFT.value,
        )
        .values(
            status=TransactionStatus.POSTED.value,
            gst_type=tax.gst_type.value,
            cgst_amount=tax.cgst,
            sgst_amount=tax.sgst,
            igst_amount=tax.igst,
            gl_generated_at=now,
            posted_at=now,
            outstanding_amount=to_decimal(bill.total_amount) - to_decimal(bill.paid_amount),
            payment_status=bill.payment_status or PaymentStatus.UNPAID.value,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("Bill %s was posted concurrently; staging nothing", bill.transaction_number)
        return bill, False

    for number, entry in enumerate(gl.entries, start=1):
        db.add(_ledger_row(bill.id, number, entry))
    logger.info("Staged posting of bill %s (%d entries)", bill.transaction_number, len(gl.entries))
    return bill, True


async def record_bill_posted(ctx: ServiceContext, bill: FinancialTransaction) -> None:
    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "BILL_POSTED",
            "TRANSACTION",
            bill.id,
            entity_name=bill.transaction_number,
            description=f"Posted bill {bill.transaction_number}",
            before={"status": TransactionStatus.DRAFT.value},
            after={"status": bill.status, "total_amount": str(bill.total_amount)},
        ),
    )


async def post_bill(ctx: ServiceContext, bill_id: uuid.UUID) -> FinancialTransaction:
    """Post a vendor bill to the ledger.

    A bill that is already POSTED (or PAID) is returned unchanged. A DRAFT bill
    gets its entries generated from subtotal and tax split, passes the balance
    gate and becomes POSTED in one commit.
    """
    ctx.auth.require_any((Capability.MANAGE_ACCOUNTING, Capability.APPROVE_MATCH), "post vendor bills")
    db = ctx.db

    try:
        bill, posted = await stage_bill_posting(db, bill_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(bill)

    if posted:
        await record_bill_posted(ctx, bill)
    return bill
