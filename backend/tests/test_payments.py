"""Payment allocation, payments created from approved receipts and PO advances."""
import uuid
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select, update

from conftest import audited_actions, load_purchase_order
from procure_ledger.core.errors import (
    AccountingIntegrationError,
    ConflictError,
    PermissionDeniedError,
    ValidationError,
)
from procure_ledger.models.purchase_order import PurchaseOrder
from procure_ledger.models.transaction import (
    FinancialTransaction,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from procure_ledger.services.gl_entries import generate_vendor_payment_gl_entries
from procure_ledger.services.goods_receipts import approve_goods_receipt_for_payment
from procure_ledger.services.payments import (
    allocate_payment,
    create_advance_payment_from_po,
    create_payment_from_approved_receipt,
)
from procure_ledger.services.transactions import load_transaction


def _bill(total="5900.00", paid="0") -> FinancialTransaction:
    total, paid = Decimal(total), Decimal(paid)
    return FinancialTransaction(
        id=uuid.uuid4(),
        transaction_number="BILL/2026/03/0001",
        status=TransactionStatus.POSTED.value,
        total_amount=total,
        paid_amount=paid,
        outstanding_amount=total - paid,
        payment_status=PaymentStatus.UNPAID.value,
    )


def _payment() -> FinancialTransaction:
    return FinancialTransaction(id=uuid.uuid4(), transaction_number="PAY/2026/03/0001")


def test_partial_allocation():
    bill = _bill()
    allocation = allocate_payment(_payment(), bill, "1000")

    assert allocation.allocated_amount == Decimal("1000.00")
    assert allocation.remaining_amount == Decimal("4900.00")
    assert allocation.bill_number == "BILL/2026/03/0001"
    assert bill.payment_status == PaymentStatus.PARTIALLY_PAID.value
    assert bill.status == TransactionStatus.POSTED.value
    assert bill.paid_amount == Decimal("1000.00")


def test_final_allocation_marks_bill_paid():
    bill = _bill(paid="1000")
    allocate_payment(_payment(), bill, "4900")

    assert bill.outstanding_amount == 0
    assert bill.payment_status == PaymentStatus.PAID.value
    assert bill.status == TransactionStatus.PAID.value


@pytest.mark.parametrize("amount, code", [("6000", "OVER_ALLOCATION"), ("0", "VALIDATION_ERROR")])
def test_allocation_limits(amount, code):
    with pytest.raises(ValidationError) as exc:
        allocate_payment(_payment(), _bill(), amount)
    assert exc.value.code == code


@pytest.mark.asyncio
async def test_unapproved_receipt_cannot_be_paid(ctx_for, purchase_order, receive_and_bill, accounts):
    gr, _ = await receive_and_bill(purchase_order, [(100, 100, 0), (40, 40, 0)])
    with pytest.raises(ValidationError) as exc:
        await create_payment_from_approved_receipt(ctx_for("ACCOUNTANT"), gr, accounts["1010"].id)
    assert exc.value.code == "NOT_APPROVED"


@pytest.mark.asyncio
async def test_paid_bill_cannot_be_paid_again(ctx_for, purchase_order, receive_and_bill, accounts):
    gr, bill = await receive_and_bill(purchase_order, [(100, 100, 0), (40, 40, 0)])
    bill_id = bill.id
    approved = await approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), gr.id, accounts["1010"].id)

    with pytest.raises(ConflictError) as exc:
        await create_payment_from_approved_receipt(ctx_for("ACCOUNTANT"), approved, accounts["1010"].id)
    assert exc.value.code == "ALREADY_PAID"
    assert exc.value.existing_id == bill_id


@pytest.mark.asyncio
async def test_payment_failure_leaves_approval_in_place(db, ctx_for, purchase_order, receive_and_bill, accounts):
    gr, bill = await receive_and_bill(purchase_order, [(100, 100, 0), (40, 40, 0)])
    # the bill is settled elsewhere before payment approval
    bill.status = TransactionStatus.PAID.value
    bill.payment_status = PaymentStatus.PAID.value
    await db.commit()

    approved = await approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), gr.id, accounts["1010"].id)

    assert approved.approved_for_payment is True
    assert approved.payment_id is None


# ─── Advance payments ─────────────────────────────────────────────────────────

async def _require_advance(db, po, amount="11658.40", percentage="20"):
    po.advance_payment_required = True
    po.advance_percentage = Decimal(percentage)
    po.advance_amount = Decimal(amount) if amount is not None else None
    await db.commit()
    return po.id


async def _vendor_payment_count(db) -> int:
    stmt = select(func.count()).select_from(FinancialTransaction).where(
        FinancialTransaction.transaction_type == TransactionType.VENDOR_PAYMENT.value
    )
    return (await db.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_advance_payment_debits_payables_and_credits_bank(db, ctx_for, purchase_order, accounts, audit):
    po_id = await _require_advance(db, purchase_order)

    payment = await create_advance_payment_from_po(ctx_for("ACCOUNTANT"), po_id, accounts["1010"].id)

    stored = await load_transaction(db, payment.id)
    assert stored.transaction_type == TransactionType.VENDOR_PAYMENT.value
    assert stored.transaction_number.startswith("PAY/")
    assert stored.status == TransactionStatus.POSTED.value
    assert stored.total_amount == Decimal("11658.40")
    assert stored.reference_number == "ADV-PO/2026/0001"
    assert stored.description == "Advance payment (20% of PO value)"
    assert stored.purchase_order_id == po_id
    assert {e.account_code: (e.debit, e.credit) for e in stored.entries} == {
        "2100": (Decimal("11658.40"), 0),
        "1010": (0, Decimal("11658.40")),
    }

    po = await load_purchase_order(db, po_id)
    assert po.advance_payment_id == payment.id
    assert po.advance_payment_status == "PAID"
    assert po.payment_progress == Decimal("20")
    assert audited_actions(audit) == ["ADVANCE_PAYMENT_CREATED"]


@pytest.mark.asyncio
async def test_second_advance_payment_is_a_conflict(db, ctx_for, purchase_order, accounts):
    po_id = await _require_advance(db, purchase_order)
    first = await create_advance_payment_from_po(ctx_for("ACCOUNTANT"), po_id, accounts["1010"].id)

    with pytest.raises(ConflictError) as exc:
        await create_advance_payment_from_po(ctx_for("ACCOUNTANT"), po_id, accounts["1010"].id)
    assert exc.value.code == "PAYMENT_EXISTS"
    assert exc.value.existing_id == first.id
    assert await _vendor_payment_count(db) == 1


@pytest.mark.asyncio
async def test_advance_paid_concurrently_leaves_no_second_payment(db, ctx_for, purchase_order, accounts):
    po_id = await _require_advance(db, purchase_order)
    other_payment_id = uuid.uuid4()

    async def paid_elsewhere(*args, **kwargs):
        result = await generate_vendor_payment_gl_entries(*args, **kwargs)
        await db.execute(
            update(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .values(advance_payment_id=other_payment_id)
            .execution_options(synchronize_session=False)
        )
        return result

    with patch("procure_ledger.services.payments.generate_vendor_payment_gl_entries", new=paid_elsewhere):
        with pytest.raises(ConflictError) as exc:
            await create_advance_payment_from_po(ctx_for("ACCOUNTANT"), po_id, accounts["1010"].id)

    assert exc.value.code == "PAYMENT_EXISTS"
    assert await _vendor_payment_count(db) == 0


@pytest.mark.asyncio
async def test_advance_must_be_required_by_the_order(ctx_for, purchase_order, accounts):
    with pytest.raises(ValidationError) as exc:
        await create_advance_payment_from_po(ctx_for("ACCOUNTANT"), purchase_order.id, accounts["1010"].id)
    assert exc.value.code == "ADVANCE_NOT_REQUIRED"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [None, "0"])
async def test_advance_amount_must_be_positive(db, ctx_for, purchase_order, accounts, amount):
    po_id = await _require_advance(db, purchase_order, amount=amount)
    with pytest.raises(ValidationError) as exc:
        await create_advance_payment_from_po(ctx_for("ACCOUNTANT"), po_id, accounts["1010"].id)
    assert exc.value.code == "INVALID_AMOUNT"


@pytest.mark.asyncio
async def test_advance_without_chart_of_accounts_changes_nothing(db, ctx_for, purchase_order):
    po_id = await _require_advance(db, purchase_order)

    with pytest.raises(AccountingIntegrationError) as exc:
        await create_advance_payment_from_po(ctx_for("ACCOUNTANT"), po_id, uuid.uuid4())

    assert exc.value.code == "GL_GENERATION_FAILED"
    assert (await load_purchase_order(db, po_id)).advance_payment_id is None
    assert await _vendor_payment_count(db) == 0


@pytest.mark.asyncio
async def test_only_accounting_pays_advances(db, ctx_for, purchase_order, accounts):
    po_id = await _require_advance(db, purchase_order)
    with pytest.raises(PermissionDeniedError):
        await create_advance_payment_from_po(ctx_for("PROCUREMENT"), po_id, accounts["1010"].id)
