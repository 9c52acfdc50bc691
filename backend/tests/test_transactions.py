"""The ledger persistence gate and bill posting."""
import uuid
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select, update

from conftest import INSPECTION_DATE, audited_actions, create_draft_bill, create_purchase_order
from procure_ledger.core.errors import (
    AccountingIntegrationError,
    ImbalancedLedgerError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from procure_ledger.models.transaction import (
    FinancialTransaction,
    GSTType,
    TransactionStatus,
    TransactionType,
)
from procure_ledger.services.gl_entries import (
    GLEntry,
    InvoiceGLInput,
    generate_bill_gl_entries,
    generate_invoice_gl_entries,
    split_gst,
)
from procure_ledger.services.transactions import load_transaction, post_bill, save_transaction


def _invoice(number="INV/2026/03/0001") -> FinancialTransaction:
    return FinancialTransaction(
        transaction_type=TransactionType.CUSTOMER_INVOICE.value,
        transaction_number=number,
        status=TransactionStatus.POSTED.value,
        transaction_date=INSPECTION_DATE,
        currency="INR",
        subtotal=Decimal("10000"),
        tax_amount=Decimal("1800"),
        total_amount=Decimal("11800"),
    )


# ─── save_transaction ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_balanced_transaction_is_saved_with_numbered_entries(db, accounts):
    gl = await generate_invoice_gl_entries(
        db,
        InvoiceGLInput(transaction_number="INV/2026/03/0001", subtotal=Decimal("10000"),
                       tax=split_gst(Decimal("1800"), interstate=False)),
    )
    txn = await save_transaction(db, _invoice(), gl.entries)

    stored = await load_transaction(db, txn.id)
    assert [e.line_number for e in stored.entries] == [1, 2, 3, 4]
    assert stored.gl_generated_at is not None


@pytest.mark.asyncio
async def test_imbalanced_transaction_never_reaches_the_database(db, accounts):
    entries = [
        GLEntry(account_id=accounts["1200"].id, debit=Decimal("100")),
        GLEntry(account_id=accounts["4000"].id, credit=Decimal("90")),
    ]
    with pytest.raises(ImbalancedLedgerError) as exc:
        await save_transaction(db, _invoice(), entries)

    assert exc.value.difference == Decimal("10.00")
    assert await db.scalar(select(func.count()).select_from(FinancialTransaction)) == 0


@pytest.mark.asyncio
async def test_unknown_transaction(db):
    with pytest.raises(NotFoundError):
        await load_transaction(db, uuid.uuid4())


# ─── post_bill ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_posting_a_draft_bill(db, ctx_for, purchase_order, accounts, audit):
    bill = await create_draft_bill(db, purchase_order, [("Steel Plate 3mm", 100, "250.00")])

    posted = await post_bill(ctx_for("ACCOUNTANT"), bill.id)

    assert posted.status == TransactionStatus.POSTED.value
    assert posted.gst_type == GSTType.CGST_SGST.value
    assert posted.cgst_amount == posted.sgst_amount == Decimal("2250.00")
    assert posted.outstanding_amount == Decimal("29500")
    assert posted.posted_at is not None
    stored = await load_transaction(db, bill.id)
    assert {e.account_code for e in stored.entries} == {"5000", "1410", "1420", "2100"}
    assert audited_actions(audit) == ["BILL_POSTED"]


@pytest.mark.asyncio
async def test_interstate_draft_bill_posts_igst(db, ctx_for, vendor, users, accounts):
    po = await create_purchase_order(
        db, vendor, users["PROCUREMENT"], [("Cement OPC 53", 200, "390.00", 28, "bag")],
        interstate=True, po_number="PO/2026/0002",
    )
    bill = await create_draft_bill(db, po, [("Cement OPC 53", 200, "390.00")], gst_rate=28)

    posted = await post_bill(ctx_for("ACCOUNTANT"), bill.id)

    assert posted.gst_type == GSTType.IGST.value
    assert posted.igst_amount == Decimal("21840.00")


@pytest.mark.asyncio
async def test_tds_reduces_the_payable(db, ctx_for, purchase_order, accounts):
    bill = await create_draft_bill(db, purchase_order, [("Steel Plate 3mm", 40, "250.00")])
    bill.tds_amount = Decimal("100")
    await db.commit()

    await post_bill(ctx_for("ACCOUNTANT"), bill.id)

    credits = {e.account_code: e.credit for e in (await load_transaction(db, bill.id)).entries if e.credit}
    assert credits == {"2100": Decimal("11700"), "2300": Decimal("100")}


@pytest.mark.asyncio
async def test_posting_twice_is_a_no_op(db, ctx_for, purchase_order, accounts, audit):
    bill = await create_draft_bill(db, purchase_order, [("Steel Plate 3mm", 100, "250.00")])
    await post_bill(ctx_for("ACCOUNTANT"), bill.id)
    await post_bill(ctx_for("ACCOUNTANT"), bill.id)

    assert len((await load_transaction(db, bill.id)).entries) == 4
    assert audited_actions(audit) == ["BILL_POSTED"]


@pytest.mark.asyncio
async def test_bill_posted_concurrently_gets_no_second_set_of_entries(db, ctx_for, purchase_order, accounts, audit):
    bill = await create_draft_bill(db, purchase_order, [("Steel Plate 3mm", 100, "250.00")])
    bill_id = bill.id

    async def posted_elsewhere(*args, **kwargs):
        result = await generate_bill_gl_entries(*args, **kwargs)
        # another poster wins between the DRAFT read and the status update
        await db.execute(
            update(FinancialTransaction)
            .where(FinancialTransaction.id == bill_id)
            .values(status=TransactionStatus.POSTED.value)
            .execution_options(synchronize_session=False)
        )
        return result

    with patch("procure_ledger.services.transactions.generate_bill_gl_entries", new=posted_elsewhere):
        returned = await post_bill(ctx_for("ACCOUNTANT"), bill_id)

    assert returned.status == TransactionStatus.POSTED.value
    assert (await load_transaction(db, bill_id)).entries == []
    assert audited_actions(audit) == []


@pytest.mark.asyncio
async def test_only_vendor_bills_are_posted(db, ctx_for, accounts):
    invoice = await save_transaction(db, _invoice())
    with pytest.raises(ValidationError, match="not a vendor bill"):
        await post_bill(ctx_for("ACCOUNTANT"), invoice.id)


@pytest.mark.asyncio
async def test_posting_without_chart_of_accounts_keeps_draft(db, ctx_for, purchase_order):
    bill = await create_draft_bill(db, purchase_order, [("Steel Plate 3mm", 100, "250.00")])
    bill_id = bill.id

    with pytest.raises(AccountingIntegrationError) as exc:
        await post_bill(ctx_for("ACCOUNTANT"), bill_id)

    assert exc.value.code == "GL_GENERATION_FAILED"
    assert (await load_transaction(db, bill_id)).status == TransactionStatus.DRAFT.value


@pytest.mark.asyncio
async def test_inspector_cannot_post(db, ctx_for, purchase_order, accounts):
    bill = await create_draft_bill(db, purchase_order, [("Steel Plate 3mm", 100, "250.00")])
    with pytest.raises(PermissionDeniedError):
        await post_bill(ctx_for("INSPECTOR"), bill.id)
