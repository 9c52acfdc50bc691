"""GL entry generation against a seeded chart of accounts."""
import uuid
from decimal import Decimal

import pytest

from procure_ledger.models.transaction import GSTType
from procure_ledger.services.gl_entries import (
    BillGLInput,
    InvoiceGLInput,
    PaymentGLInput,
    generate_bill_gl_entries,
    generate_customer_payment_gl_entries,
    generate_invoice_gl_entries,
    generate_vendor_payment_gl_entries,
    split_gst,
)


def _by_code(result) -> dict[str, tuple[Decimal, Decimal]]:
    return {entry.account_code: (entry.debit, entry.credit) for entry in result.entries}


# ─── GST split ────────────────────────────────────────────────────────────────

def test_intrastate_split_gives_sgst_the_remainder():
    split = split_gst(Decimal("0.05"), interstate=False)
    assert split.gst_type is GSTType.CGST_SGST
    assert split.cgst == Decimal("0.03")
    assert split.sgst == Decimal("0.02")
    assert split.total == Decimal("0.05")


def test_interstate_split_is_all_igst():
    split = split_gst(Decimal("8892"), interstate=True)
    assert split.gst_type is GSTType.IGST
    assert split.igst == Decimal("8892.00")
    assert split.cgst == 0 and split.sgst == 0


# ─── Bills ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_bill_entries_debit_expense_and_input_tax(db, accounts):
    result = await generate_bill_gl_entries(
        db,
        BillGLInput(
            transaction_number="BILL/2026/03/0001",
            subtotal=Decimal("49400"),
            tax=split_gst(Decimal("8892"), interstate=False),
        ),
    )
    assert result.success is True
    assert result.is_balanced is True
    assert result.total_debit == result.total_credit == Decimal("58292.00")
    assert _by_code(result) == {
        "5000": (Decimal("49400.00"), Decimal("0.00")),
        "1410": (Decimal("4446.00"), Decimal("0.00")),
        "1420": (Decimal("4446.00"), Decimal("0.00")),
        "2100": (Decimal("0.00"), Decimal("58292.00")),
    }


@pytest.mark.asyncio
async def test_bill_with_tds_splits_the_credit(db, accounts):
    result = await generate_bill_gl_entries(
        db,
        BillGLInput(
            transaction_number="BILL/2026/03/0002",
            subtotal=Decimal("10000"),
            tax=split_gst(Decimal("1800"), interstate=True),
            tds_amount=Decimal("200"),
        ),
    )
    entries = _by_code(result)
    assert result.success is True
    assert entries["1430"] == (Decimal("1800.00"), Decimal("0.00"))
    assert entries["2100"] == (Decimal("0.00"), Decimal("11600.00"))
    assert entries["2300"] == (Decimal("0.00"), Decimal("200.00"))


@pytest.mark.asyncio
async def test_bill_without_chart_of_accounts_reports_errors(db):
    result = await generate_bill_gl_entries(
        db,
        BillGLInput(transaction_number="BILL/2026/03/0003", subtotal=Decimal("100"), tax=split_gst(0, False)),
    )
    assert result.success is False
    assert any("EXPENSES" in error for error in result.errors)


@pytest.mark.asyncio
async def test_zero_subtotal_bill_is_refused(db, accounts):
    result = await generate_bill_gl_entries(
        db, BillGLInput(transaction_number="BILL/2026/03/0004", subtotal=Decimal("0"), tax=split_gst(0, False))
    )
    assert result.success is False
    assert result.entries == []


# ─── Customer invoices ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_invoice_entries_credit_revenue_and_output_tax(db, accounts):
    result = await generate_invoice_gl_entries(
        db,
        InvoiceGLInput(
            transaction_number="INV/2026/03/0001",
            subtotal=Decimal("10000"),
            tax=split_gst(Decimal("1800"), interstate=False),
        ),
    )
    assert result.success is True
    assert _by_code(result) == {
        "1200": (Decimal("11800.00"), Decimal("0.00")),
        "4000": (Decimal("0.00"), Decimal("10000.00")),
        "2210": (Decimal("0.00"), Decimal("900.00")),
        "2220": (Decimal("0.00"), Decimal("900.00")),
    }


# ─── Payments ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_vendor_payment_debits_payable_credits_bank(db, accounts):
    result = await generate_vendor_payment_gl_entries(
        db,
        PaymentGLInput(transaction_number="PAY/2026/03/0001", amount=Decimal("58292"),
                       bank_account_id=accounts["1010"].id),
    )
    assert result.success is True
    assert _by_code(result) == {
        "2100": (Decimal("58292.00"), Decimal("0.00")),
        "1010": (Decimal("0.00"), Decimal("58292.00")),
    }


@pytest.mark.asyncio
async def test_customer_payment_debits_bank_credits_receivable(db, accounts):
    result = await generate_customer_payment_gl_entries(
        db,
        PaymentGLInput(transaction_number="RCPT/2026/03/0001", amount=Decimal("11800"),
                       bank_account_id=accounts["1010"].id),
    )
    assert result.success is True
    assert _by_code(result)["1010"] == (Decimal("11800.00"), Decimal("0.00"))
    assert _by_code(result)["1200"] == (Decimal("0.00"), Decimal("11800.00"))


@pytest.mark.asyncio
async def test_payment_from_non_bank_account_fails(db, accounts):
    result = await generate_vendor_payment_gl_entries(
        db,
        PaymentGLInput(transaction_number="PAY/2026/03/0002", amount=Decimal("100"),
                       bank_account_id=accounts["2100"].id),
    )
    assert result.success is False
    assert any("not a bank account" in error for error in result.errors)


@pytest.mark.asyncio
async def test_payment_with_unknown_bank_account_fails(db, accounts):
    result = await generate_vendor_payment_gl_entries(
        db,
        PaymentGLInput(transaction_number="PAY/2026/03/0003", amount=Decimal("100"), bank_account_id=uuid.uuid4()),
    )
    assert result.success is False
    assert any("not found" in error for error in result.errors)
