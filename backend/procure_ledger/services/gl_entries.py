"""GL entry generation for bills, customer invoices and payments.

Generators never raise for accounting problems (a missing system account, a
zero amount); they return success=False with the errors so the caller can
decide. They also never write: persistence goes through save_transaction,
which enforces the balance gate.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from procure_ledger.core.money import ZERO, round_money, to_decimal
from procure_ledger.models.account import Account, SystemAccountRole
from procure_ledger.models.transaction import GSTType
from procure_ledger.services.ledger_validator import calculate_balance

logger = logging.getLogger(__name__)


# ─── Data shapes ───

@dataclass
class GLEntry:
    account_id: uuid.UUID | None
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str = ""
    account_code: str | None = None
    account_name: str | None = None
    entity_id: uuid.UUID | None = None
    cost_centre_id: str | None = None


@dataclass
class GLGenerationResult:
    success: bool
    entries: list[GLEntry] = field(default_factory=list)
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO
    is_balanced: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TaxSplit:
    gst_type: GSTType
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.cgst + self.sgst + self.igst


@dataclass
class BillGLInput:
    transaction_number: str
    subtotal: Decimal
    tax: TaxSplit
    currency: str = "INR"
    description: str = ""
    entity_id: uuid.UUID | None = None
    tds_amount: Decimal = ZERO
    project_id: str | None = None


@dataclass
class InvoiceGLInput:
    transaction_number: str
    subtotal: Decimal
    tax: TaxSplit
    currency: str = "INR"
    description: str = ""
    entity_id: uuid.UUID | None = None
    project_id: str | None = None


@dataclass
class PaymentGLInput:
    transaction_number: str
    amount: Decimal
    bank_account_id: uuid.UUID | None
    currency: str = "INR"
    description: str = ""
    entity_id: uuid.UUID | None = None
    project_id: str | None = None


# ─── Tax split ───

def split_gst(total_tax, interstate: bool) -> TaxSplit:
    """Interstate: all IGST. Intrastate: CGST is half rounded to 2dp, SGST takes the remainder."""
    total = round_money(total_tax)
    if interstate:
        return TaxSplit(gst_type=GSTType.IGST, igst=total)
    cgst = round_money(total / 2)
    return TaxSplit(gst_type=GSTType.CGST_SGST, cgst=cgst, sgst=total - cgst)


# ─── Account resolution ───

async def load_system_accounts(db: AsyncSession) -> dict[str, Account]:
    stmt = select(Account).where(Account.system_role.is_not(None), Account.is_active.is_(True))
    accounts = (await db.execute(stmt)).scalars().all()
    return {account.system_role: account for account in accounts}


class _EntryBuilder:
    def __init__(self, accounts: dict[str, Account], entity_id=None, cost_centre_id=None):
        self.accounts = accounts
        self.entity_id = entity_id
        self.cost_centre_id = cost_centre_id
        self.entries: list[GLEntry] = []
        self.errors: list[str] = []

    def _account(self, role: SystemAccountRole) -> Account | None:
        account = self.accounts.get(role.value)
        if account is None:
            self.errors.append(f"System account {role.value} is not configured")
        return account

    def add(self, account: Account | None, debit=ZERO, credit=ZERO, description: str = "") -> None:
        debit = round_money(debit)
        credit = round_money(credit)
        if debit == 0 and credit == 0:
            return
        self.entries.append(
            GLEntry(
                account_id=account.id if account is not None else None,
                account_code=account.code if account is not None else None,
                account_name=account.name if account is not None else None,
                debit=debit,
                credit=credit,
                description=description,
                entity_id=self.entity_id,
                cost_centre_id=self.cost_centre_id,
            )
        )

    def debit(self, role: SystemAccountRole, amount, description: str) -> None:
        if to_decimal(amount) > 0:
            self.add(self._account(role), debit=amount, description=description)

    def credit(self, role: SystemAccountRole, amount, description: str) -> None:
        if to_decimal(amount) > 0:
            self.add(self._account(role), credit=amount, description=description)

    def result(self, currency: str) -> GLGenerationResult:
        balance = calculate_balance(self.entries, currency)
        errors = list(self.errors)
        if not balance.is_balanced:
            errors.append(
                f"Generated entries do not balance: debit {balance.total_debit:.2f} "
                f"!= credit {balance.total_credit:.2f}"
            )
        return GLGenerationResult(
            success=not errors,
            entries=self.entries,
            total_debit=balance.total_debit,
            total_credit=balance.total_credit,
            is_balanced=balance.is_balanced,
            errors=errors,
        )


# ─── Generators ───

async def generate_bill_gl_entries(db: AsyncSession, data: BillGLInput) -> GLGenerationResult:
    """Vendor bill: Dr Expenses + Dr GST input / Cr Accounts Payable (+ Cr TDS Payable)."""
    subtotal = round_money(data.subtotal)
    if subtotal <= 0:
        return GLGenerationResult(success=False, errors=["Bill subtotal must be greater than zero"])

    builder = _EntryBuilder(await load_system_accounts(db), data.entity_id, data.project_id)
    label = data.description or data.transaction_number
    tds = round_money(data.tds_amount)
    total = subtotal + data.tax.total

    builder.debit(SystemAccountRole.EXPENSES, subtotal, f"Purchase - {label}")
    builder.debit(SystemAccountRole.CGST_INPUT, data.tax.cgst, f"CGST input - {label}")
    builder.debit(SystemAccountRole.SGST_INPUT, data.tax.sgst, f"SGST input - {label}")
    builder.debit(SystemAccountRole.IGST_INPUT, data.tax.igst, f"IGST input - {label}")
    builder.credit(SystemAccountRole.ACCOUNTS_PAYABLE, total - tds, f"Payable to vendor - {label}")
    builder.credit(SystemAccountRole.TDS_PAYABLE, tds, f"TDS deducted - {label}")

    result = builder.result(data.currency)
    if not result.success:
        logger.warning("Bill GL generation failed for %s: %s", data.transaction_number, result.errors)
    return result


async def generate_invoice_gl_entries(db: AsyncSession, data: InvoiceGLInput) -> GLGenerationResult:
    """Customer invoice: Dr Accounts Receivable / Cr Revenue + Cr GST payable."""
    subtotal = round_money(data.subtotal)
    if subtotal <= 0:
        return GLGenerationResult(success=False, errors=["Invoice subtotal must be greater than zero"])

    builder = _EntryBuilder(await load_system_accounts(db), data.entity_id, data.project_id)
    label = data.description or data.transaction_number

    builder.debit(SystemAccountRole.ACCOUNTS_RECEIVABLE, subtotal + data.tax.total, f"Receivable - {label}")
    builder.credit(SystemAccountRole.REVENUE, subtotal, f"Revenue - {label}")
    builder.credit(SystemAccountRole.CGST_PAYABLE, data.tax.cgst, f"CGST payable - {label}")
    builder.credit(SystemAccountRole.SGST_PAYABLE, data.tax.sgst, f"SGST payable - {label}")
    builder.credit(SystemAccountRole.IGST_PAYABLE, data.tax.igst, f"IGST payable - {label}")
    return builder.result(data.currency)


async def _bank_account(db: AsyncSession, builder: _EntryBuilder, bank_account_id) -> Account | None:
    if bank_account_id is None:
        builder.errors.append("Bank account is required")
        return None
    account = await db.get(Account, bank_account_id)
    if account is None:
        builder.errors.append(f"Bank account {bank_account_id} not found")
        return None
    if not account.is_bank_account:
        builder.errors.append(f"Account {account.code} is not a bank account")
    return account


async def generate_vendor_payment_gl_entries(db: AsyncSession, data: PaymentGLInput) -> GLGenerationResult:
    """Vendor payment: Dr Accounts Payable / Cr Bank."""
    amount = round_money(data.amount)
    if amount <= 0:
        return GLGenerationResult(success=False, errors=["Payment amount must be greater than zero"])

    builder = _EntryBuilder(await load_system_accounts(db), data.entity_id, data.project_id)
    bank = await _bank_account(db, builder, data.bank_account_id)
    label = data.description or data.transaction_number

    builder.debit(SystemAccountRole.ACCOUNTS_PAYABLE, amount, f"Payment to vendor - {label}")
    builder.add(bank, credit=amount, description=f"Paid from bank - {label}")
    return builder.result(data.currency)


async def generate_customer_payment_gl_entries(db: AsyncSession, data: PaymentGLInput) -> GLGenerationResult:
    """Customer payment: Dr Bank / Cr Accounts Receivable."""
    amount = round_money(data.amount)
    if amount <= 0:
        return GLGenerationResult(success=False, errors=["Payment amount must be greater than zero"])

    builder = _EntryBuilder(await load_system_accounts(db), data.entity_id, data.project_id)
    bank = await _bank_account(db, builder, data.bank_account_id)
    label = data.description or data.transaction_number

    builder.add(bank, debit=amount, description=f"Received in bank - {label}")
    builder.credit(SystemAccountRole.ACCOUNTS_RECEIVABLE, amount, f"Receipt from customer - {label}")
    return builder.result(data.currency)
