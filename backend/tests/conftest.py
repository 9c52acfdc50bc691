"""Shared fixtures: in-memory SQLite database, seeded reference data, service contexts."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import StaticPool

from procure_ledger.core.auth import AuthContext
from procure_ledger.core.config import Settings
from procure_ledger.core.seed import seed_chart_of_accounts, seed_default_tolerance
from procure_ledger.db.base import create_all
from procure_ledger.models.purchase_order import POLineItem, PurchaseOrder
from procure_ledger.models.transaction import BillLineItem, FinancialTransaction, TransactionStatus, TransactionType
from procure_ledger.models.user import User
from procure_ledger.models.vendor import Vendor
from procure_ledger.services import accounting_integration, goods_receipts
from procure_ledger.services.context import ServiceContext

INSPECTION_DATE = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


# ─── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ─── Reference data ───────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def accounts(db):
    """Chart of accounts keyed by code; 1010 is the bank account."""
    return await seed_chart_of_accounts(db)


@pytest_asyncio.fixture
async def tolerance(db):
    return await seed_default_tolerance(db)


@pytest_asyncio.fixture
async def users(db) -> dict[str, User]:
    people = {
        "PROCUREMENT": User(email="buyer@example.com", name="Priya Buyer", role="PROCUREMENT"),
        "INSPECTOR": User(email="inspector@example.com", name="Site Inspector", role="INSPECTOR"),
        "ACCOUNTANT": User(email="accounts@example.com", name="Accounts Team", role="ACCOUNTANT"),
        "APPROVER": User(email="approver@example.com", name="Finance Approver", role="APPROVER"),
        "ADMIN": User(email="admin@example.com", name="Admin", role="ADMIN"),
        "AUDITOR": User(email="auditor@example.com", name="Auditor", role="AUDITOR"),
    }
    for user in people.values():
        user.id = uuid.uuid4()
        db.add(user)
    await db.commit()
    return people


@pytest_asyncio.fixture
async def vendor(db) -> Vendor:
    vendor = Vendor(id=uuid.uuid4(), name="Shakti Steel Traders", gstin="27AAACS1234F1Z5", state_code="27")
    db.add(vendor)
    await db.commit()
    return vendor


async def create_purchase_order(db, vendor: Vendor, created_by: User, lines: list[tuple], interstate: bool = False,
                                po_number: str = "PO/2026/0001") -> PurchaseOrder:
    """lines: (description, quantity, unit_price, gst_rate, unit)"""
    items = []
    subtotal = Decimal("0")
    tax = Decimal("0")
    for number, (description, quantity, unit_price, gst_rate, unit) in enumerate(lines, start=1):
        amount = Decimal(str(quantity)) * Decimal(str(unit_price))
        subtotal += amount
        tax += amount * Decimal(str(gst_rate)) / 100
        items.append(
            POLineItem(
                id=uuid.uuid4(),
                line_number=number,
                description=description,
                quantity=Decimal(str(quantity)),
                unit_price=Decimal(str(unit_price)),
                gst_rate=Decimal(str(gst_rate)),
                unit=unit,
            )
        )
    po = PurchaseOrder(
        id=uuid.uuid4(),
        po_number=po_number,
        vendor_id=vendor.id,
        vendor_name=vendor.name,
        subtotal=subtotal,
        cgst=Decimal("0") if interstate else tax / 2,
        sgst=Decimal("0") if interstate else tax / 2,
        igst=tax if interstate else Decimal("0"),
        total_tax=tax,
        grand_total=subtotal + tax,
        created_by=created_by.id,
        line_items=items,
    )
    db.add(po)
    await db.commit()
    return po


async def load_purchase_order(db, po_id: uuid.UUID) -> PurchaseOrder:
    """Fresh copy of a PO and its lines, safe to read after a rollback."""
    stmt = (
        select(PurchaseOrder)
        .options(selectinload(PurchaseOrder.line_items))
        .where(PurchaseOrder.id == po_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalars().one()


async def create_draft_bill(db, po: PurchaseOrder, lines: list[tuple], gst_rate=18,
                            number: str = "BILL/2026/03/9001", vendor_id: uuid.UUID | None = None,
                            vendor_invoice_number: str = "SST/25-26/118") -> FinancialTransaction:
    """A vendor's own invoice keyed in as a DRAFT bill. lines: (description, quantity, unit_price)"""
    rate = Decimal(str(gst_rate))
    items = []
    for number_in_bill, (description, quantity, unit_price) in enumerate(lines, start=1):
        amount = Decimal(str(quantity)) * Decimal(str(unit_price))
        gst = amount * rate / 100
        items.append(
            BillLineItem(
                line_number=number_in_bill,
                description=description,
                quantity=Decimal(str(quantity)),
                unit_price=Decimal(str(unit_price)),
                amount=amount,
                gst_rate=rate,
                gst_amount=gst,
                total_amount=amount + gst,
            )
        )
    subtotal = sum((item.amount for item in items), Decimal("0"))
    tax = subtotal * rate / 100
    bill = FinancialTransaction(
        id=uuid.uuid4(),
        transaction_type=TransactionType.VENDOR_BILL.value,
        transaction_number=number,
        status=TransactionStatus.DRAFT.value,
        transaction_date=INSPECTION_DATE,
        entity_id=vendor_id or po.vendor_id,
        entity_name=po.vendor_name,
        subtotal=subtotal,
        tax_amount=tax,
        total_amount=subtotal + tax,
        outstanding_amount=subtotal + tax,
        purchase_order_id=po.id,
        vendor_invoice_number=vendor_invoice_number,
        line_items=items,
    )
    db.add(bill)
    await db.commit()
    return bill


def audited_actions(audit) -> list[str]:
    return [call.args[0].action for call in audit.record.await_args_list]


def created_task_categories(tasks) -> list[str]:
    return [call.args[0].category for call in tasks.create_task.await_args_list]


@pytest_asyncio.fixture
async def purchase_order(db, vendor, users) -> PurchaseOrder:
    """Two intrastate lines at 18% GST: 100 x 250.00 and 40 x 610.00."""
    return await create_purchase_order(
        db,
        vendor,
        users["PROCUREMENT"],
        [
            ("Steel Plate 3mm", 100, "250.00", 18, "sheet"),
            ("TMT Bars 12mm", 40, "610.00", 18, "bundle"),
        ],
    )


# ─── Service contexts ─────────────────────────────────────────────────────────

@pytest.fixture
def audit():
    sink = AsyncMock()
    sink.record = AsyncMock(return_value=None)
    return sink


@pytest.fixture
def tasks():
    service = AsyncMock()
    service.create_task = AsyncMock(side_effect=lambda task: uuid.uuid4())
    service.find_task_by_entity = AsyncMock(return_value=None)
    service.complete_task = AsyncMock(return_value=None)
    return service


@pytest.fixture
def test_settings():
    return Settings(AUTO_CREATE_BILL_ON_COMPLETION=False, AUTO_THREE_WAY_MATCH_ON_BILL=False)


@pytest.fixture
def ctx_for(db, users, audit, tasks, test_settings):
    """Build a ServiceContext acting as the seeded user for ``role``.

    Identities are captured up front: a rollback in the code under test
    expires every ORM object in the shared session.
    """
    identities = {role: (u.id, u.name, u.role, u.email) for role, u in users.items()}

    def build(role: str, **overrides) -> ServiceContext:
        user_id, name, user_role, email = identities[role]
        return ServiceContext(
            db=overrides.get("db", db),
            auth=AuthContext.for_role(user_id, name, user_role, user_email=email),
            audit=overrides.get("audit", audit),
            tasks=overrides.get("tasks", tasks),
            settings=overrides.get("settings", test_settings),
        )
    return build


# ─── Workflow helpers ─────────────────────────────────────────────────────────

def receipt_input(po: PurchaseOrder, quantities: list[tuple], inspection_date: datetime = INSPECTION_DATE):
    """quantities: (received, accepted, rejected) per PO line, in PO order."""
    items = []
    for po_item, (received, accepted, rejected) in zip(po.line_items, quantities):
        items.append(
            goods_receipts.ReceiptItemInput(
                po_line_item_id=po_item.id,
                received_quantity=Decimal(str(received)),
                accepted_quantity=Decimal(str(accepted)),
                rejected_quantity=Decimal(str(rejected)),
                has_issues=bool(rejected),
                issues=["damaged on arrival"] if rejected else [],
            )
        )
    return goods_receipts.CreateGoodsReceiptInput(po_id=po.id, inspection_date=inspection_date, items=items)


@pytest.fixture
def receive(ctx_for):
    """Create and complete a goods receipt; returns the completed receipt."""
    async def run(po: PurchaseOrder, quantities: list[tuple], complete: bool = True):
        gr_id = await goods_receipts.create_goods_receipt(ctx_for("INSPECTOR"), receipt_input(po, quantities))
        if complete:
            await goods_receipts.complete_goods_receipt(ctx_for("PROCUREMENT"), gr_id)
        return await goods_receipts.get_goods_receipt(ctx_for("PROCUREMENT").db, gr_id)
    return run


@pytest.fixture
def receive_and_bill(receive, ctx_for, accounts):
    """Completed receipt plus its posted vendor bill."""
    async def run(po: PurchaseOrder, quantities: list[tuple]):
        gr = await receive(po, quantities)
        bill = await accounting_integration.create_bill_from_goods_receipt(ctx_for("ACCOUNTANT"), gr.id)
        return gr, bill
    return run
