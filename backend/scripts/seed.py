"""Seed script: creates tables, users, chart of accounts, tolerance policy, vendors and POs.

Idempotent: checks for existing records before inserting.
Run: python scripts/seed.py
"""
import asyncio
import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from procure_ledger.core.config import settings
from procure_ledger.core.money import HUNDRED, round_money
from procure_ledger.core.seed import seed_chart_of_accounts, seed_default_tolerance
from procure_ledger.core.security import create_access_token
from procure_ledger.db.base import create_all
from procure_ledger.models.purchase_order import POLineItem, PurchaseOrder
from procure_ledger.models.user import User
from procure_ledger.models.vendor import Vendor


# ─── Upsert helpers ───────────────────────────────────────────────────────────

async def _upsert_user(db: AsyncSession, email: str, name: str, role: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(email=email, name=name, role=role, is_active=True)
    db.add(user)
    await db.flush()
    print(f"  [new]  User {email} ({role})")
    return user


async def _upsert_vendor(db: AsyncSession, name: str, gstin: str, state_code: str,
                         payment_terms: int = 30, email: str = "") -> Vendor:
    result = await db.execute(select(Vendor).where(Vendor.name == name))
    vendor = result.scalars().first()
    if vendor:
        print(f"  [skip] Vendor {name}")
        return vendor
    vendor = Vendor(
        name=name, gstin=gstin, state_code=state_code, currency="INR",
        payment_terms=payment_terms, email=email, is_active=True,
    )
    db.add(vendor)
    await db.flush()
    print(f"  [new]  Vendor {name}")
    return vendor


async def _upsert_po(db: AsyncSession, po_number: str, vendor: Vendor, created_by: User,
                     lines: list[dict], interstate: bool = False) -> PurchaseOrder:
    result = await db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == po_number))
    po = result.scalars().first()
    if po:
        print(f"  [skip] PO {po_number}")
        return po

    subtotal = sum((Decimal(str(l["quantity"])) * Decimal(str(l["unit_price"])) for l in lines), Decimal("0"))
    tax = sum(
        (Decimal(str(l["quantity"])) * Decimal(str(l["unit_price"])) * Decimal(str(l["gst_rate"])) / HUNDRED
         for l in lines),
        Decimal("0"),
    )
    tax = round_money(tax)
    half = round_money(tax / 2)
    po = PurchaseOrder(
        po_number=po_number, vendor_id=vendor.id, vendor_name=vendor.name, status="APPROVED",
        currency="INR", subtotal=round_money(subtotal),
        cgst=Decimal("0") if interstate else half,
        sgst=Decimal("0") if interstate else tax - half,
        igst=tax if interstate else Decimal("0"),
        total_tax=tax, grand_total=round_money(subtotal) + tax,
        created_by=created_by.id,
    )
    db.add(po)
    await db.flush()
    for number, line in enumerate(lines, start=1):
        db.add(POLineItem(
            po_id=po.id, line_number=number,
            description=line["description"], quantity=Decimal(str(line["quantity"])),
            unit_price=Decimal(str(line["unit_price"])), unit=line.get("unit", "nos"),
            gst_rate=Decimal(str(line["gst_rate"])),
        ))
    await db.flush()
    print(f"  [new]  PO {po_number} (₹{po.grand_total:,.2f})")
    return po


# ─── Main ─────────────────────────────────────────────────────────────────────

async def seed() -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    await create_all(engine)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    async with Session() as db:
        print("── Chart of accounts ──")
        accounts = await seed_chart_of_accounts(db)
        await seed_default_tolerance(db)

        print("\n── Users ──")
        admin = await _upsert_user(db, "admin@example.com", "Admin", "ADMIN")
        buyer = await _upsert_user(db, "buyer@example.com", "Priya Buyer", "PROCUREMENT")
        await _upsert_user(db, "inspector@example.com", "Site Inspector", "INSPECTOR")
        await _upsert_user(db, "accounts@example.com", "Accounts Team", "ACCOUNTANT")
        await _upsert_user(db, "approver@example.com", "Finance Approver", "APPROVER")
        await db.commit()

        print("\n── Vendors ──")
        steel = await _upsert_vendor(db, "Shakti Steel Traders", "27AAACS1234F1Z5", "27", 45)
        cement = await _upsert_vendor(db, "Deccan Cement Co", "29AABCD5678K1Z2", "29", 30)
        await db.commit()

        print("\n── Purchase orders ──")
        await _upsert_po(db, "PO/2026/0001", steel, buyer, [
            {"description": "Steel Plate 3mm", "quantity": 100, "unit_price": 250.00, "gst_rate": 18, "unit": "sheet"},
            {"description": "TMT Bars 12mm", "quantity": 40, "unit_price": 610.00, "gst_rate": 18, "unit": "bundle"},
        ])
        await _upsert_po(db, "PO/2026/0002", cement, buyer, [
            {"description": "OPC 53 Grade Cement", "quantity": 500, "unit_price": 380.00, "gst_rate": 28, "unit": "bag"},
        ], interstate=True)
        await db.commit()

    await engine.dispose()
    print("\n✓ Seed complete.")
    print(f"  Bank account for payments: {accounts['1010'].code} {accounts['1010'].name} ({accounts['1010'].id})")
    print(f"  Admin bearer token: {create_access_token(str(admin.id), admin.role)}")


if __name__ == "__main__":
    asyncio.run(seed())
