"""Seed reference data: chart of accounts and the default tolerance policy."""
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from procure_ledger.db.base import create_all
from procure_ledger.db.session import AsyncSessionLocal, engine
from procure_ledger.models.account import Account, AccountType, SystemAccountRole
from procure_ledger.models.matching import ToleranceConfig

logger = logging.getLogger(__name__)

# (code, name, account_type, system_role, is_bank_account)
DEFAULT_ACCOUNTS = [
    ("1010", "Operating Bank Account", AccountType.ASSET, None, True),
    ("1200", "Accounts Receivable", AccountType.ASSET, SystemAccountRole.ACCOUNTS_RECEIVABLE, False),
    ("1410", "CGST Input Credit", AccountType.ASSET, SystemAccountRole.CGST_INPUT, False),
    ("1420", "SGST Input Credit", AccountType.ASSET, SystemAccountRole.SGST_INPUT, False),
    ("1430", "IGST Input Credit", AccountType.ASSET, SystemAccountRole.IGST_INPUT, False),
    ("2100", "Accounts Payable", AccountType.LIABILITY, SystemAccountRole.ACCOUNTS_PAYABLE, False),
    ("2210", "CGST Payable", AccountType.LIABILITY, SystemAccountRole.CGST_PAYABLE, False),
    ("2220", "SGST Payable", AccountType.LIABILITY, SystemAccountRole.SGST_PAYABLE, False),
    ("2230", "IGST Payable", AccountType.LIABILITY, SystemAccountRole.IGST_PAYABLE, False),
    ("2300", "TDS Payable", AccountType.LIABILITY, SystemAccountRole.TDS_PAYABLE, False),
    ("4000", "Revenue", AccountType.INCOME, SystemAccountRole.REVENUE, False),
    ("5000", "Purchases and Expenses", AccountType.EXPENSE, SystemAccountRole.EXPENSES, False),
]


async def seed_chart_of_accounts(db: AsyncSession) -> dict[str, Account]:
    """Insert missing accounts (matched by code). Returns every default account keyed by code."""
    accounts: dict[str, Account] = {}
    for code, name, account_type, system_role, is_bank in DEFAULT_ACCOUNTS:
        existing = (await db.execute(select(Account).where(Account.code == code))).scalars().first()
        if existing is not None:
            logger.info("Account %s already exists, skipping", code)
            accounts[code] = existing
            continue
        account = Account(
            code=code,
            name=name,
            account_type=account_type.value,
            system_role=system_role.value if system_role else None,
            is_bank_account=is_bank,
            is_active=True,
        )
        db.add(account)
        accounts[code] = account
        logger.info("Seeded account %s %s", code, name)

    await db.commit()
    return accounts


async def seed_default_tolerance(db: AsyncSession) -> ToleranceConfig:
    existing = (
        await db.execute(select(ToleranceConfig).where(ToleranceConfig.is_default.is_(True)))
    ).scalars().first()
    if existing is not None:
        logger.info("Default tolerance config already exists, skipping")
        return existing
    config = ToleranceConfig(
        name="Default",
        quantity_tolerance_percent=5,
        price_tolerance_percent=2,
        amount_tolerance_percent=5,
        amount_tolerance_absolute=0,
        is_default=True,
        is_active=True,
    )
    db.add(config)
    await db.commit()
    logger.info("Seeded default tolerance config")
    return config


async def run_seed() -> None:
    await create_all(engine)
    async with AsyncSessionLocal() as db:
        await seed_chart_of_accounts(db)
        await seed_default_tolerance(db)
    logger.info("Seeding complete.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_seed())
