"""Double-entry checks for ledger entry sets.

validate_ledger_entries reports every problem it finds; assert_balanced is
the hard gate used before persisting a transaction and raises
ImbalancedLedgerError when debits and credits differ by more than the
currency epsilon.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from procure_ledger.core.config import settings
from procure_ledger.core.errors import ImbalancedLedgerError
from procure_ledger.core.money import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)

# Currencies without minor units: half the smallest unit
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "ISK"})


def currency_epsilon(currency: str | None = None) -> Decimal:
    if currency and currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal("0.5")
    return Decimal("0.01")


@dataclass
class LedgerBalance:
    total_debit: Decimal
    total_credit: Decimal
    balance: Decimal
    is_balanced: bool


@dataclass
class LedgerValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def calculate_balance(entries: Iterable[Any], currency: str | None = None) -> LedgerBalance:
    entries = list(entries)
    total_debit = round_money(sum((to_decimal(e.debit) for e in entries), ZERO))
    total_credit = round_money(sum((to_decimal(e.credit) for e in entries), ZERO))
    balance = total_debit - total_credit
    return LedgerBalance(
        total_debit=total_debit,
        total_credit=total_credit,
        balance=balance,
        is_balanced=abs(balance) <= currency_epsilon(currency),
    )


def validate_ledger_entries(entries: Iterable[Any], currency: str | None = None) -> LedgerValidationResult:
    entries = list(entries)
    errors: list[str] = []
    warnings: list[str] = []

    if not entries:
        return LedgerValidationResult(False, ["At least one ledger entry is required"])
    if len(entries) < 2:
        errors.append("At least two ledger entries are required for double-entry bookkeeping")

    for number, entry in enumerate(entries, start=1):
        debit = to_decimal(entry.debit)
        credit = to_decimal(entry.credit)
        if not entry.account_id:
            errors.append(f"Entry {number}: account is required")
        if debit == 0 and credit == 0:
            errors.append(f"Entry {number}: either debit or credit must be non-zero")
        if debit != 0 and credit != 0:
            errors.append(f"Entry {number}: an entry cannot have both debit and credit")
        if debit < 0 or credit < 0:
            errors.append(f"Entry {number}: debit and credit cannot be negative")

    balance = calculate_balance(entries, currency)
    if not balance.is_balanced:
        errors.append(
            f"Total debits ({balance.total_debit:.2f}) must equal total credits ({balance.total_credit:.2f})"
        )

    if len(entries) > settings.LEDGER_MAX_ENTRIES_WARNING:
        warnings.append(f"Transaction has {len(entries)} entries; consider splitting it")
    duplicated = [str(account) for account, count in Counter(e.account_id for e in entries).items() if account and count > 1]
    if duplicated:
        warnings.append(f"Multiple entries post to the same account: {', '.join(duplicated)}")

    return LedgerValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def assert_balanced(entries: Iterable[Any], currency: str | None = None) -> LedgerBalance:
    """Raise ImbalancedLedgerError unless the entry set balances."""
    entries = list(entries)
    result = validate_ledger_entries(entries, currency)
    balance = calculate_balance(entries, currency)
    if not result.is_valid:
        logger.error(
            "Rejected ledger entry set: debit=%s credit=%s errors=%s",
            balance.total_debit,
            balance.total_credit,
            result.errors,
        )
        raise ImbalancedLedgerError(balance.total_debit, balance.total_credit, result.errors)
    for warning in result.warnings:
        logger.warning("Ledger entry warning: %s", warning)
    return balance
