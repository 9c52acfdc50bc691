"""Tolerance policy for three-way matching.

A policy holds per-dimension thresholds (quantity, price, amount), directional
allow-flags and the amount comparison mode. Every check here is a pure
function of (variance, policy); breaching a tolerance is never an error, it
only decides whether a discrepancy is raised.
"""
import enum
import logging
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from procure_ledger.core.money import to_decimal

logger = logging.getLogger(__name__)


class ToleranceMode(str, enum.Enum):
    ABSOLUTE = "ABSOLUTE"
    PERCENTAGE = "PERCENTAGE"
    WHICHEVER_IS_LOWER = "WHICHEVER_IS_LOWER"


@dataclass(frozen=True)
class TolerancePolicy:
    quantity_tolerance_percent: Decimal = Decimal("5")
    price_tolerance_percent: Decimal = Decimal("2")
    amount_tolerance_percent: Decimal = Decimal("5")
    amount_tolerance_absolute: Decimal = Decimal("0")
    allow_quantity_overage: bool = True
    allow_quantity_shortage: bool = True
    allow_price_increase: bool = True
    allow_price_decrease: bool = True
    comparison_mode: ToleranceMode = ToleranceMode.PERCENTAGE
    auto_approve_if_within_tolerance: bool = True
    auto_approve_max_amount: Decimal = Decimal("0")
    config_id: uuid.UUID | None = None

    @classmethod
    def from_config(cls, config) -> "TolerancePolicy":
        return cls(
            quantity_tolerance_percent=to_decimal(config.quantity_tolerance_percent),
            price_tolerance_percent=to_decimal(config.price_tolerance_percent),
            amount_tolerance_percent=to_decimal(config.amount_tolerance_percent),
            amount_tolerance_absolute=to_decimal(config.amount_tolerance_absolute),
            allow_quantity_overage=bool(config.allow_quantity_overage),
            allow_quantity_shortage=bool(config.allow_quantity_shortage),
            allow_price_increase=bool(config.allow_price_increase),
            allow_price_decrease=bool(config.allow_price_decrease),
            comparison_mode=ToleranceMode(config.comparison_mode),
            auto_approve_if_within_tolerance=bool(config.auto_approve_if_within_tolerance),
            auto_approve_max_amount=to_decimal(config.auto_approve_max_amount),
            config_id=config.id,
        )

    def doubled(self) -> "TolerancePolicy":
        """Same policy with every threshold at 2x; used for severity grading."""
        return replace(
            self,
            quantity_tolerance_percent=self.quantity_tolerance_percent * 2,
            price_tolerance_percent=self.price_tolerance_percent * 2,
            amount_tolerance_percent=self.amount_tolerance_percent * 2,
            amount_tolerance_absolute=self.amount_tolerance_absolute * 2,
        )


DEFAULT_POLICY = TolerancePolicy()


async def load_tolerance_policy(db: AsyncSession) -> TolerancePolicy:
    """Load the active tolerance config, preferring the one flagged default.

    Falls back to DEFAULT_POLICY when none is configured.
    """
    from procure_ledger.models.matching import ToleranceConfig

    stmt = (
        select(ToleranceConfig)
        .where(ToleranceConfig.is_active.is_(True))
        .order_by(ToleranceConfig.is_default.desc(), ToleranceConfig.created_at.desc())
        .limit(1)
    )
    config = (await db.execute(stmt)).scalars().first()
    if config is None:
        logger.info("No active tolerance config found; using defaults.")
        return DEFAULT_POLICY
    return TolerancePolicy.from_config(config)


# ─── Per-dimension checks ───

def _directional_check(
    variance_pct: Decimal,
    variance: Decimal,
    threshold: Decimal,
    allow_positive: bool,
    allow_negative: bool,
) -> bool:
    if variance > 0 and not allow_positive:
        return False
    if variance < 0 and not allow_negative:
        return False
    return abs(variance_pct) <= threshold


def check_quantity_tolerance(variance_pct, variance, policy: TolerancePolicy | None = None) -> bool:
    """Overage (positive) or shortage (negative) is rejected outright when disallowed."""
    policy = policy or DEFAULT_POLICY
    return _directional_check(
        to_decimal(variance_pct),
        to_decimal(variance),
        policy.quantity_tolerance_percent,
        policy.allow_quantity_overage,
        policy.allow_quantity_shortage,
    )


def check_price_tolerance(variance_pct, variance, policy: TolerancePolicy | None = None) -> bool:
    policy = policy or DEFAULT_POLICY
    return _directional_check(
        to_decimal(variance_pct),
        to_decimal(variance),
        policy.price_tolerance_percent,
        policy.allow_price_increase,
        policy.allow_price_decrease,
    )


def check_amount_tolerance(abs_variance, abs_variance_pct, policy: TolerancePolicy | None = None) -> bool:
    """Amount check on magnitudes; the mode picks absolute, percentage, or either."""
    policy = policy or DEFAULT_POLICY
    abs_variance = abs(to_decimal(abs_variance))
    abs_variance_pct = abs(to_decimal(abs_variance_pct))

    within_absolute = abs_variance <= policy.amount_tolerance_absolute
    within_percent = abs_variance_pct <= policy.amount_tolerance_percent

    mode = policy.comparison_mode
    if mode is ToleranceMode.ABSOLUTE:
        return within_absolute
    if mode is ToleranceMode.PERCENTAGE:
        return within_percent
    if mode is ToleranceMode.WHICHEVER_IS_LOWER:
        return within_absolute or within_percent
    raise ValueError(f"Unknown tolerance mode: {mode}")


# ─── Line evaluation ───

@dataclass(frozen=True)
class LineToleranceResult:
    quantity_ok: bool
    price_ok: bool
    amount_ok: bool

    @property
    def within_tolerance(self) -> bool:
        return self.quantity_ok and self.price_ok and self.amount_ok


def evaluate_line(variance, policy: TolerancePolicy | None = None) -> LineToleranceResult:
    """Run the three dimension checks against a LineVariance."""
    policy = policy or DEFAULT_POLICY
    return LineToleranceResult(
        quantity_ok=check_quantity_tolerance(
            variance.quantity_variance_pct, variance.quantity_variance, policy
        ),
        price_ok=check_price_tolerance(variance.price_variance_pct, variance.price_variance, policy),
        amount_ok=check_amount_tolerance(
            abs(variance.amount_variance), abs(variance.amount_variance_pct), policy
        ),
    )


def quantity_severity_is_high(variance_pct, policy: TolerancePolicy) -> bool:
    return abs(to_decimal(variance_pct)) > policy.quantity_tolerance_percent * 2


def price_severity_is_high(variance_pct, policy: TolerancePolicy) -> bool:
    return abs(to_decimal(variance_pct)) > policy.price_tolerance_percent * 2


def amount_severity_is_high(abs_variance, abs_variance_pct, policy: TolerancePolicy) -> bool:
    """HIGH when the amount still fails with every threshold doubled."""
    return not check_amount_tolerance(abs_variance, abs_variance_pct, policy.doubled())
