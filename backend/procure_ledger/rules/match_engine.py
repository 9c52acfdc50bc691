"""3-Way Match Engine: deterministic PO vs goods receipt vs vendor bill matching.

The evaluation half of this module is pure: it works on already-loaded rows
and a TolerancePolicy and returns a MatchEvaluation. perform_three_way_match
loads the documents, runs the evaluation and persists the match, its line
items and its discrepancies in one commit.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from procure_ledger.core.auth import Capability
from procure_ledger.core.errors import NotFoundError, ValidationError
from procure_ledger.core.money import ZERO, percentage_of, to_decimal
from procure_ledger.db.base import utcnow
from procure_ledger.models.matching import (
    ApprovalStatus,
    DiscrepancyType,
    LineStatus,
    MatchDiscrepancy,
    MatchLineItem,
    MatchStatus,
    MatchType,
    Severity,
    ThreeWayMatch,
)
from procure_ledger.rules.line_matcher import DescriptionLineMatcher, LineMatcher, index_receipt_items
from procure_ledger.rules.tolerance import (
    LineToleranceResult,
    TolerancePolicy,
    amount_severity_is_high,
    check_amount_tolerance,
    evaluate_line,
    load_tolerance_policy,
    price_severity_is_high,
    quantity_severity_is_high,
)

logger = logging.getLogger(__name__)

# Half a paisa: smaller differences are not a variance at all
CURRENCY_EPSILON = Decimal("0.005")


# ─── Result dataclasses ───

@dataclass
class LineVariance:
    ordered_quantity: Decimal
    received_quantity: Decimal
    invoiced_quantity: Decimal
    po_unit_price: Decimal
    invoice_unit_price: Decimal
    quantity_variance: Decimal
    quantity_variance_pct: Decimal
    price_variance: Decimal
    price_variance_pct: Decimal
    po_line_total: Decimal
    gr_line_total: Decimal
    invoice_line_total: Decimal
    amount_variance: Decimal
    amount_variance_pct: Decimal

    @property
    def quantity_matched(self) -> bool:
        return abs(self.quantity_variance) < CURRENCY_EPSILON

    @property
    def price_matched(self) -> bool:
        return abs(self.price_variance) < CURRENCY_EPSILON

    @property
    def amount_matched(self) -> bool:
        return abs(self.amount_variance) < CURRENCY_EPSILON

    @property
    def fully_matched(self) -> bool:
        return self.quantity_matched and self.price_matched and self.amount_matched


@dataclass
class DiscrepancyDraft:
    discrepancy_type: DiscrepancyType
    severity: Severity
    description: str
    field_name: str
    expected_value: str | None
    actual_value: str | None
    variance: Decimal | None
    variance_percentage: Decimal | None
    financial_impact: Decimal
    line_number: int | None = None

    @property
    def requires_approval(self) -> bool:
        return self.severity in (Severity.HIGH, Severity.CRITICAL)


@dataclass
class LineMatchResult:
    line_number: int
    description: str
    po_item: Any
    gr_item: Any
    bill_line: Any
    variance: LineVariance
    tolerance: LineToleranceResult
    status: LineStatus
    discrepancy_types: list[DiscrepancyType] = field(default_factory=list)


@dataclass
class MatchEvaluation:
    status: MatchStatus
    overall_match_percentage: Decimal
    total_lines: int
    matched_lines: int
    unmatched_lines: int
    lines: list[LineMatchResult]
    discrepancies: list[DiscrepancyDraft]
    po_amount: Decimal
    gr_amount: Decimal
    invoice_amount: Decimal
    variance: Decimal
    variance_percentage: Decimal
    po_tax_amount: Decimal
    invoice_tax_amount: Decimal
    within_tolerance: bool
    requires_approval: bool
    tolerance_config_id: uuid.UUID | None = None

    @property
    def critical_discrepancy_count(self) -> int:
        return sum(1 for d in self.discrepancies if d.severity is Severity.CRITICAL)

    @property
    def approval_status(self) -> ApprovalStatus:
        return ApprovalStatus.PENDING if self.requires_approval else ApprovalStatus.NOT_REQUIRED

    @property
    def tax_variance(self) -> Decimal:
        return self.invoice_tax_amount - self.po_tax_amount


# ─── Variance ───

def calculate_line_variance(
    invoiced_quantity,
    invoice_unit_price,
    invoice_line_total,
    received_quantity,
    po_unit_price,
    ordered_quantity=ZERO,
) -> LineVariance:
    invoiced_quantity = to_decimal(invoiced_quantity)
    invoice_unit_price = to_decimal(invoice_unit_price)
    invoice_line_total = to_decimal(invoice_line_total)
    received_quantity = to_decimal(received_quantity)
    po_unit_price = to_decimal(po_unit_price)
    ordered_quantity = to_decimal(ordered_quantity)

    qty_variance = invoiced_quantity - received_quantity
    price_variance = invoice_unit_price - po_unit_price
    gr_line_total = received_quantity * po_unit_price
    amount_variance = invoice_line_total - gr_line_total

    return LineVariance(
        ordered_quantity=ordered_quantity,
        received_quantity=received_quantity,
        invoiced_quantity=invoiced_quantity,
        po_unit_price=po_unit_price,
        invoice_unit_price=invoice_unit_price,
        quantity_variance=qty_variance,
        quantity_variance_pct=percentage_of(qty_variance, received_quantity),
        price_variance=price_variance,
        price_variance_pct=percentage_of(price_variance, po_unit_price),
        po_line_total=ordered_quantity * po_unit_price,
        gr_line_total=gr_line_total,
        invoice_line_total=invoice_line_total,
        amount_variance=amount_variance,
        amount_variance_pct=percentage_of(amount_variance, gr_line_total),
    )


def classify_line(variance: LineVariance, tolerance: LineToleranceResult) -> LineStatus:
    if variance.fully_matched:
        return LineStatus.MATCHED
    if tolerance.within_tolerance:
        return LineStatus.VARIANCE_WITHIN_TOLERANCE
    return LineStatus.VARIANCE_EXCEEDS_TOLERANCE


# ─── Discrepancies ───

def _severity(is_high: bool) -> Severity:
    return Severity.HIGH if is_high else Severity.MEDIUM


def build_line_discrepancies(
    line_number: int,
    unit: str | None,
    variance: LineVariance,
    tolerance: LineToleranceResult,
    policy: TolerancePolicy,
) -> list[DiscrepancyDraft]:
    """One discrepancy per dimension that failed tolerance with a non-trivial variance."""
    drafts: list[DiscrepancyDraft] = []
    impact = abs(variance.amount_variance)
    unit_label = f" {unit}" if unit else ""

    if not tolerance.quantity_ok and abs(variance.quantity_variance) > CURRENCY_EPSILON:
        drafts.append(
            DiscrepancyDraft(
                discrepancy_type=DiscrepancyType.QUANTITY_MISMATCH,
                severity=_severity(quantity_severity_is_high(variance.quantity_variance_pct, policy)),
                description=(
                    f"Quantity variance: {variance.quantity_variance:.2f}{unit_label} "
                    f"({variance.quantity_variance_pct:.1f}%)"
                ),
                field_name="quantity",
                expected_value=str(variance.received_quantity),
                actual_value=str(variance.invoiced_quantity),
                variance=variance.quantity_variance,
                variance_percentage=variance.quantity_variance_pct,
                financial_impact=impact,
                line_number=line_number,
            )
        )

    if not tolerance.price_ok and abs(variance.price_variance) > CURRENCY_EPSILON:
        drafts.append(
            DiscrepancyDraft(
                discrepancy_type=DiscrepancyType.PRICE_MISMATCH,
                severity=_severity(price_severity_is_high(variance.price_variance_pct, policy)),
                description=(
                    f"Unit price variance: {variance.price_variance:.2f} "
                    f"({variance.price_variance_pct:.1f}%)"
                ),
                field_name="unit_price",
                expected_value=str(variance.po_unit_price),
                actual_value=str(variance.invoice_unit_price),
                variance=variance.price_variance,
                variance_percentage=variance.price_variance_pct,
                financial_impact=impact,
                line_number=line_number,
            )
        )

    if not tolerance.amount_ok and abs(variance.amount_variance) > CURRENCY_EPSILON:
        drafts.append(
            DiscrepancyDraft(
                discrepancy_type=DiscrepancyType.AMOUNT_MISMATCH,
                severity=_severity(
                    amount_severity_is_high(
                        abs(variance.amount_variance), abs(variance.amount_variance_pct), policy
                    )
                ),
                description=(
                    f"Line amount variance: {variance.amount_variance:.2f} "
                    f"({variance.amount_variance_pct:.1f}%)"
                ),
                field_name="amount",
                expected_value=str(variance.gr_line_total),
                actual_value=str(variance.invoice_line_total),
                variance=variance.amount_variance,
                variance_percentage=variance.amount_variance_pct,
                financial_impact=impact,
                line_number=line_number,
            )
        )
    return drafts


def unmatched_line_discrepancy(line_number: int, description: str, amount, po_item_found: bool) -> DiscrepancyDraft:
    """CRITICAL discrepancy for an invoice line with no PO item or no receipt item."""
    amount = to_decimal(amount)
    if po_item_found:
        discrepancy_type = DiscrepancyType.ITEM_NOT_RECEIVED
        text = f'Item "{description}" was not received'
    else:
        discrepancy_type = DiscrepancyType.ITEM_NOT_ORDERED
        text = f'Item "{description}" is not on the purchase order'
    return DiscrepancyDraft(
        discrepancy_type=discrepancy_type,
        severity=Severity.CRITICAL,
        description=text,
        field_name="line_item",
        expected_value=None,
        actual_value=description,
        variance=amount,
        variance_percentage=None,
        financial_impact=amount,
        line_number=line_number,
    )


# ─── Aggregation ───

def determine_match_status(
    discrepancies: list[DiscrepancyDraft],
    matched_lines: int,
    total_lines: int,
    unmatched_lines: int,
    amount_within_tolerance: bool,
) -> MatchStatus:
    """``unmatched_lines`` counts invoice lines that could not be linked plus
    linked lines whose variance exceeds tolerance."""
    if not discrepancies and matched_lines == total_lines:
        return MatchStatus.MATCHED
    if amount_within_tolerance and unmatched_lines == 0:
        return MatchStatus.PARTIALLY_MATCHED
    if any(d.severity is Severity.CRITICAL for d in discrepancies):
        return MatchStatus.NOT_MATCHED
    return MatchStatus.PENDING_REVIEW


def aggregate_match(
    lines: list[LineMatchResult],
    discrepancies: list[DiscrepancyDraft],
    bill_line_count: int,
    po_amount,
    gr_amount,
    invoice_amount,
    invoice_total,
    po_tax_amount,
    invoice_tax_amount,
    policy: TolerancePolicy,
) -> MatchEvaluation:
    """Roll line results into the match header.

    ``invoice_amount`` is the bill net of tax, on the same basis as
    ``gr_amount``; ``invoice_total`` (tax included) is what the auto-approve
    ceiling is compared against. Line counts cover the linked lines only;
    bill lines that found no PO or receipt item add to ``unmatched_lines``.
    """
    total_lines = len(lines)
    matched_lines = sum(1 for line in lines if line.status is not LineStatus.VARIANCE_EXCEEDS_TOLERANCE)
    unmatched_lines = (bill_line_count - total_lines) + (total_lines - matched_lines)

    gr_amount = to_decimal(gr_amount)
    invoice_amount = to_decimal(invoice_amount)
    variance = invoice_amount - gr_amount
    variance_pct = percentage_of(variance, gr_amount)
    within_tolerance = check_amount_tolerance(abs(variance), abs(variance_pct), policy)

    status = determine_match_status(
        discrepancies, matched_lines, total_lines, unmatched_lines, within_tolerance
    )
    requires_approval = (
        not within_tolerance
        or bool(discrepancies)
        or (
            not policy.auto_approve_if_within_tolerance
            and to_decimal(invoice_total) > policy.auto_approve_max_amount
        )
    )
    percentage = percentage_of(matched_lines, total_lines).quantize(Decimal("0.01"))

    return MatchEvaluation(
        status=status,
        overall_match_percentage=percentage,
        total_lines=total_lines,
        matched_lines=matched_lines,
        unmatched_lines=unmatched_lines,
        lines=lines,
        discrepancies=discrepancies,
        po_amount=to_decimal(po_amount),
        gr_amount=gr_amount,
        invoice_amount=invoice_amount,
        variance=variance,
        variance_percentage=variance_pct,
        po_tax_amount=to_decimal(po_tax_amount),
        invoice_tax_amount=to_decimal(invoice_tax_amount),
        within_tolerance=within_tolerance,
        requires_approval=requires_approval,
        tolerance_config_id=policy.config_id,
    )


def receipt_amount(po_items: Iterable[Any], gr_items: Iterable[Any]) -> Decimal:
    """Σ received quantity × PO unit price over the receipt lines."""
    prices = {item.id: to_decimal(item.unit_price) for item in po_items}
    return sum(
        (to_decimal(gr.received_quantity) * prices.get(gr.po_line_item_id, ZERO) for gr in gr_items),
        ZERO,
    )


def evaluate_three_way_match(
    po,
    po_items: list,
    gr_items: list,
    bill,
    bill_lines: list,
    policy: TolerancePolicy,
    matcher: LineMatcher | None = None,
) -> MatchEvaluation:
    """Match every bill line against the PO and receipt and aggregate the result."""
    if not bill_lines:
        raise ValidationError(
            f"Vendor bill {bill.transaction_number} has no line items to match",
            code="NO_LINE_ITEMS",
        )

    matcher = matcher or DescriptionLineMatcher(po_items)
    receipt_index = index_receipt_items(gr_items)

    lines: list[LineMatchResult] = []
    discrepancies: list[DiscrepancyDraft] = []

    for line_number, bill_line in enumerate(bill_lines, start=1):
        po_item = matcher.find_po_item(bill_line.description)
        gr_item = receipt_index.get(po_item.id) if po_item is not None else None

        if po_item is None or gr_item is None:
            discrepancies.append(
                unmatched_line_discrepancy(
                    line_number, bill_line.description, bill_line.amount, po_item is not None
                )
            )
            continue

        variance = calculate_line_variance(
            invoiced_quantity=bill_line.quantity,
            invoice_unit_price=bill_line.unit_price,
            invoice_line_total=bill_line.amount,
            received_quantity=gr_item.received_quantity,
            po_unit_price=po_item.unit_price,
            ordered_quantity=po_item.quantity,
        )
        tolerance = evaluate_line(variance, policy)
        line_discrepancies = build_line_discrepancies(line_number, po_item.unit, variance, tolerance, policy)
        discrepancies.extend(line_discrepancies)
        lines.append(
            LineMatchResult(
                line_number=line_number,
                description=bill_line.description,
                po_item=po_item,
                gr_item=gr_item,
                bill_line=bill_line,
                variance=variance,
                tolerance=tolerance,
                status=classify_line(variance, tolerance),
                discrepancy_types=[d.discrepancy_type for d in line_discrepancies],
            )
        )

    return aggregate_match(
        lines=lines,
        discrepancies=discrepancies,
        bill_line_count=len(bill_lines),
        po_amount=po.grand_total,
        gr_amount=receipt_amount(po_items, gr_items),
        invoice_amount=bill.subtotal,
        invoice_total=bill.total_amount,
        po_tax_amount=po.total_tax,
        invoice_tax_amount=bill.tax_amount,
        policy=policy,
    )


# ─── Persistence ───

def _line_row(line: LineMatchResult) -> MatchLineItem:
    v = line.variance
    return MatchLineItem(
        line_number=line.line_number,
        description=line.description,
        po_line_item_id=line.po_item.id,
        gr_line_item_id=line.gr_item.id,
        bill_line_item_id=getattr(line.bill_line, "id", None),
        ordered_quantity=v.ordered_quantity,
        received_quantity=v.received_quantity,
        accepted_quantity=to_decimal(line.gr_item.accepted_quantity),
        invoiced_quantity=v.invoiced_quantity,
        unit=line.po_item.unit,
        quantity_matched=v.quantity_matched,
        quantity_variance=v.quantity_variance,
        quantity_variance_percentage=v.quantity_variance_pct,
        po_unit_price=v.po_unit_price,
        invoice_unit_price=v.invoice_unit_price,
        price_matched=v.price_matched,
        price_variance=v.price_variance,
        price_variance_percentage=v.price_variance_pct,
        po_line_total=v.po_line_total,
        gr_line_total=v.gr_line_total,
        invoice_line_total=v.invoice_line_total,
        amount_matched=v.amount_matched,
        amount_variance=v.amount_variance,
        amount_variance_percentage=v.amount_variance_pct,
        line_status=line.status.value,
        within_tolerance=line.tolerance.within_tolerance,
        discrepancy_types=[t.value for t in line.discrepancy_types],
    )


async def load_match(db, match_id: uuid.UUID) -> ThreeWayMatch | None:
    stmt = (
        select(ThreeWayMatch)
        .options(selectinload(ThreeWayMatch.line_items), selectinload(ThreeWayMatch.discrepancies))
        .where(ThreeWayMatch.id == match_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalars().first()


async def perform_three_way_match(
    ctx,
    po_id: uuid.UUID,
    gr_id: uuid.UUID,
    bill_id: uuid.UUID,
    match_type: MatchType = MatchType.AUTOMATIC,
    matcher: LineMatcher | None = None,
) -> ThreeWayMatch:
    """Reconcile PO, goods receipt and vendor bill and persist the match.

    The match, its line items and its discrepancies are committed together.
    Tolerance breaches come back as discrepancies and a non-terminal status,
    never as exceptions.
    """
    from procure_ledger.models.goods_receipt import GoodsReceipt
    from procure_ledger.models.purchase_order import PurchaseOrder
    from procure_ledger.models.transaction import FinancialTransaction, TransactionType
    from procure_ledger.services.audit import AuditEvent, record_audit_safely
    from procure_ledger.services.sequences import generate_document_number

    ctx.auth.require_any(
        (Capability.MANAGE_ACCOUNTING, Capability.MANAGE_PROCUREMENT), "run three-way matches"
    )
    db = ctx.db

    po = (
        await db.execute(
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.line_items))
            .where(PurchaseOrder.id == po_id, PurchaseOrder.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
    ).scalars().first()
    gr = (
        await db.execute(
            select(GoodsReceipt)
            .options(selectinload(GoodsReceipt.line_items))
            .where(GoodsReceipt.id == gr_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().first()
    bill = (
        await db.execute(
            select(FinancialTransaction)
            .options(selectinload(FinancialTransaction.line_items))
            .where(FinancialTransaction.id == bill_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().first()

    if po is None:
        raise NotFoundError(f"Purchase order {po_id} not found")
    if gr is None:
        raise NotFoundError(f"Goods receipt {gr_id} not found")
    if bill is None:
        raise NotFoundError(f"Vendor bill {bill_id} not found")
    if bill.transaction_type != TransactionType.VENDOR_BILL.value:
        raise ValidationError(f"Transaction {bill.transaction_number} is not a vendor bill")
    if gr.po_id != po.id:
        raise ValidationError(
            f"Goods receipt {gr.gr_number} does not belong to purchase order {po.po_number}",
            code="GR_PO_MISMATCH",
        )
    if bill.entity_id != po.vendor_id:
        raise ValidationError(
            f"Vendor bill {bill.transaction_number} is from a different vendor than purchase order {po.po_number}",
            code="VENDOR_MISMATCH",
        )

    policy = await load_tolerance_policy(db)
    evaluation = evaluate_three_way_match(
        po, list(po.line_items), list(gr.line_items), bill, list(bill.line_items), policy, matcher
    )

    match_number = await generate_document_number(db, "TWM")
    now = utcnow()
    match = ThreeWayMatch(
        id=uuid.uuid4(),
        match_number=match_number,
        purchase_order_id=po.id,
        goods_receipt_id=gr.id,
        vendor_bill_id=bill.id,
        vendor_id=po.vendor_id,
        vendor_name=po.vendor_name,
        po_number=po.po_number,
        gr_number=gr.gr_number,
        vendor_bill_number=bill.transaction_number,
        vendor_invoice_number=bill.vendor_invoice_number,
        status=evaluation.status.value,
        overall_match_percentage=evaluation.overall_match_percentage,
        po_amount=evaluation.po_amount,
        gr_amount=evaluation.gr_amount,
        invoice_amount=evaluation.invoice_amount,
        variance=evaluation.variance,
        variance_percentage=evaluation.variance_percentage,
        po_tax_amount=evaluation.po_tax_amount,
        invoice_tax_amount=evaluation.invoice_tax_amount,
        tax_variance=evaluation.tax_variance,
        total_lines=evaluation.total_lines,
        matched_lines=evaluation.matched_lines,
        unmatched_lines=evaluation.unmatched_lines,
        discrepancy_count=len(evaluation.discrepancies),
        critical_discrepancy_count=evaluation.critical_discrepancy_count,
        within_tolerance=evaluation.within_tolerance,
        tolerance_config_id=evaluation.tolerance_config_id,
        requires_approval=evaluation.requires_approval,
        approval_status=evaluation.approval_status.value,
        resolved=evaluation.status is MatchStatus.MATCHED,
        match_type=match_type.value,
        matched_by=ctx.auth.user_id,
        matched_by_name=ctx.auth.display_name,
        matched_at=now,
    )

    rows_by_line: dict[int, MatchLineItem] = {}
    try:
        db.add(match)
        for line in evaluation.lines:
            row = _line_row(line)
            row.id = uuid.uuid4()
            row.match_id = match.id
            rows_by_line[line.line_number] = row
            db.add(row)
        for draft in evaluation.discrepancies:
            line_row = rows_by_line.get(draft.line_number)
            db.add(
                MatchDiscrepancy(
                    match_id=match.id,
                    match_line_item_id=line_row.id if line_row is not None else None,
                    discrepancy_type=draft.discrepancy_type.value,
                    severity=draft.severity.value,
                    description=draft.description,
                    field_name=draft.field_name,
                    expected_value=draft.expected_value,
                    actual_value=draft.actual_value,
                    variance=draft.variance,
                    variance_percentage=draft.variance_percentage,
                    financial_impact=draft.financial_impact,
                    requires_approval=draft.requires_approval,
                )
            )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(
            "Failed to persist 3-way match for PO %s, GR %s, bill %s", po_id, gr_id, bill_id, exc_info=True
        )
        raise

    logger.info(
        "3-way match %s created: status=%s match=%s%% discrepancies=%d",
        match_number,
        evaluation.status.value,
        evaluation.overall_match_percentage,
        len(evaluation.discrepancies),
    )
    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "MATCH_CREATED",
            "THREE_WAY_MATCH",
            match.id,
            entity_name=match_number,
            description=f"Created 3-way match for PO {po.po_number}, GR {gr.gr_number}",
            after={"status": evaluation.status.value, "approval_status": evaluation.approval_status.value},
            metadata={
                "purchase_order_id": str(po.id),
                "goods_receipt_id": str(gr.id),
                "vendor_bill_id": str(bill.id),
                "discrepancy_count": len(evaluation.discrepancies),
                "invoice_amount": str(evaluation.invoice_amount),
                "variance": str(evaluation.variance),
            },
        ),
    )
    return match
