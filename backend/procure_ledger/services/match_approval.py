"""Approve or reject a three-way match.

PENDING -> APPROVED | REJECTED, both terminal. Approval posts the vendor bill
through the ledger gate and records the bill on the match; rejection has no
financial side effect. The decision is a conditional update on PENDING, and
for approval the bill posting is staged in the same commit, so a match that
someone else decided first never leaves a posted bill behind.
"""
import logging
import uuid

from sqlalchemy import update

from procure_ledger.core.auth import Capability
from procure_ledger.core.errors import ConflictError, NotFoundError, ValidationError
from procure_ledger.db.base import utcnow
from procure_ledger.models.matching import ApprovalStatus, MatchStatus, ThreeWayMatch
from procure_ledger.services.audit import AuditEvent, record_audit_safely
from procure_ledger.services.context import ServiceContext
from procure_ledger.services.state_machine import match_approval_state_machine
from procure_ledger.services.transactions import record_bill_posted, stage_bill_posting

logger = logging.getLogger(__name__)


def _snapshot(match: ThreeWayMatch) -> dict:
    return {"status": match.status, "approval_status": match.approval_status}


async def _load_pending(ctx: ServiceContext, match_id: uuid.UUID, target: ApprovalStatus) -> ThreeWayMatch:
    match = await ctx.db.get(ThreeWayMatch, match_id)
    if match is None:
        raise NotFoundError(f"Three-way match {match_id} not found")
    match_approval_state_machine.validate_transition(ApprovalStatus(match.approval_status), target)
    return match


async def _claim_decision(ctx: ServiceContext, match: ThreeWayMatch, values: dict) -> None:
    """Conditional PENDING -> decided update; staged, not committed."""
    result = await ctx.db.execute(
        update(ThreeWayMatch)
        .where(
            ThreeWayMatch.id == match.id,
            ThreeWayMatch.approval_status == ApprovalStatus.PENDING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            f"Three-way match {match.match_number} was already decided by someone else",
            code="MATCH_ALREADY_DECIDED",
            existing_id=match.id,
        )


async def approve_match(ctx: ServiceContext, match_id: uuid.UUID, comments: str | None = None) -> ThreeWayMatch:
    ctx.auth.require(Capability.APPROVE_MATCH, "approve three-way matches")
    db = ctx.db
    match = await _load_pending(ctx, match_id, ApprovalStatus.APPROVED)
    before = _snapshot(match)
    now = utcnow()

    try:
        await _claim_decision(
            ctx,
            match,
            {
                "approval_status": ApprovalStatus.APPROVED.value,
                "status": MatchStatus.APPROVED_WITH_VARIANCE.value,
                "approved_by": ctx.auth.user_id,
                "approved_by_name": ctx.auth.display_name,
                "approved_at": now,
                "approval_comments": comments,
                "posted_bill_id": match.vendor_bill_id,
                "resolved": True,
                "updated_at": now,
            },
        )
        bill, posted = await stage_bill_posting(db, match.vendor_bill_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(match)
    await db.refresh(bill)
    logger.info("Match %s approved by %s; bill %s posted", match.match_number, ctx.auth.user_id, bill.transaction_number)

    if posted:
        await record_bill_posted(ctx, bill)

    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "MATCH_APPROVED",
            "THREE_WAY_MATCH",
            match.id,
            entity_name=match.match_number,
            description=f"Approved 3-way match {match.match_number}",
            before=before,
            after=_snapshot(match),
            metadata={"bill_id": str(bill.id), "comments": comments},
        ),
    )
    return match


async def reject_match(ctx: ServiceContext, match_id: uuid.UUID, reason: str) -> ThreeWayMatch:
    ctx.auth.require(Capability.APPROVE_MATCH, "reject three-way matches")
    if not reason or not reason.strip():
        raise ValidationError("A rejection reason is required")
    match = await _load_pending(ctx, match_id, ApprovalStatus.REJECTED)
    before = _snapshot(match)
    now = utcnow()

    try:
        await _claim_decision(
            ctx,
            match,
            {
                "approval_status": ApprovalStatus.REJECTED.value,
                "status": MatchStatus.REJECTED.value,
                "rejected_by": ctx.auth.user_id,
                "rejected_by_name": ctx.auth.display_name,
                "rejected_at": now,
                "rejection_reason": reason.strip(),
                "updated_at": now,
            },
        )
        await ctx.db.commit()
    except Exception:
        await ctx.db.rollback()
        raise
    await ctx.db.refresh(match)
    logger.info("Match %s rejected by %s", match.match_number, ctx.auth.user_id)

    await record_audit_safely(
        ctx.audit,
        AuditEvent.by(
            ctx.auth,
            "MATCH_REJECTED",
            "THREE_WAY_MATCH",
            match.id,
            entity_name=match.match_number,
            description=f"Rejected 3-way match {match.match_number}: {reason.strip()}",
            before=before,
            after=_snapshot(match),
        ),
    )
    return match
