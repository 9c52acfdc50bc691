"""Goods receipt lifecycle: inspection, completion and payment approval."""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import INSPECTION_DATE, audited_actions, created_task_categories, load_purchase_order, receipt_input
from procure_ledger.core.config import Settings
from procure_ledger.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from procure_ledger.models.goods_receipt import BillClaimState, GoodsReceipt, GoodsReceiptStatus, OverallCondition
from procure_ledger.models.purchase_order import DeliveryStatus
from procure_ledger.models.transaction import FinancialTransaction, PaymentStatus, TransactionStatus
from procure_ledger.services import goods_receipts
from procure_ledger.services.transactions import load_transaction


async def _receipt_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(GoodsReceipt))


# ─── Create ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_records_inspection_and_updates_po(db, ctx_for, purchase_order, audit):
    gr_id = await goods_receipts.create_goods_receipt(
        ctx_for("INSPECTOR"), receipt_input(purchase_order, [(100, 100, 0), (40, 40, 0)])
    )
    gr = await goods_receipts.get_goods_receipt(db, gr_id)

    assert gr.status == GoodsReceiptStatus.IN_PROGRESS.value
    assert gr.gr_number.startswith("GR/")
    assert gr.overall_condition == OverallCondition.ACCEPTED.value
    assert gr.bill_claim.is_unset
    assert [item.description for item in gr.line_items] == ["Steel Plate 3mm", "TMT Bars 12mm"]

    po = await load_purchase_order(db, purchase_order.id)
    assert [item.quantity_delivered for item in po.line_items] == [Decimal("100"), Decimal("40")]
    assert {item.delivery_status for item in po.line_items} == {DeliveryStatus.COMPLETE.value}
    assert audited_actions(audit) == ["GR_CREATED"]


@pytest.mark.asyncio
async def test_partial_delivery_with_rejections(db, ctx_for, purchase_order):
    gr_id = await goods_receipts.create_goods_receipt(
        ctx_for("INSPECTOR"), receipt_input(purchase_order, [(60, 55, 5), (0, 0, 0)])
    )
    gr = await goods_receipts.get_goods_receipt(db, gr_id)

    assert gr.overall_condition == OverallCondition.CONDITIONALLY_ACCEPTED.value
    assert gr.has_issues is True
    assert gr.issues_summary == "damaged on arrival"

    plate, bars = (await load_purchase_order(db, purchase_order.id)).line_items
    assert plate.delivery_status == DeliveryStatus.PARTIAL.value
    assert plate.quantity_accepted == Decimal("55")
    assert plate.quantity_rejected == Decimal("5")
    assert bars.delivery_status == DeliveryStatus.PENDING.value


@pytest.mark.asyncio
async def test_everything_rejected(db, ctx_for, purchase_order):
    gr_id = await goods_receipts.create_goods_receipt(
        ctx_for("INSPECTOR"), receipt_input(purchase_order, [(10, 0, 10), (5, 0, 5)])
    )
    gr = await goods_receipts.get_goods_receipt(db, gr_id)
    assert gr.overall_condition == OverallCondition.REJECTED.value


@pytest.mark.asyncio
async def test_over_delivery_across_receipts_is_refused(db, ctx_for, purchase_order):
    ctx = ctx_for("INSPECTOR")
    next_day = INSPECTION_DATE + timedelta(days=1)
    first = receipt_input(purchase_order, [(60, 60, 0), (0, 0, 0)])
    too_many = receipt_input(purchase_order, [(50, 50, 0), (0, 0, 0)], inspection_date=next_day)
    plate_id = purchase_order.line_items[0].id

    await goods_receipts.create_goods_receipt(ctx, first)
    with pytest.raises(ValidationError) as exc:
        await goods_receipts.create_goods_receipt(ctx, too_many)

    assert exc.value.code == "OVER_DELIVERY"
    assert "only 40" in exc.value.message
    assert await _receipt_count(db) == 1
    po = await load_purchase_order(db, purchase_order.id)
    assert next(i for i in po.line_items if i.id == plate_id).quantity_delivered == Decimal("60")


@pytest.mark.asyncio
async def test_failed_create_releases_idempotency_key(db, ctx_for, purchase_order):
    ctx = ctx_for("INSPECTOR")
    bad = receipt_input(purchase_order, [(10, 12, 0), (0, 0, 0)])
    good = receipt_input(purchase_order, [(10, 10, 0), (0, 0, 0)])

    with pytest.raises(ValidationError, match="cannot exceed received"):
        await goods_receipts.create_goods_receipt(ctx, bad)

    gr_id = await goods_receipts.create_goods_receipt(ctx, good)
    assert (await goods_receipts.get_goods_receipt(db, gr_id)).line_items[0].accepted_quantity == Decimal("10")


@pytest.mark.asyncio
async def test_retry_on_same_day_returns_first_receipt(db, ctx_for, purchase_order):
    ctx = ctx_for("INSPECTOR")
    data = receipt_input(purchase_order, [(30, 30, 0), (10, 10, 0)])

    first = await goods_receipts.create_goods_receipt(ctx, data)
    second = await goods_receipts.create_goods_receipt(ctx, data)

    assert first == second
    assert await _receipt_count(db) == 1
    po = await load_purchase_order(db, purchase_order.id)
    assert po.line_items[0].quantity_delivered == Decimal("30")


@pytest.mark.asyncio
async def test_item_from_another_order_is_rejected(ctx_for, purchase_order):
    data = receipt_input(purchase_order, [(1, 1, 0)])
    data.items[0].po_line_item_id = uuid.uuid4()
    with pytest.raises(ValidationError) as exc:
        await goods_receipts.create_goods_receipt(ctx_for("INSPECTOR"), data)
    assert exc.value.code == "UNKNOWN_PO_ITEM"


@pytest.mark.asyncio
async def test_unknown_purchase_order(ctx_for, purchase_order):
    data = receipt_input(purchase_order, [(1, 1, 0)])
    data.po_id = uuid.uuid4()
    with pytest.raises(NotFoundError):
        await goods_receipts.create_goods_receipt(ctx_for("INSPECTOR"), data)


@pytest.mark.asyncio
async def test_auditor_cannot_inspect(ctx_for, purchase_order):
    with pytest.raises(PermissionDeniedError):
        await goods_receipts.create_goods_receipt(
            ctx_for("AUDITOR"), receipt_input(purchase_order, [(1, 1, 0), (0, 0, 0)])
        )


# ─── Complete ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_complete_assigns_payment_task_to_buyer(ctx_for, purchase_order, users, tasks, audit):
    gr = await _received(ctx_for, purchase_order)
    completed = await goods_receipts.complete_goods_receipt(ctx_for("PROCUREMENT"), gr)

    assert completed.status == GoodsReceiptStatus.COMPLETED.value
    assert completed.completed_at is not None
    assert created_task_categories(tasks) == ["GR_READY_FOR_PAYMENT"]
    task = tasks.create_task.await_args.args[0]
    assert task.user_id == users["PROCUREMENT"].id
    assert task.priority == "MEDIUM"
    assert audited_actions(audit) == ["GR_CREATED", "GR_COMPLETED"]


@pytest.mark.asyncio
async def test_completed_receipt_cannot_complete_again(ctx_for, purchase_order):
    gr = await _received(ctx_for, purchase_order)
    await goods_receipts.complete_goods_receipt(ctx_for("PROCUREMENT"), gr)
    with pytest.raises(ConflictError):
        await goods_receipts.complete_goods_receipt(ctx_for("PROCUREMENT"), gr)


@pytest.mark.asyncio
async def test_inspector_cannot_complete(ctx_for, purchase_order):
    gr = await _received(ctx_for, purchase_order)
    with pytest.raises(PermissionDeniedError):
        await goods_receipts.complete_goods_receipt(ctx_for("INSPECTOR"), gr)


@pytest.mark.asyncio
async def test_task_failure_does_not_block_completion(ctx_for, purchase_order, tasks):
    tasks.create_task.side_effect = RuntimeError("notification store down")
    gr = await _received(ctx_for, purchase_order)
    completed = await goods_receipts.complete_goods_receipt(ctx_for("PROCUREMENT"), gr)
    assert completed.status == GoodsReceiptStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_completion_creates_bill_when_enabled(db, ctx_for, purchase_order, accounts):
    auto = Settings(AUTO_CREATE_BILL_ON_COMPLETION=True, AUTO_THREE_WAY_MATCH_ON_BILL=False)
    gr = await _received(ctx_for, purchase_order)
    completed = await goods_receipts.complete_goods_receipt(ctx_for("PROCUREMENT", settings=auto), gr)

    assert completed.bill_claim_state == BillClaimState.SET.value
    bill = await load_transaction(db, completed.bill_id)
    assert bill.status == TransactionStatus.POSTED.value
    assert bill.goods_receipt_id == completed.id


@pytest.mark.asyncio
async def test_failed_automatic_bill_leaves_receipt_completed_and_unclaimed(db, ctx_for, purchase_order):
    # no chart of accounts, so bill GL generation fails
    auto = Settings(AUTO_CREATE_BILL_ON_COMPLETION=True, AUTO_THREE_WAY_MATCH_ON_BILL=False)
    gr = await _received(ctx_for, purchase_order)
    completed = await goods_receipts.complete_goods_receipt(ctx_for("PROCUREMENT", settings=auto), gr)

    assert completed.status == GoodsReceiptStatus.COMPLETED.value
    assert completed.bill_claim_state == BillClaimState.UNSET.value
    assert completed.bill_id is None
    assert await db.scalar(select(func.count()).select_from(FinancialTransaction)) == 0


async def _received(ctx_for, po, quantities=((100, 100, 0), (40, 40, 0))) -> uuid.UUID:
    return await goods_receipts.create_goods_receipt(ctx_for("INSPECTOR"), receipt_input(po, list(quantities)))


# ─── Payment approval ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approve_for_payment_pays_the_bill(db, ctx_for, purchase_order, receive_and_bill, accounts, tasks,
                                                 users):
    gr, bill = await receive_and_bill(purchase_order, [(100, 100, 0), (40, 40, 0)])
    tasks.create_task.reset_mock()

    approved = await goods_receipts.approve_goods_receipt_for_payment(
        ctx_for("ACCOUNTANT"), gr.id, accounts["1010"].id
    )

    assert approved.approved_for_payment is True
    assert approved.payment_approved_by == users["ACCOUNTANT"].id
    assert approved.payment_id is not None

    paid_bill = await load_transaction(db, bill.id)
    assert paid_bill.status == TransactionStatus.PAID.value
    assert paid_bill.payment_status == PaymentStatus.PAID.value
    assert paid_bill.outstanding_amount == 0

    payment = await load_transaction(db, approved.payment_id)
    assert payment.amount == Decimal("58292.00")
    assert sum(e.debit for e in payment.entries) == sum(e.credit for e in payment.entries)

    assert created_task_categories(tasks) == ["GR_PAYMENT_APPROVED"]
    assert tasks.create_task.await_args.args[0].user_id == users["INSPECTOR"].id


@pytest.mark.asyncio
async def test_approve_for_payment_twice_conflicts(ctx_for, purchase_order, receive_and_bill, accounts):
    gr, _ = await receive_and_bill(purchase_order, [(100, 100, 0), (40, 40, 0)])
    bank_id = accounts["1010"].id
    await goods_receipts.approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), gr.id, bank_id)

    with pytest.raises(ConflictError) as exc:
        await goods_receipts.approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), gr.id, bank_id)
    assert exc.value.code == "ALREADY_APPROVED"
    assert exc.value.existing_id == gr.id


@pytest.mark.asyncio
async def test_unknown_bank_account_is_checked_first(ctx_for, accounts):
    with pytest.raises(NotFoundError) as exc:
        await goods_receipts.approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), uuid.uuid4(), uuid.uuid4())
    assert exc.value.code == "BANK_ACCOUNT_NOT_FOUND"


@pytest.mark.asyncio
async def test_payment_needs_a_bank_account(ctx_for, purchase_order, receive_and_bill, accounts):
    gr, _ = await receive_and_bill(purchase_order, [(100, 100, 0), (40, 40, 0)])
    with pytest.raises(ValidationError) as exc:
        await goods_receipts.approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), gr.id, accounts["2100"].id)
    assert exc.value.code == "NOT_A_BANK_ACCOUNT"


@pytest.mark.asyncio
async def test_payment_needs_completed_receipt(ctx_for, purchase_order, receive, accounts):
    gr = await receive(purchase_order, [(100, 100, 0), (40, 40, 0)], complete=False)
    with pytest.raises(ValidationError) as exc:
        await goods_receipts.approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), gr.id, accounts["1010"].id)
    assert exc.value.code == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_payment_needs_a_bill(ctx_for, purchase_order, receive, accounts):
    gr = await receive(purchase_order, [(100, 100, 0), (40, 40, 0)])
    with pytest.raises(ValidationError) as exc:
        await goods_receipts.approve_goods_receipt_for_payment(ctx_for("ACCOUNTANT"), gr.id, accounts["1010"].id)
    assert exc.value.code == "BILL_NOT_FOUND"
