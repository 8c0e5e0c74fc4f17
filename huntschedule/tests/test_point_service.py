"""
Tests for the point ledger.
"""

import pytest

from huntschedule.services import point_service
from huntschedule.services.errors import ErrorCode, NotFoundError, ValidationError
from huntschedule.utils.constants import REASON_MANUAL_ADJUSTMENT, REASON_SLOT_CLAIM


@pytest.mark.asyncio
async def test_credit_and_debit_append_transactions(db_session, world):
    user_id = world["alice"].user_id

    credit = await point_service.credit(db_session, user_id, 25, REASON_MANUAL_ADJUSTMENT)
    assert credit["amount"] == 25
    assert credit["balance_after"] == 125

    debit = await point_service.debit(db_session, user_id, 40, REASON_SLOT_CLAIM)
    assert debit["amount"] == -40
    assert debit["balance_after"] == 85

    assert await point_service.get_balance(db_session, user_id) == 85
    assert await point_service.get_ledger_sum(db_session, user_id) == 85


@pytest.mark.asyncio
async def test_debit_ignores_sign_of_amount(db_session, world):
    debit = await point_service.debit(db_session, world["bob"].user_id, -30, REASON_SLOT_CLAIM)
    assert debit["amount"] == -30
    assert await point_service.get_balance(db_session, world["bob"].user_id) == 70


@pytest.mark.asyncio
async def test_debit_beyond_balance_fails_without_writing(db_session, world):
    user_id = world["alice"].user_id
    before = await point_service.list_transactions(db_session, user_id=user_id)

    with pytest.raises(ValidationError) as exc:
        await point_service.debit(db_session, user_id, 101, REASON_SLOT_CLAIM)
    assert exc.value.code == ErrorCode.INSUFFICIENT_POINTS
    assert exc.value.params == {"required": 101, "balance": 100}

    assert await point_service.get_balance(db_session, user_id) == 100
    assert len(await point_service.list_transactions(db_session, user_id=user_id)) == len(before)


@pytest.mark.asyncio
async def test_debit_of_entire_balance_is_allowed(db_session, world):
    await point_service.debit(db_session, world["alice"].user_id, 100, REASON_SLOT_CLAIM)
    assert await point_service.get_balance(db_session, world["alice"].user_id) == 0


@pytest.mark.asyncio
async def test_zero_amount_is_rejected(db_session, world):
    with pytest.raises(ValidationError) as exc:
        await point_service.credit(db_session, world["alice"].user_id, 0, REASON_MANUAL_ADJUSTMENT)
    assert exc.value.code == ErrorCode.INVALID_AMOUNT


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(db_session, world):
    with pytest.raises(NotFoundError) as exc:
        await point_service.credit(db_session, 9999, 5, REASON_MANUAL_ADJUSTMENT)
    assert exc.value.code == ErrorCode.USER_NOT_FOUND

    with pytest.raises(NotFoundError):
        await point_service.reconcile_balance(db_session, 9999)


# ──────────────────────────────────────────────────────────────
# Admin adjustments
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_adjust_points_records_admin(db_session, world):
    tx = await point_service.adjust_points(db_session, world["admin"], world["bob"].user_id, -15, "Typo fix")
    assert tx["amount"] == -15
    assert tx["reason"] == "Typo fix"
    assert tx["admin_id"] == world["admin"].user_id

    tx = await point_service.adjust_points(db_session, world["admin"], world["bob"].user_id, 5)
    assert tx["reason"] == REASON_MANUAL_ADJUSTMENT
    assert await point_service.get_balance(db_session, world["bob"].user_id) == 90


@pytest.mark.asyncio
async def test_adjust_points_requires_admin(db_session, world):
    with pytest.raises(ValidationError) as exc:
        await point_service.adjust_points(db_session, world["alice"], world["alice"].user_id, 1000)
    assert exc.value.code == ErrorCode.NOT_AUTHORIZED


# ──────────────────────────────────────────────────────────────
# Reconciliation and history
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reconcile_reports_in_sync(db_session, world):
    await point_service.debit(db_session, world["alice"].user_id, 7, REASON_SLOT_CLAIM)
    result = await point_service.reconcile_balance(db_session, world["alice"].user_id)
    assert result == {
        "user_id": world["alice"].user_id,
        "cached_balance": 93,
        "ledger_balance": 93,
        "in_sync": True,
    }


@pytest.mark.asyncio
async def test_reconcile_detects_drift(db_session, world):
    from sqlalchemy import update

    from huntschedule.database.models import User

    await db_session.execute(update(User).where(User.id == world["bob"].user_id).values(points=500))
    result = await point_service.reconcile_balance(db_session, world["bob"].user_id)
    assert result["in_sync"] is False
    assert result["cached_balance"] == 500
    assert result["ledger_balance"] == 100


@pytest.mark.asyncio
async def test_list_transactions_newest_first(db_session, world):
    user_id = world["alice"].user_id
    await point_service.debit(db_session, user_id, 1, REASON_SLOT_CLAIM)
    await point_service.debit(db_session, user_id, 2, REASON_SLOT_CLAIM)

    history = await point_service.list_transactions(db_session, user_id=user_id)
    assert [tx["amount"] for tx in history] == [-2, -1, 100]

    paged = await point_service.list_transactions(db_session, user_id=user_id, limit=1, offset=1)
    assert [tx["amount"] for tx in paged] == [-1]

    everyone = await point_service.list_transactions(db_session)
    assert {tx["user_id"] for tx in everyone} == {world["alice"].user_id, world["bob"].user_id}
