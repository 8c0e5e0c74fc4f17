"""
Tests for the booking core entry points.

Every operation here runs in its own session and transaction, so these tests
use committed fixtures and read results back through fresh sessions.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError

from huntschedule.database.models import Character, Notification, Request, RequestPartyMember, RequestStatus
from huntschedule.services import booking_core, notification_service, point_service, request_service
from huntschedule.services.conflict_arbiter import ExternalMember, KnownMember
from huntschedule.services.errors import ErrorCode, ErrorKind, ServiceResult, ValidationError
from huntschedule.utils.constants import REASON_MANUAL_ADJUSTMENT


async def _balance(session_maker, user_id):
    async with session_maker() as session:
        return await point_service.get_balance(session, user_id)


async def _request_status(session_maker, request_id):
    async with session_maker() as session:
        return (await request_service.get_request(session, request_id))["status"]


# ──────────────────────────────────────────────────────────────
# Unit of work
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_successful_operation_commits(session_maker, committed_world):
    user_id = committed_world["alice"].user_id

    async def _op(session):
        return await point_service.credit(session, user_id, 5, REASON_MANUAL_ADJUSTMENT)

    result = await booking_core.run_operation("credit", _op, session_maker)

    assert result.success is True
    assert result.data["balance_after"] == 105
    assert await _balance(session_maker, user_id) == 105


@pytest.mark.asyncio
async def test_failed_operation_rolls_back_everything(session_maker, committed_world):
    user_id = committed_world["alice"].user_id

    async def _op(session):
        await point_service.credit(session, user_id, 50, REASON_MANUAL_ADJUSTMENT)
        raise ValidationError(ErrorCode.INVALID_AMOUNT, "Changed my mind", {"amount": 50})

    result = await booking_core.run_operation("credit_then_fail", _op, session_maker)

    assert result.success is False
    assert result.kind == ErrorKind.VALIDATION
    assert result.code == ErrorCode.INVALID_AMOUNT
    assert result.params == {"amount": 50}
    assert await _balance(session_maker, user_id) == 100


@pytest.mark.asyncio
async def test_storage_errors_map_to_unavailable(session_maker):
    async def _op(session):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

    result = await booking_core.run_operation("broken", _op, session_maker)

    assert result.success is False
    assert result.kind == ErrorKind.UNAVAILABLE
    assert result.code == ErrorCode.STORAGE_UNAVAILABLE


class DeadlockDetected(Exception):
    pgcode = "40P01"


class UniqueViolation(Exception):
    pgcode = "23505"


@pytest.mark.asyncio
async def test_deadlocks_map_to_retryable_result(session_maker, committed_world):
    user_id = committed_world["alice"].user_id

    async def _op(session):
        await point_service.credit(session, user_id, 20, REASON_MANUAL_ADJUSTMENT)
        raise DBAPIError("UPDATE requests", {}, DeadlockDetected("deadlock detected"))

    result = await booking_core.run_operation("deadlocked", _op, session_maker)

    assert result.success is False
    assert result.kind == ErrorKind.UNAVAILABLE
    assert result.code == ErrorCode.TRANSACTION_RETRY
    assert result.params == {"sqlstate": "40P01"}
    assert await _balance(session_maker, user_id) == 100


@pytest.mark.asyncio
async def test_other_database_errors_propagate(session_maker):
    async def _op(session):
        raise DBAPIError("INSERT INTO requests", {}, UniqueViolation("duplicate key"))

    with pytest.raises(DBAPIError):
        await booking_core.run_operation("duplicate", _op, session_maker)


@pytest.mark.asyncio
async def test_programming_errors_propagate(session_maker):
    async def _op(session):
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        await booking_core.run_operation("buggy", _op, session_maker)


def test_service_result_to_dict():
    assert ServiceResult.ok({"id": 1}).to_dict() == {"success": True, "data": {"id": 1}}

    failed = ServiceResult.fail(ValidationError(ErrorCode.EMPTY_PARTY, params={"size": 0}))
    assert failed.to_dict() == {
        "success": False,
        "error": {
            "kind": "validation",
            "code": "empty_party",
            "message": "Empty party",
            "params": {"size": 0},
        },
    }


# ──────────────────────────────────────────────────────────────
# Request operations
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_request_lifecycle_through_core(session_maker, committed_world, make_draft):
    world = committed_world

    created = await booking_core.create_request(world["alice"], make_draft())
    assert created.success is True
    request_id = created.data["id"]

    approved = await booking_core.approve_request(world["admin"], request_id)
    assert approved.success is True
    assert approved.data["points_charged"] == 10
    assert await _balance(session_maker, world["alice"].user_id) == 90

    cancelled = await booking_core.cancel_request(world["admin"], request_id)
    assert cancelled.success is True
    assert await _balance(session_maker, world["alice"].user_id) == 100

    listed = await booking_core.list_requests(server_id=world["server_id"], status="cancelled")
    assert [r["id"] for r in listed.data] == [request_id]


@pytest.mark.asyncio
async def test_error_kinds_through_core(committed_world, make_draft):
    world = committed_world

    missing = await booking_core.approve_request(world["admin"], 31337)
    assert (missing.kind, missing.code) == (ErrorKind.NOT_FOUND, ErrorCode.REQUEST_NOT_FOUND)

    created = await booking_core.create_request(world["alice"], make_draft())
    forbidden = await booking_core.approve_request(world["alice"], created.data["id"])
    assert (forbidden.kind, forbidden.code) == (ErrorKind.VALIDATION, ErrorCode.NOT_AUTHORIZED)

    await booking_core.approve_request(world["admin"], created.data["id"])
    taken = await booking_core.create_request(world["bob"], make_draft(user="bob"))
    assert (taken.kind, taken.code) == (ErrorKind.CONFLICT, ErrorCode.CONFLICT_WITH_APPROVED_REQUEST)

    rejected = await booking_core.reject_request(world["admin"], created.data["id"], "too late")
    assert (rejected.kind, rejected.code) == (ErrorKind.VALIDATION, ErrorCode.INVALID_STATE_TRANSITION)


async def _row_counts(session_maker):
    async with session_maker() as session:
        return {
            model.__tablename__: (await session.execute(select(func.count()).select_from(model))).scalar_one()
            for model in (Request, RequestPartyMember, Character)
        }


@pytest.mark.asyncio
async def test_oversized_party_writes_nothing(session_maker, committed_world, make_draft, counting_validator):
    validator, calls = counting_validator
    characters = committed_world["characters"]
    before = await _row_counts(session_maker)
    members = [
        KnownMember(character_id=characters["alice_knight"], is_leader=True),
        KnownMember(character_id=characters["alice_druid"]),
        KnownMember(character_id=characters["bob_paladin"]),
        ExternalMember(name="Knight of Antica"),
        ExternalMember(name="Druid of Antica"),
    ]

    result = await booking_core.create_request(committed_world["alice"], make_draft(members=members), validator)

    assert result.success is False
    assert result.kind == ErrorKind.VALIDATION
    assert result.code == ErrorCode.PARTY_TOO_LARGE
    assert await _row_counts(session_maker) == before
    assert calls == []


@pytest.mark.asyncio
async def test_failed_notification_does_not_undo_approval(monkeypatch, session_maker, committed_world, make_draft):
    world = committed_world
    created = await booking_core.create_request(world["alice"], make_draft())

    async def broken_create_notification(session, user_id, type, title, message, data=None):
        session.add(Notification(user_id=user_id, type=type, title=None, message=None))
        await session.flush()

    monkeypatch.setattr(notification_service, "create_notification", broken_create_notification)

    result = await booking_core.approve_request(world["admin"], created.data["id"])

    assert result.success is True
    assert await _request_status(session_maker, created.data["id"]) == RequestStatus.APPROVED.value
    assert await _balance(session_maker, world["alice"].user_id) == 90
    async with session_maker() as session:
        count = await session.execute(select(func.count()).select_from(Notification))
        assert count.scalar_one() == 0


@pytest.mark.asyncio
async def test_insufficient_points_leaves_request_pending(session_maker, committed_world, make_draft):
    world = committed_world
    created = await booking_core.create_request(world["alice"], make_draft())
    drained = await booking_core.debit_points(world["admin"], world["alice"].user_id, 95, REASON_MANUAL_ADJUSTMENT)
    assert drained.success is True

    result = await booking_core.approve_request(world["admin"], created.data["id"])

    assert result.code == ErrorCode.INSUFFICIENT_POINTS
    assert await _request_status(session_maker, created.data["id"]) == "pending"
    assert await _balance(session_maker, world["alice"].user_id) == 5


@pytest.mark.asyncio
async def test_unique_index_violation_becomes_conflict_and_rolls_back_debit(
    session_maker, committed_world, make_draft, monkeypatch
):
    """Even if the re-check is bypassed, the database refuses a second approval."""
    world = committed_world
    first = await booking_core.create_request(world["alice"], make_draft())
    await booking_core.approve_request(world["admin"], first.data["id"])

    # A pending row that slipped in on the approved tuple
    async with session_maker() as session:
        stray = Request(
            user_id=world["bob"].user_id,
            server_id=world["server_id"],
            respawn_id=world["respawn_id"],
            slot_id=world["slot_id"],
            period_id=world["period_id"],
            status=RequestStatus.PENDING.value,
        )
        session.add(stray)
        await session.commit()
        stray_id = stray.id

    monkeypatch.setattr(request_service, "find_approved_conflicts", lambda *args, **kwargs: [])
    result = await booking_core.approve_request(world["admin"], stray_id)

    assert result.kind == ErrorKind.CONFLICT
    assert result.code == ErrorCode.CONFLICT_WITH_APPROVED_REQUEST
    assert await _request_status(session_maker, stray_id) == "pending"
    assert await _balance(session_maker, world["bob"].user_id) == 100


# ──────────────────────────────────────────────────────────────
# Admin operations
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_point_operations_require_admin(session_maker, committed_world):
    world = committed_world

    denied = await booking_core.credit_points(world["alice"], world["alice"].user_id, 1000, "gift")
    assert denied.code == ErrorCode.NOT_AUTHORIZED

    credited = await booking_core.credit_points(world["admin"], world["alice"].user_id, 20, "event prize")
    assert credited.data["admin_id"] == world["admin"].user_id
    assert await _balance(session_maker, world["alice"].user_id) == 120

    overdrawn = await booking_core.debit_points(world["admin"], world["bob"].user_id, 101, "penalty")
    assert overdrawn.code == ErrorCode.INSUFFICIENT_POINTS
    assert await _balance(session_maker, world["bob"].user_id) == 100


@pytest.mark.asyncio
async def test_copy_respawns_through_core(committed_world):
    world = committed_world

    denied = await booking_core.copy_respawns(world["alice"], world["server_id"], world["other_server_id"])
    assert denied.code == ErrorCode.NOT_AUTHORIZED

    copied = await booking_core.copy_respawns(world["admin"], world["server_id"], world["other_server_id"])
    assert copied.success is True
    assert copied.data["copied_count"] == 1

    same = await booking_core.copy_respawns(world["admin"], world["server_id"], world["server_id"])
    assert same.code == ErrorCode.SOURCE_TARGET_SAME_SERVER
