"""
Request ledger: creation, review and cancellation of booking requests.

A request moves through the closed status set in ALLOWED_TRANSITIONS and is
never deleted, so the requests table doubles as the audit trail.

Every operation works on the caller's session and only flushes. The caller
(the get_db_session dependency or booking_core) commits on success and
rolls the whole transaction back on any error, which keeps the status
change, the point debit or refund and the ledger row together.

Concurrency: create and approve take a per-tuple advisory lock on
PostgreSQL before re-checking for an approved request, and the partial
unique index uq_requests_approved_tuple rejects a second approved row even
if two transactions slip past the check.
"""

import hashlib
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from huntschedule.database.models import (
    NotificationType,
    Request,
    RequestPartyMember,
    RequestStatus,
    Respawn,
    SchedulePeriod,
    Server,
    Slot,
)
from huntschedule.services import character_service, notification_service, point_service
from huntschedule.services.character_validator import TibiaDataValidator
from huntschedule.services.conflict_arbiter import (
    KnownMember,
    RequestDraft,
    check_catalog,
    check_party,
    evaluate,
    find_approved_conflicts,
)
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import ConflictError, ErrorCode, NotFoundError, ValidationError
from huntschedule.utils.constants import REASON_SLOT_CLAIM, REASON_SLOT_REFUND, SUPERSEDED_REASON_PREFIX
from huntschedule.utils.datetime_utils import isoformat_or_none, utcnow
import logging

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    RequestStatus.PENDING: {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED},
    RequestStatus.APPROVED: {RequestStatus.CANCELLED},
    RequestStatus.REJECTED: set(),
    RequestStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = (RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED)


def can_transition(current: str, target: str) -> bool:
    return RequestStatus(target) in ALLOWED_TRANSITIONS[RequestStatus(current)]


def _ensure_transition(request: Request, target: RequestStatus) -> None:
    if not can_transition(request.status, target.value):
        raise ValidationError(
            ErrorCode.INVALID_STATE_TRANSITION,
            f"Cannot move request from {request.status} to {target.value}",
            {"id": request.id, "from": request.status, "to": target.value},
        )


def tuple_lock_key(respawn_id: int, slot_id: int, period_id: int) -> int:
    """Signed 64-bit advisory lock key for a (respawn, slot, period) tuple."""
    digest = hashlib.blake2b(f"{respawn_id}:{slot_id}:{period_id}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


async def lock_tuple(session: AsyncSession, respawn_id: int, slot_id: int, period_id: int) -> None:
    """
    Serialize writers of one tuple until the surrounding transaction ends.

    Only PostgreSQL has transaction-scoped advisory locks. SQLite already
    allows a single writer per database, so there is nothing to do there.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    await session.execute(select(func.pg_advisory_xact_lock(tuple_lock_key(respawn_id, slot_id, period_id))))


def _format_request(request: Request) -> Dict:
    return {
        "id": request.id,
        "user_id": request.user_id,
        "server_id": request.server_id,
        "respawn_id": request.respawn_id,
        "slot_id": request.slot_id,
        "period_id": request.period_id,
        "status": request.status,
        "points_charged": request.points_charged,
        "rejection_reason": request.rejection_reason,
        "created_at": isoformat_or_none(request.created_at),
        "updated_at": isoformat_or_none(request.updated_at),
        "reviewed_at": isoformat_or_none(request.reviewed_at),
        "reviewed_by_id": request.reviewed_by_id,
        "cancelled_at": isoformat_or_none(request.cancelled_at),
        "cancelled_by_id": request.cancelled_by_id,
        "party_members": [
            {
                "id": member.id,
                "character_id": member.character_id,
                "character_name": member.character_name,
                "role_in_party": member.role_in_party,
                "is_leader": member.is_leader,
            }
            for member in request.party_members
        ],
    }


async def _load_request(session: AsyncSession, request_id: int, for_update: bool = False) -> Request:
    query = (
        select(Request)
        .options(selectinload(Request.party_members))
        .where(Request.id == request_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update(of=Request)
    result = await session.execute(query)
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError(ErrorCode.REQUEST_NOT_FOUND, "Request not found", {"id": request_id})
    return request


async def _tuple_requests(
    session: AsyncSession, respawn_id: int, slot_id: int, period_id: int, status: Optional[RequestStatus] = None
) -> List[Request]:
    query = select(Request).where(
        Request.respawn_id == respawn_id,
        Request.slot_id == slot_id,
        Request.period_id == period_id,
    )
    if status is not None:
        query = query.where(Request.status == status.value)
    result = await session.execute(query.order_by(Request.id))
    return list(result.scalars().all())


async def create_request(
    session: AsyncSession,
    caller: CallerContext,
    draft: RequestDraft,
    validator: Optional[TibiaDataValidator] = None,
) -> Dict:
    """
    Create a pending booking request.

    Args:
        session: Database session
        caller: Identity of the caller; users may only create requests for themselves
        draft: The candidate request
        validator: Character validator used for External(name) members

    Returns:
        Dict with the created request and its party

    Raises:
        NotFoundError: Missing server/respawn/slot/period/character
        ValidationError: Bad party, unavailable respawn, character rules
        ConflictError: The tuple already has an approved request
    """
    if draft.user_id != caller.user_id and not caller.is_admin:
        raise ValidationError(ErrorCode.NOT_AUTHORIZED, "Cannot create requests for another user")

    server = await session.get(Server, draft.server_id)
    respawn = await session.get(Respawn, draft.respawn_id)
    slot = await session.get(Slot, draft.slot_id)
    period = await session.get(SchedulePeriod, draft.period_id)

    # Cheap checks before any external character lookups
    check_catalog(draft, server, respawn, slot, period)
    check_party(draft.party_members, respawn.max_players)

    resolved, characters = await character_service.resolve_party(session, draft, validator)

    await lock_tuple(session, draft.respawn_id, draft.slot_id, draft.period_id)
    existing = await _tuple_requests(session, draft.respawn_id, draft.slot_id, draft.period_id)
    decision = evaluate(
        resolved,
        existing,
        server=server,
        respawn=respawn,
        slot=slot,
        period=period,
        characters=characters,
    )
    decision.raise_for_error()

    members: List[KnownMember] = list(resolved.party_members)
    leader_index = next((i for i, m in enumerate(members) if m.is_leader), 0)

    request = Request(
        user_id=draft.user_id,
        server_id=draft.server_id,
        respawn_id=draft.respawn_id,
        slot_id=draft.slot_id,
        period_id=draft.period_id,
        status=RequestStatus.PENDING.value,
        points_charged=0,
    )
    request.party_members = [
        RequestPartyMember(
            character_id=member.character_id,
            character_name=characters[member.character_id].name,
            role_in_party=member.role_in_party,
            is_leader=(i == leader_index),
        )
        for i, member in enumerate(members)
    ]
    session.add(request)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError(
            ErrorCode.CONFLICT_WITH_APPROVED_REQUEST,
            "This slot changed while the request was being created",
            {"respawn_id": draft.respawn_id, "slot_id": draft.slot_id, "period_id": draft.period_id},
        ) from e

    logger.info(
        f"Request {request.id} created by user {draft.user_id} for "
        f"respawn {draft.respawn_id} slot {draft.slot_id} period {draft.period_id}"
    )
    return _format_request(await _load_request(session, request.id))


async def _supersede_pending(session: AsyncSession, approved: Request, admin_id: int) -> List[Request]:
    """Reject the other pending requests on an approved request's tuple."""
    pending = await _tuple_requests(
        session, approved.respawn_id, approved.slot_id, approved.period_id, RequestStatus.PENDING
    )
    superseded = []
    now = utcnow()
    for other in pending:
        if other.id == approved.id:
            continue
        other.status = RequestStatus.REJECTED.value
        other.rejection_reason = f"{SUPERSEDED_REASON_PREFIX}|id={approved.id}"
        other.reviewed_at = now
        other.reviewed_by_id = admin_id
        superseded.append(other)
    if superseded:
        await session.flush()
        logger.info(f"Approval of request {approved.id} superseded {len(superseded)} pending request(s)")
    return superseded


async def approve_request(session: AsyncSession, caller: CallerContext, request_id: int) -> Dict:
    """
    Approve a pending request and charge the requester the respawn's point cost.

    Other pending requests for the same tuple are rejected as superseded; they
    were never charged, so they need no refund.

    Raises:
        NotFoundError: Request missing
        ValidationError: Not pending, caller is not an admin, or insufficient points
            (the request stays pending)
        ConflictError: Another request already holds the tuple
    """
    caller.require_admin("approve requests")
    # Tuple lock before any row lock: superseding touches the competitors' rows
    target = await _load_request(session, request_id)
    await lock_tuple(session, target.respawn_id, target.slot_id, target.period_id)
    request = await _load_request(session, request_id, for_update=True)
    _ensure_transition(request, RequestStatus.APPROVED)

    approved = await _tuple_requests(
        session, request.respawn_id, request.slot_id, request.period_id, RequestStatus.APPROVED
    )
    conflicts = find_approved_conflicts(
        request.respawn_id, request.slot_id, request.period_id, approved, exclude_id=request.id
    )
    if conflicts:
        raise ConflictError(
            ErrorCode.CONFLICT_WITH_APPROVED_REQUEST,
            "This slot is already taken by an approved request",
            {"id": conflicts[0].id},
        )

    respawn = await session.get(Respawn, request.respawn_id)
    cost = respawn.point_cost if respawn is not None else 0
    if cost > 0:
        await point_service.debit(
            session, request.user_id, cost, REASON_SLOT_CLAIM, related_request_id=request.id
        )

    request.status = RequestStatus.APPROVED.value
    request.points_charged = cost
    request.rejection_reason = None
    request.reviewed_at = utcnow()
    request.reviewed_by_id = caller.user_id
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError(
            ErrorCode.CONFLICT_WITH_APPROVED_REQUEST,
            "This slot was approved for another request at the same time",
            {"id": request_id},
        ) from e

    superseded = await _supersede_pending(session, request, caller.user_id)
    logger.info(f"Request {request_id} approved by admin {caller.user_id}, charged {cost} points")

    await notification_service.notify(
        session,
        request.user_id,
        NotificationType.REQUEST_APPROVED.value,
        "Request Approved",
        f"Your request for {respawn.name if respawn else 'the respawn'} was approved",
        {"request_id": request.id, "points_charged": cost},
    )
    for other in superseded:
        await notification_service.notify(
            session,
            other.user_id,
            NotificationType.REQUEST_REJECTED.value,
            "Request Rejected",
            "Another request was approved for the same slot",
            {"request_id": other.id, "reason": other.rejection_reason},
        )

    return _format_request(await _load_request(session, request_id))


async def reject_request(
    session: AsyncSession, caller: CallerContext, request_id: int, reason: Optional[str] = None
) -> Dict:
    """
    Reject a pending request. No points move: nothing is charged before approval.
    """
    caller.require_admin("reject requests")
    request = await _load_request(session, request_id, for_update=True)
    _ensure_transition(request, RequestStatus.REJECTED)

    request.status = RequestStatus.REJECTED.value
    request.rejection_reason = reason
    request.reviewed_at = utcnow()
    request.reviewed_by_id = caller.user_id
    await session.flush()
    logger.info(f"Request {request_id} rejected by admin {caller.user_id}")

    await notification_service.notify(
        session,
        request.user_id,
        NotificationType.REQUEST_REJECTED.value,
        "Request Rejected",
        reason or "Your request was rejected",
        {"request_id": request.id, "reason": reason},
    )
    return _format_request(await _load_request(session, request_id))


async def cancel_request(session: AsyncSession, caller: CallerContext, request_id: int) -> Dict:
    """
    Cancel a request.

    The owner may cancel while pending. An admin may cancel a pending or an
    approved request; cancelling an approved one refunds exactly the points
    that were charged for it.
    """
    request = await _load_request(session, request_id, for_update=True)
    is_owner = request.user_id == caller.user_id
    if not is_owner and not caller.is_admin:
        raise ValidationError(ErrorCode.NOT_AUTHORIZED, "Not authorized to cancel this request")
    _ensure_transition(request, RequestStatus.CANCELLED)
    if request.status == RequestStatus.APPROVED.value and not caller.is_admin:
        raise ValidationError(
            ErrorCode.NOT_AUTHORIZED,
            "Approved requests can only be cancelled by an admin",
            {"id": request.id},
        )

    refunded = 0
    if request.status == RequestStatus.APPROVED.value and request.points_charged > 0:
        await point_service.credit(
            session, request.user_id, request.points_charged, REASON_SLOT_REFUND, related_request_id=request.id
        )
        refunded = request.points_charged

    request.status = RequestStatus.CANCELLED.value
    request.cancelled_at = utcnow()
    request.cancelled_by_id = caller.user_id
    await session.flush()
    logger.info(f"Request {request_id} cancelled by user {caller.user_id}, refunded {refunded} points")

    if not is_owner:
        await notification_service.notify(
            session,
            request.user_id,
            NotificationType.REQUEST_CANCELLED.value,
            "Request Cancelled",
            "An admin cancelled your request",
            {"request_id": request.id, "points_refunded": refunded},
        )
    return _format_request(await _load_request(session, request_id))


async def get_request(session: AsyncSession, request_id: int) -> Dict:
    return _format_request(await _load_request(session, request_id))


async def list_requests(
    session: AsyncSession,
    server_id: Optional[int] = None,
    period_id: Optional[int] = None,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict]:
    """
    List requests filtered by server, period, status and user, newest first.
    """
    query = select(Request).options(selectinload(Request.party_members))
    if server_id is not None:
        query = query.where(Request.server_id == server_id)
    if period_id is not None:
        query = query.where(Request.period_id == period_id)
    if status is not None:
        query = query.where(Request.status == RequestStatus(status).value)
    if user_id is not None:
        query = query.where(Request.user_id == user_id)
    query = query.order_by(Request.created_at.desc(), Request.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return [_format_request(r) for r in result.scalars().all()]


async def get_request_history(
    session: AsyncSession,
    server_id: Optional[int] = None,
    period_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict]:
    """Requests that have left pending, most recently changed first."""
    query = (
        select(Request)
        .options(selectinload(Request.party_members))
        .where(Request.status.in_([s.value for s in TERMINAL_STATUSES]))
    )
    if server_id is not None:
        query = query.where(Request.server_id == server_id)
    if period_id is not None:
        query = query.where(Request.period_id == period_id)
    query = query.order_by(Request.updated_at.desc(), Request.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return [_format_request(r) for r in result.scalars().all()]
