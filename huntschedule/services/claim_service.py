"""
Point claim service.

Users redeem points through claims that an admin reviews. Points are held
(debited) as soon as the claim is created and credited back if the claim is
rejected or cancelled, so a pending claim can never be paid twice.
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from huntschedule.database.models import ClaimStatus, NotificationType, PointClaim
from huntschedule.services import notification_service, point_service
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import ErrorCode, NotFoundError, ValidationError
from huntschedule.utils.constants import REASON_CLAIM_DEBIT, REASON_CLAIM_REFUND
from huntschedule.utils.datetime_utils import isoformat_or_none, utcnow
import logging

logger = logging.getLogger(__name__)


def _format_claim(claim: PointClaim) -> Dict:
    return {
        "id": claim.id,
        "user_id": claim.user_id,
        "points": claim.points,
        "note": claim.note,
        "screenshot_url": claim.screenshot_url,
        "status": claim.status,
        "reviewed_by_id": claim.reviewed_by_id,
        "admin_response": claim.admin_response,
        "created_at": isoformat_or_none(claim.created_at),
        "reviewed_at": isoformat_or_none(claim.reviewed_at),
    }


async def _get_claim(session: AsyncSession, claim_id: int) -> PointClaim:
    result = await session.execute(
        select(PointClaim).where(PointClaim.id == claim_id).with_for_update()
    )
    claim = result.scalar_one_or_none()
    if claim is None:
        raise NotFoundError(ErrorCode.CLAIM_NOT_FOUND, "Claim not found", {"id": claim_id})
    return claim


def _ensure_pending(claim: PointClaim, target: ClaimStatus) -> None:
    if claim.status != ClaimStatus.PENDING.value:
        raise ValidationError(
            ErrorCode.INVALID_STATE_TRANSITION,
            f"Cannot move claim from {claim.status} to {target.value}",
            {"id": claim.id, "from": claim.status, "to": target.value},
        )


async def create_claim(
    session: AsyncSession,
    caller: CallerContext,
    points: int,
    note: Optional[str] = None,
    screenshot_url: Optional[str] = None,
) -> Dict:
    """
    Create a claim for the calling user and hold its points.

    Args:
        session: Database session
        caller: The claiming user
        points: Points to redeem (must be positive)
        note: Optional free text for the reviewer
        screenshot_url: Optional proof link

    Returns:
        Dict with the created claim

    Raises:
        ValidationError: If points is not positive or the balance is insufficient
    """
    if points is None or points <= 0:
        raise ValidationError(ErrorCode.INVALID_AMOUNT, "Claimed points must be positive", {"points": points})

    claim = PointClaim(
        user_id=caller.user_id,
        points=points,
        note=note,
        screenshot_url=screenshot_url,
        status=ClaimStatus.PENDING.value,
    )
    session.add(claim)
    await session.flush()

    await point_service.debit(session, caller.user_id, points, REASON_CLAIM_DEBIT, related_claim_id=claim.id)
    await session.refresh(claim)
    logger.info(f"Claim {claim.id} created by user {caller.user_id} for {points} points")
    return _format_claim(claim)


async def approve_claim(
    session: AsyncSession, caller: CallerContext, claim_id: int, admin_response: Optional[str] = None
) -> Dict:
    """Finalize a claim. The points were already taken at creation."""
    caller.require_admin("approve claims")
    claim = await _get_claim(session, claim_id)
    _ensure_pending(claim, ClaimStatus.APPROVED)

    claim.status = ClaimStatus.APPROVED.value
    claim.reviewed_by_id = caller.user_id
    claim.reviewed_at = utcnow()
    claim.admin_response = admin_response
    await session.flush()
    await session.refresh(claim)
    logger.info(f"Claim {claim_id} approved by admin {caller.user_id}")

    await notification_service.notify(
        session,
        claim.user_id,
        NotificationType.CLAIM_APPROVED.value,
        "Claim Approved",
        f"Your claim for {claim.points} points was approved",
        {"claim_id": claim.id},
    )
    return _format_claim(claim)


async def reject_claim(
    session: AsyncSession, caller: CallerContext, claim_id: int, admin_response: Optional[str] = None
) -> Dict:
    """Reject a claim and return its points to the user."""
    caller.require_admin("reject claims")
    claim = await _get_claim(session, claim_id)
    _ensure_pending(claim, ClaimStatus.REJECTED)

    await point_service.credit(
        session, claim.user_id, claim.points, REASON_CLAIM_REFUND, related_claim_id=claim.id
    )
    claim.status = ClaimStatus.REJECTED.value
    claim.reviewed_by_id = caller.user_id
    claim.reviewed_at = utcnow()
    claim.admin_response = admin_response
    await session.flush()
    await session.refresh(claim)
    logger.info(f"Claim {claim_id} rejected by admin {caller.user_id}, refunded {claim.points} points")

    await notification_service.notify(
        session,
        claim.user_id,
        NotificationType.CLAIM_REJECTED.value,
        "Claim Rejected",
        admin_response or f"Your claim for {claim.points} points was rejected",
        {"claim_id": claim.id, "points_refunded": claim.points},
    )
    return _format_claim(claim)


async def cancel_claim(session: AsyncSession, caller: CallerContext, claim_id: int) -> Dict:
    """Owner withdraws a pending claim; the held points are returned."""
    claim = await _get_claim(session, claim_id)
    if claim.user_id != caller.user_id:
        raise ValidationError(ErrorCode.NOT_AUTHORIZED, "Not authorized to cancel this claim")
    _ensure_pending(claim, ClaimStatus.CANCELLED)

    await point_service.credit(
        session, claim.user_id, claim.points, REASON_CLAIM_REFUND, related_claim_id=claim.id
    )
    claim.status = ClaimStatus.CANCELLED.value
    await session.flush()
    await session.refresh(claim)
    logger.info(f"Claim {claim_id} cancelled by user {caller.user_id}")
    return _format_claim(claim)


async def list_claims(
    session: AsyncSession,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict]:
    query = select(PointClaim)
    if user_id is not None:
        query = query.where(PointClaim.user_id == user_id)
    if status is not None:
        query = query.where(PointClaim.status == ClaimStatus(status).value)
    query = query.order_by(PointClaim.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return [_format_claim(c) for c in result.scalars().all()]


async def get_pending_claims(session: AsyncSession) -> List[Dict]:
    """Claims waiting for review, oldest first."""
    result = await session.execute(
        select(PointClaim).where(PointClaim.status == ClaimStatus.PENDING.value).order_by(PointClaim.id)
    )
    return [_format_claim(c) for c in result.scalars().all()]
