"""
Point ledger service.

Every balance change is an append to point_transactions plus an update of
the cached User.points value, executed on the caller's session so both land
in the same database transaction as whatever triggered them (an approval,
a cancellation, a claim review).
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from huntschedule.database.models import PointTransaction, User
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import ErrorCode, NotFoundError, ValidationError
from huntschedule.utils.constants import REASON_MANUAL_ADJUSTMENT
from huntschedule.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def _format_transaction(tx: PointTransaction) -> Dict:
    return {
        "id": tx.id,
        "user_id": tx.user_id,
        "admin_id": tx.admin_id,
        "amount": tx.amount,
        "reason": tx.reason,
        "balance_after": tx.balance_after,
        "related_request_id": tx.related_request_id,
        "related_claim_id": tx.related_claim_id,
        "created_at": isoformat_or_none(tx.created_at),
    }


async def _get_user(session: AsyncSession, user_id: int) -> User:
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(ErrorCode.USER_NOT_FOUND, "User not found", {"id": user_id})
    return user


def _validate_amount(amount: int) -> int:
    magnitude = abs(int(amount))
    if magnitude == 0:
        raise ValidationError(ErrorCode.INVALID_AMOUNT, "Amount must be non-zero")
    return magnitude


async def _append(
    session: AsyncSession,
    user: User,
    amount: int,
    reason: str,
    related_request_id: Optional[int],
    related_claim_id: Optional[int],
    admin_id: Optional[int],
) -> PointTransaction:
    # Re-read the balance the UPDATE just wrote so the cached value and
    # balance_after agree with the database
    await session.refresh(user)
    tx = PointTransaction(
        user_id=user.id,
        admin_id=admin_id,
        amount=amount,
        reason=reason,
        balance_after=user.points,
        related_request_id=related_request_id,
        related_claim_id=related_claim_id,
    )
    session.add(tx)
    await session.flush()
    await session.refresh(tx)
    return tx


async def debit(
    session: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    related_request_id: Optional[int] = None,
    related_claim_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> Dict:
    """
    Remove points from a user's balance.

    The balance check and the decrement are a single conditional UPDATE, so
    two concurrent debits can never drive the balance below zero.

    Args:
        session: Database session
        user_id: User to charge
        amount: Points to remove (sign is ignored)
        reason: Ledger reason, e.g. "slot_claim"
        related_request_id: Request that caused the debit, if any
        related_claim_id: Point claim that caused the debit, if any
        admin_id: Admin who made a manual adjustment, if any

    Returns:
        Dict with the appended transaction

    Raises:
        NotFoundError: If the user does not exist
        ValidationError: If the balance is insufficient or the amount is zero
    """
    magnitude = _validate_amount(amount)
    user = await _get_user(session, user_id)

    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.points >= magnitude)
        .values(points=User.points - magnitude)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await session.refresh(user)
        raise ValidationError(
            ErrorCode.INSUFFICIENT_POINTS,
            f"Insufficient points: {magnitude} required, {user.points} available",
            {"required": magnitude, "balance": user.points},
        )

    tx = await _append(session, user, -magnitude, reason, related_request_id, related_claim_id, admin_id)
    logger.info(f"Debited {magnitude} points from user {user_id} ({reason}), balance {tx.balance_after}")
    return _format_transaction(tx)


async def credit(
    session: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    related_request_id: Optional[int] = None,
    related_claim_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> Dict:
    """
    Add points to a user's balance. Same arguments as debit().

    Raises:
        NotFoundError: If the user does not exist
        ValidationError: If the amount is zero
    """
    magnitude = _validate_amount(amount)
    user = await _get_user(session, user_id)

    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(points=User.points + magnitude)
        .execution_options(synchronize_session=False)
    )

    tx = await _append(session, user, magnitude, reason, related_request_id, related_claim_id, admin_id)
    logger.info(f"Credited {magnitude} points to user {user_id} ({reason}), balance {tx.balance_after}")
    return _format_transaction(tx)


async def adjust_points(
    session: AsyncSession,
    caller: CallerContext,
    user_id: int,
    amount: int,
    reason: Optional[str] = None,
) -> Dict:
    """
    Manual admin adjustment. Positive amounts credit, negative amounts debit.
    """
    caller.require_admin("adjust points")
    reason = reason or REASON_MANUAL_ADJUSTMENT
    if amount < 0:
        return await debit(session, user_id, amount, reason, admin_id=caller.user_id)
    return await credit(session, user_id, amount, reason, admin_id=caller.user_id)


async def get_balance(session: AsyncSession, user_id: int) -> int:
    """Cached balance from users.points."""
    user = await _get_user(session, user_id)
    return user.points


async def get_ledger_sum(session: AsyncSession, user_id: int) -> int:
    """Sum of all transaction amounts for a user."""
    result = await session.execute(
        select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
            PointTransaction.user_id == user_id
        )
    )
    return int(result.scalar_one())


async def reconcile_balance(session: AsyncSession, user_id: int) -> Dict:
    """
    Compare the cached balance against the ledger sum.

    Returns:
        Dict with user_id, cached_balance, ledger_balance and in_sync
    """
    result = await session.execute(select(User.points).where(User.id == user_id))
    cached = result.scalar_one_or_none()
    if cached is None:
        raise NotFoundError(ErrorCode.USER_NOT_FOUND, "User not found", {"id": user_id})
    ledger = await get_ledger_sum(session, user_id)
    if cached != ledger:
        logger.error(f"Point balance drift for user {user_id}: cached={cached} ledger={ledger}")
    return {
        "user_id": user_id,
        "cached_balance": cached,
        "ledger_balance": ledger,
        "in_sync": cached == ledger,
    }


async def list_transactions(
    session: AsyncSession, user_id: Optional[int] = None, limit: int = 100, offset: int = 0
) -> List[Dict]:
    """Transaction history, newest first, optionally for a single user."""
    query = select(PointTransaction)
    if user_id is not None:
        query = query.where(PointTransaction.user_id == user_id)
    query = query.order_by(PointTransaction.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return [_format_transaction(tx) for tx in result.scalars().all()]
