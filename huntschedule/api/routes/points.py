"""Point balance and ledger route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from huntschedule.api.routes import http_error
from huntschedule.api.auth_dependencies import get_caller, require_admin
from huntschedule.database.db import get_db_session
from huntschedule.models.schemas import BalanceResponse, PointAdjustmentRequest, PointTransactionResponse
from huntschedule.services import point_service
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import BookingError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/points/balance", response_model=BalanceResponse)
async def get_my_balance(
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the caller's point balance."""
    try:
        points = await point_service.get_balance(session, caller.user_id)
        return {"user_id": caller.user_id, "points": points}
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching balance: {e}")
        raise HTTPException(status_code=500, detail="Error fetching balance")


@router.get("/api/points/transactions", response_model=List[PointTransactionResponse])
async def get_my_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the caller's transaction history (newest first)."""
    try:
        return await point_service.list_transactions(
            session, caller.user_id, limit=page_size, offset=(page - 1) * page_size
        )
    except Exception as e:
        logger.error(f"Error fetching transactions: {e}")
        raise HTTPException(status_code=500, detail="Error fetching transactions")


@router.get("/api/points/admin/transactions", response_model=List[PointTransactionResponse])
async def get_all_transactions(
    user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Get transaction history for all users or a single user (admin only)."""
    try:
        return await point_service.list_transactions(
            session, user_id, limit=page_size, offset=(page - 1) * page_size
        )
    except Exception as e:
        logger.error(f"Error fetching transactions: {e}")
        raise HTTPException(status_code=500, detail="Error fetching transactions")


@router.post("/api/points/admin/adjust", response_model=PointTransactionResponse)
async def adjust_points(
    payload: PointAdjustmentRequest,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Manually credit (positive amount) or debit (negative amount) a user's points."""
    try:
        return await point_service.adjust_points(session, caller, payload.user_id, payload.amount, payload.reason)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error adjusting points for user {payload.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error adjusting points")


@router.get("/api/points/admin/reconcile/{user_id}")
async def reconcile_balance(
    user_id: int,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Compare a user's cached balance with the ledger sum."""
    try:
        return await point_service.reconcile_balance(session, user_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error reconciling balance for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error reconciling balance")
