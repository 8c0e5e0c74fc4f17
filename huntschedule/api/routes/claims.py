"""Point claim route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from huntschedule.api.routes import http_error, limiter
from huntschedule.api.auth_dependencies import get_caller, require_admin
from huntschedule.database.db import get_db_session
from huntschedule.models.schemas import ClaimResponse, CreateClaimRequest, ReviewClaimRequest
from huntschedule.services import claim_service
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import BookingError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/claims", response_model=ClaimResponse)
@limiter.limit("10/minute")
async def create_claim(
    request: Request,
    payload: CreateClaimRequest,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """Redeem points. The points are held until an admin reviews the claim."""
    try:
        return await claim_service.create_claim(
            session, caller, payload.points, payload.note, payload.screenshot_url
        )
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating claim: {e}")
        raise HTTPException(status_code=500, detail="Error creating claim")


@router.get("/api/claims", response_model=List[ClaimResponse])
async def get_my_claims(
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected|cancelled)$"),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await claim_service.list_claims(session, user_id=caller.user_id, status=status)
    except Exception as e:
        logger.error(f"Error fetching claims: {e}")
        raise HTTPException(status_code=500, detail="Error fetching claims")


@router.get("/api/claims/pending", response_model=List[ClaimResponse])
async def get_pending_claims(
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Claims waiting for review (admin only)."""
    try:
        return await claim_service.get_pending_claims(session)
    except Exception as e:
        logger.error(f"Error fetching pending claims: {e}")
        raise HTTPException(status_code=500, detail="Error fetching pending claims")


@router.post("/api/claims/{claim_id}/approve", response_model=ClaimResponse)
async def approve_claim(
    claim_id: int,
    payload: Optional[ReviewClaimRequest] = None,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        response = payload.admin_response if payload else None
        return await claim_service.approve_claim(session, caller, claim_id, response)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error approving claim {claim_id}: {e}")
        raise HTTPException(status_code=500, detail="Error approving claim")


@router.post("/api/claims/{claim_id}/reject", response_model=ClaimResponse)
async def reject_claim(
    claim_id: int,
    payload: Optional[ReviewClaimRequest] = None,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Reject a claim and refund its points."""
    try:
        response = payload.admin_response if payload else None
        return await claim_service.reject_claim(session, caller, claim_id, response)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error rejecting claim {claim_id}: {e}")
        raise HTTPException(status_code=500, detail="Error rejecting claim")


@router.post("/api/claims/{claim_id}/cancel", response_model=ClaimResponse)
async def cancel_claim(
    claim_id: int,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await claim_service.cancel_claim(session, caller, claim_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error cancelling claim {claim_id}: {e}")
        raise HTTPException(status_code=500, detail="Error cancelling claim")
