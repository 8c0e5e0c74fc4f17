"""Booking request route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from huntschedule.api.routes import http_error, limiter
from huntschedule.api.auth_dependencies import get_caller, require_admin
from huntschedule.database.db import get_db_session
from huntschedule.models.schemas import CreateRequestRequest, RejectRequestRequest, RequestResponse
from huntschedule.services import request_service
from huntschedule.services.conflict_arbiter import RequestDraft
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import BookingError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/requests", response_model=RequestResponse)
@limiter.limit("30/minute")
async def create_request(
    request: Request,
    payload: CreateRequestRequest,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """Submit a booking request for a respawn slot in a schedule period."""
    try:
        draft = RequestDraft(
            user_id=payload.user_id if payload.user_id is not None else caller.user_id,
            server_id=payload.server_id,
            respawn_id=payload.respawn_id,
            slot_id=payload.slot_id,
            period_id=payload.period_id,
            party_members=[m.to_member() for m in payload.party_members],
        )
        return await request_service.create_request(session, caller, draft)
    except BookingError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating request: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating request")


@router.get("/api/requests", response_model=List[RequestResponse])
async def list_requests(
    server_id: Optional[int] = Query(None),
    period_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected|cancelled)$"),
    user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """List requests filtered by server, period, status and user."""
    try:
        return await request_service.list_requests(
            session,
            server_id=server_id,
            period_id=period_id,
            status=status,
            user_id=user_id,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
    except Exception as e:
        logger.error(f"Error listing requests: {e}")
        raise HTTPException(status_code=500, detail="Error listing requests")


@router.get("/api/requests/mine", response_model=List[RequestResponse])
async def list_my_requests(
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected|cancelled)$"),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """List the caller's own requests."""
    try:
        return await request_service.list_requests(session, status=status, user_id=caller.user_id)
    except Exception as e:
        logger.error(f"Error listing requests for user {caller.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing requests")


@router.get("/api/requests/history", response_model=List[RequestResponse])
async def get_request_history(
    server_id: Optional[int] = Query(None),
    period_id: Optional[int] = Query(None),
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Reviewed and cancelled requests (admin only)."""
    try:
        return await request_service.get_request_history(session, server_id=server_id, period_id=period_id)
    except Exception as e:
        logger.error(f"Error fetching request history: {e}")
        raise HTTPException(status_code=500, detail="Error fetching request history")


@router.get("/api/requests/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: int,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await request_service.get_request(session, request_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching request {request_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching request")


@router.post("/api/requests/{request_id}/approve", response_model=RequestResponse)
async def approve_request(
    request_id: int,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Approve a pending request and charge the requester."""
    try:
        return await request_service.approve_request(session, caller, request_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error approving request {request_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error approving request")


@router.post("/api/requests/{request_id}/reject", response_model=RequestResponse)
async def reject_request(
    request_id: int,
    payload: Optional[RejectRequestRequest] = None,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Reject a pending request."""
    try:
        reason = payload.reason if payload else None
        return await request_service.reject_request(session, caller, request_id, reason)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error rejecting request {request_id}: {e}")
        raise HTTPException(status_code=500, detail="Error rejecting request")


@router.post("/api/requests/{request_id}/cancel", response_model=RequestResponse)
async def cancel_request(
    request_id: int,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel a request. Approved requests can only be cancelled by an admin and are refunded."""
    try:
        return await request_service.cancel_request(session, caller, request_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error cancelling request {request_id}: {e}")
        raise HTTPException(status_code=500, detail="Error cancelling request")
