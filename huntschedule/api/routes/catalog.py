"""Catalog route handlers: servers, difficulties, respawns, slots and schedule periods."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from huntschedule.api.routes import http_error
from huntschedule.api.auth_dependencies import get_caller, require_admin
from huntschedule.database.db import get_db_session
from huntschedule.models.schemas import (
    CopyRespawnsRequest,
    CopyRespawnsResponse,
    DifficultyCreate,
    DifficultyUpdate,
    PeriodCreate,
    PeriodUpdate,
    RespawnCreate,
    RespawnUpdate,
    ServerCreate,
    ServerUpdate,
    SlotCreate,
    SlotUpdate,
)
from huntschedule.services import catalog_service, respawn_copy_service
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import BookingError

logger = logging.getLogger(__name__)
router = APIRouter()


# ────────────────────────────────────────────────────────────────────────────
# Servers
# ────────────────────────────────────────────────────────────────────────────


@router.get("/api/servers")
async def list_servers(
    active_only: bool = Query(False),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.list_servers(session, active_only=active_only)
    except Exception as e:
        logger.error(f"Error listing servers: {e}")
        raise HTTPException(status_code=500, detail="Error listing servers")


@router.get("/api/servers/{server_id}")
async def get_server(
    server_id: int,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.get_server(session, server_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching server {server_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching server")


@router.post("/api/servers")
async def create_server(
    payload: ServerCreate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.create_server(
            session, payload.name, payload.region, payload.pvp_type, payload.is_active
        )
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating server: {e}")
        raise HTTPException(status_code=500, detail="Error creating server")


@router.put("/api/servers/{server_id}")
async def update_server(
    server_id: int,
    payload: ServerUpdate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.update_server(session, server_id, **payload.model_dump())
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error updating server {server_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating server")


@router.delete("/api/servers/{server_id}")
async def delete_server(
    server_id: int,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a server with its respawns, slots and periods."""
    try:
        await catalog_service.delete_server(session, server_id)
        return {"status": "ok", "message": "Server deleted"}
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deleting server {server_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting server")


# ────────────────────────────────────────────────────────────────────────────
# Difficulties
# ────────────────────────────────────────────────────────────────────────────


@router.get("/api/difficulties")
async def list_difficulties(
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.list_difficulties(session)
    except Exception as e:
        logger.error(f"Error listing difficulties: {e}")
        raise HTTPException(status_code=500, detail="Error listing difficulties")


@router.post("/api/difficulties")
async def create_difficulty(
    payload: DifficultyCreate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.create_difficulty(session, **payload.model_dump())
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating difficulty: {e}")
        raise HTTPException(status_code=500, detail="Error creating difficulty")


@router.put("/api/difficulties/{difficulty_id}")
async def update_difficulty(
    difficulty_id: int,
    payload: DifficultyUpdate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.update_difficulty(session, difficulty_id, **payload.model_dump())
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error updating difficulty {difficulty_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating difficulty")


@router.delete("/api/difficulties/{difficulty_id}")
async def delete_difficulty(
    difficulty_id: int,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await catalog_service.delete_difficulty(session, difficulty_id)
        return {"status": "ok", "message": "Difficulty deleted"}
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deleting difficulty {difficulty_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting difficulty")


# ────────────────────────────────────────────────────────────────────────────
# Respawns
# ────────────────────────────────────────────────────────────────────────────


@router.get("/api/respawns")
async def list_respawns(
    server_id: int = Query(...),
    available_only: bool = Query(False),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.list_respawns(session, server_id, available_only=available_only)
    except Exception as e:
        logger.error(f"Error listing respawns for server {server_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing respawns")


@router.post("/api/respawns")
async def create_respawn(
    payload: RespawnCreate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.create_respawn(session, **payload.model_dump())
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating respawn: {e}")
        raise HTTPException(status_code=500, detail="Error creating respawn")


@router.post("/api/respawns/copy", response_model=CopyRespawnsResponse)
async def copy_respawns(
    payload: CopyRespawnsRequest,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Copy every respawn of one server onto another, optionally replacing the target's respawns."""
    try:
        return await respawn_copy_service.copy_respawns(
            session, payload.source_server_id, payload.target_server_id, payload.overwrite_existing
        )
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error copying respawns: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error copying respawns")


@router.get("/api/respawns/{respawn_id}")
async def get_respawn(
    respawn_id: int,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.get_respawn(session, respawn_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching respawn {respawn_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching respawn")


@router.put("/api/respawns/{respawn_id}")
async def update_respawn(
    respawn_id: int,
    payload: RespawnUpdate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.update_respawn(session, respawn_id, **payload.model_dump())
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error updating respawn {respawn_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating respawn")


@router.delete("/api/respawns/{respawn_id}")
async def delete_respawn(
    respawn_id: int,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await catalog_service.delete_respawn(session, respawn_id)
        return {"status": "ok", "message": "Respawn deleted"}
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deleting respawn {respawn_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting respawn")


# ────────────────────────────────────────────────────────────────────────────
# Slots
# ────────────────────────────────────────────────────────────────────────────


@router.get("/api/slots")
async def list_slots(
    server_id: int = Query(...),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.list_slots(session, server_id)
    except Exception as e:
        logger.error(f"Error listing slots for server {server_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing slots")


@router.post("/api/slots")
async def create_slot(
    payload: SlotCreate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.create_slot(session, payload.server_id, payload.start_time, payload.end_time)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating slot: {e}")
        raise HTTPException(status_code=500, detail="Error creating slot")


@router.put("/api/slots/{slot_id}")
async def update_slot(
    slot_id: int,
    payload: SlotUpdate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.update_slot(session, slot_id, payload.start_time, payload.end_time)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error updating slot {slot_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating slot")


@router.delete("/api/slots/{slot_id}")
async def delete_slot(
    slot_id: int,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await catalog_service.delete_slot(session, slot_id)
        return {"status": "ok", "message": "Slot deleted"}
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deleting slot {slot_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting slot")


# ────────────────────────────────────────────────────────────────────────────
# Schedule periods
# ────────────────────────────────────────────────────────────────────────────


@router.get("/api/periods")
async def list_periods(
    server_id: int = Query(...),
    active_only: bool = Query(False),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        if active_only:
            return await catalog_service.get_active_periods(session, server_id)
        return await catalog_service.list_periods(session, server_id)
    except Exception as e:
        logger.error(f"Error listing periods for server {server_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing periods")


@router.post("/api/periods")
async def create_period(
    payload: PeriodCreate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.create_period(session, **payload.model_dump())
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating period: {e}")
        raise HTTPException(status_code=500, detail="Error creating period")


@router.put("/api/periods/{period_id}")
async def update_period(
    period_id: int,
    payload: PeriodUpdate,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await catalog_service.update_period(session, period_id, **payload.model_dump())
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error updating period {period_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating period")


@router.delete("/api/periods/{period_id}")
async def delete_period(
    period_id: int,
    caller: CallerContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await catalog_service.delete_period(session, period_id)
        return {"status": "ok", "message": "Period deleted"}
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deleting period {period_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting period")
