"""Character route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from huntschedule.api.routes import http_error
from huntschedule.api.auth_dependencies import get_caller
from huntschedule.database.db import get_db_session
from huntschedule.models.schemas import CharacterCreate
from huntschedule.services import character_service
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import BookingError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/characters")
async def list_my_characters(
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await character_service.list_user_characters(session, caller.user_id)
    except Exception as e:
        logger.error(f"Error listing characters for user {caller.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing characters")


@router.post("/api/characters")
async def create_character(
    payload: CharacterCreate,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    """Register a character after checking it exists on the selected server."""
    try:
        return await character_service.create_character(
            session, caller, payload.server_id, payload.name, payload.is_main
        )
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating character {payload.name}: {e}")
        raise HTTPException(status_code=500, detail="Error creating character")


@router.post("/api/characters/{character_id}/main")
async def set_main_character(
    character_id: int,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await character_service.set_main_character(session, caller, character_id)
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error setting main character {character_id}: {e}")
        raise HTTPException(status_code=500, detail="Error setting main character")


@router.delete("/api/characters/{character_id}")
async def delete_character(
    character_id: int,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await character_service.delete_character(session, caller, character_id)
        return {"status": "ok", "message": "Character deleted"}
    except BookingError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error deleting character {character_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting character")
