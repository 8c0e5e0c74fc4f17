"""
Copy a server's respawn catalog onto another server.
"""

from typing import Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from huntschedule.database.models import Request, Respawn, Server
from huntschedule.services.errors import ErrorCode, NotFoundError, ValidationError
import logging

logger = logging.getLogger(__name__)


async def copy_respawns(
    session: AsyncSession,
    source_server_id: int,
    target_server_id: int,
    overwrite_existing: bool = False,
) -> Dict:
    """
    Duplicate every respawn of the source server onto the target server.

    Names are not deduplicated: without overwrite, copying twice leaves two
    respawns with the same name on the target.

    Args:
        session: Database session
        source_server_id: Server to copy from
        target_server_id: Server to copy to
        overwrite_existing: Delete the target's respawns first

    Returns:
        Dict with copied_count, deleted_count, irreversible and message

    Raises:
        NotFoundError: If either server does not exist
        ValidationError: If source and target are the same, the source has no
            respawns, or a target respawn to delete is referenced by a request
    """
    if source_server_id == target_server_id:
        raise ValidationError(
            ErrorCode.SOURCE_TARGET_SAME_SERVER,
            "Source and target server must differ",
            {"server_id": source_server_id},
        )

    for server_id in (source_server_id, target_server_id):
        if await session.get(Server, server_id) is None:
            raise NotFoundError(ErrorCode.SERVER_NOT_FOUND, "Server not found", {"id": server_id})

    result = await session.execute(
        select(Respawn).where(Respawn.server_id == source_server_id).order_by(Respawn.id)
    )
    source_respawns = list(result.scalars().all())
    if not source_respawns:
        raise ValidationError(
            ErrorCode.NO_RESPAWNS_TO_COPY,
            "Source server has no respawns to copy",
            {"server_id": source_server_id},
        )

    deleted_count = 0
    if overwrite_existing:
        target_ids = select(Respawn.id).where(Respawn.server_id == target_server_id)
        in_use = await session.execute(
            select(func.count(Request.id)).where(Request.respawn_id.in_(target_ids))
        )
        referenced = in_use.scalar_one()
        if referenced:
            raise ValidationError(
                ErrorCode.RESPAWN_IN_USE,
                "Target server has respawns referenced by booking requests",
                {"server_id": target_server_id, "request_count": referenced},
            )
        deleted = await session.execute(
            delete(Respawn)
            .where(Respawn.server_id == target_server_id)
            .execution_options(synchronize_session="fetch")
        )
        deleted_count = deleted.rowcount or 0

    for respawn in source_respawns:
        session.add(
            Respawn(
                server_id=target_server_id,
                name=respawn.name,
                difficulty_id=respawn.difficulty_id,
                min_players=respawn.min_players,
                max_players=respawn.max_players,
                ts_code=respawn.ts_code,
                city=respawn.city,
                is_available=respawn.is_available,
                point_cost=respawn.point_cost,
            )
        )
    await session.flush()

    copied_count = len(source_respawns)
    logger.info(
        f"Copied {copied_count} respawns from server {source_server_id} to {target_server_id}"
        f" (deleted {deleted_count})"
    )
    return {
        "copied_count": copied_count,
        "deleted_count": deleted_count,
        "irreversible": overwrite_existing and deleted_count > 0,
        "message": f"Successfully copied {copied_count} respawns",
    }
