"""
Catalog store: servers, difficulties, respawns, slots and schedule periods.

These rows are referenced by booking requests. Deleting something a request
still points at is refused so the request history stays intact.
"""

from datetime import date, time
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from huntschedule.database.models import (
    Difficulty,
    Request,
    Respawn,
    SchedulePeriod,
    Server,
    Slot,
)
from huntschedule.services.errors import ErrorCode, NotFoundError, ValidationError
from huntschedule.utils.constants import DEFAULT_SLOT_COST
from huntschedule.utils.datetime_utils import isoformat_or_none, slot_duration_minutes
import logging

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Formatting
# ────────────────────────────────────────────────────────────────────────────


def _format_server(server: Server) -> Dict:
    return {
        "id": server.id,
        "name": server.name,
        "region": server.region,
        "pvp_type": server.pvp_type,
        "is_active": server.is_active,
        "created_at": isoformat_or_none(server.created_at),
    }


def _format_difficulty(difficulty: Difficulty) -> Dict:
    return {
        "id": difficulty.id,
        "name": difficulty.name,
        "description": difficulty.description,
        "color": difficulty.color,
        "sort_order": difficulty.sort_order,
    }


def _format_respawn(respawn: Respawn) -> Dict:
    return {
        "id": respawn.id,
        "server_id": respawn.server_id,
        "name": respawn.name,
        "difficulty_id": respawn.difficulty_id,
        "min_players": respawn.min_players,
        "max_players": respawn.max_players,
        "ts_code": respawn.ts_code,
        "city": respawn.city,
        "is_available": respawn.is_available,
        "point_cost": respawn.point_cost,
    }


def _format_slot(slot: Slot) -> Dict:
    return {
        "id": slot.id,
        "server_id": slot.server_id,
        "start_time": slot.start_time.strftime("%H:%M"),
        "end_time": slot.end_time.strftime("%H:%M"),
        "duration_minutes": slot_duration_minutes(slot.start_time, slot.end_time),
        "overnight": slot.end_time < slot.start_time,
    }


def _format_period(period: SchedulePeriod) -> Dict:
    return {
        "id": period.id,
        "server_id": period.server_id,
        "name": period.name,
        "start_date": isoformat_or_none(period.start_date),
        "end_date": isoformat_or_none(period.end_date),
        "is_active": period.is_active,
    }


# ────────────────────────────────────────────────────────────────────────────
# Shared helpers
# ────────────────────────────────────────────────────────────────────────────


async def _get_or_404(session: AsyncSession, model, entity_id: int, code: str):
    entity = await session.get(model, entity_id)
    if entity is None:
        raise NotFoundError(code, f"{model.__name__} not found", {"id": entity_id})
    return entity


async def _require_server(session: AsyncSession, server_id: int) -> Server:
    return await _get_or_404(session, Server, server_id, ErrorCode.SERVER_NOT_FOUND)


async def _count_requests(session: AsyncSession, column, entity_id: int) -> int:
    result = await session.execute(select(func.count(Request.id)).where(column == entity_id))
    return result.scalar_one()


def _apply_updates(entity, values: Dict) -> bool:
    changed = False
    for key, value in values.items():
        if value is not None and getattr(entity, key) != value:
            setattr(entity, key, value)
            changed = True
    return changed


def validate_slot_times(start_time: time, end_time: time) -> int:
    """
    Check a slot's time range and return its length in minutes.

    Raises:
        ValidationError: If start and end are the same time of day
    """
    try:
        return slot_duration_minutes(start_time, end_time)
    except ValueError as e:
        raise ValidationError(
            ErrorCode.INVALID_TIME_RANGE,
            str(e),
            {"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        ) from e


def validate_period_dates(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise ValidationError(
            ErrorCode.INVALID_DATE_RANGE,
            "Period end date must be after its start date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


# ────────────────────────────────────────────────────────────────────────────
# Servers
# ────────────────────────────────────────────────────────────────────────────


async def create_server(
    session: AsyncSession, name: str, region: str, pvp_type: Optional[str] = None, is_active: bool = False
) -> Dict:
    server = Server(name=name, region=region, pvp_type=pvp_type, is_active=is_active)
    session.add(server)
    await session.flush()
    await session.refresh(server)
    logger.info(f"Created server {server.id} ({name})")
    return _format_server(server)


async def get_server(session: AsyncSession, server_id: int) -> Dict:
    return _format_server(await _require_server(session, server_id))


async def list_servers(session: AsyncSession, active_only: bool = False) -> List[Dict]:
    query = select(Server).order_by(Server.name)
    if active_only:
        query = query.where(Server.is_active.is_(True))
    result = await session.execute(query)
    return [_format_server(s) for s in result.scalars().all()]


async def update_server(
    session: AsyncSession,
    server_id: int,
    name: Optional[str] = None,
    region: Optional[str] = None,
    pvp_type: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Dict:
    server = await _require_server(session, server_id)
    if _apply_updates(server, {"name": name, "region": region, "pvp_type": pvp_type, "is_active": is_active}):
        await session.flush()
        await session.refresh(server)
    return _format_server(server)


async def delete_server(session: AsyncSession, server_id: int) -> None:
    """Delete a server together with its respawns, slots and periods."""
    server = await _require_server(session, server_id)
    in_use = await _count_requests(session, Request.server_id, server_id)
    if in_use:
        raise ValidationError(
            ErrorCode.SERVER_IN_USE,
            "Server has booking requests and cannot be deleted",
            {"id": server_id, "request_count": in_use},
        )
    await session.delete(server)
    await session.flush()
    logger.info(f"Deleted server {server_id}")


# ────────────────────────────────────────────────────────────────────────────
# Difficulties
# ────────────────────────────────────────────────────────────────────────────


async def create_difficulty(
    session: AsyncSession,
    name: str,
    description: Optional[str] = None,
    color: Optional[str] = None,
    sort_order: int = 0,
) -> Dict:
    difficulty = Difficulty(name=name, description=description, color=color, sort_order=sort_order)
    session.add(difficulty)
    await session.flush()
    return _format_difficulty(difficulty)


async def get_difficulty(session: AsyncSession, difficulty_id: int) -> Dict:
    difficulty = await _get_or_404(session, Difficulty, difficulty_id, ErrorCode.DIFFICULTY_NOT_FOUND)
    return _format_difficulty(difficulty)


async def list_difficulties(session: AsyncSession) -> List[Dict]:
    result = await session.execute(select(Difficulty).order_by(Difficulty.sort_order, Difficulty.name))
    return [_format_difficulty(d) for d in result.scalars().all()]


async def update_difficulty(
    session: AsyncSession,
    difficulty_id: int,
    name: Optional[str] = None,
    description: Optional[str] = None,
    color: Optional[str] = None,
    sort_order: Optional[int] = None,
) -> Dict:
    difficulty = await _get_or_404(session, Difficulty, difficulty_id, ErrorCode.DIFFICULTY_NOT_FOUND)
    values = {"name": name, "description": description, "color": color, "sort_order": sort_order}
    if _apply_updates(difficulty, values):
        await session.flush()
    return _format_difficulty(difficulty)


async def delete_difficulty(session: AsyncSession, difficulty_id: int) -> None:
    difficulty = await _get_or_404(session, Difficulty, difficulty_id, ErrorCode.DIFFICULTY_NOT_FOUND)
    result = await session.execute(select(func.count(Respawn.id)).where(Respawn.difficulty_id == difficulty_id))
    if result.scalar_one():
        raise ValidationError(
            ErrorCode.DIFFICULTY_IN_USE, "Difficulty is used by respawns", {"id": difficulty_id}
        )
    await session.delete(difficulty)
    await session.flush()


# ────────────────────────────────────────────────────────────────────────────
# Respawns
# ────────────────────────────────────────────────────────────────────────────


def _validate_player_range(min_players: int, max_players: int) -> None:
    if max_players < 1 or min_players < 1 or min_players > max_players:
        raise ValidationError(
            ErrorCode.INVALID_PLAYER_RANGE,
            "Player limits must satisfy 1 <= min_players <= max_players",
            {"min_players": min_players, "max_players": max_players},
        )


async def create_respawn(
    session: AsyncSession,
    server_id: int,
    name: str,
    difficulty_id: int,
    min_players: int = 1,
    max_players: int = 4,
    ts_code: Optional[str] = None,
    city: Optional[str] = None,
    is_available: bool = True,
    point_cost: Optional[int] = None,
) -> Dict:
    """
    Add a respawn to a server.

    Args:
        point_cost: Points charged when a request for this respawn is approved.
            Defaults to DEFAULT_SLOT_COST.
    """
    await _require_server(session, server_id)
    await _get_or_404(session, Difficulty, difficulty_id, ErrorCode.DIFFICULTY_NOT_FOUND)
    _validate_player_range(min_players, max_players)
    if point_cost is None:
        point_cost = DEFAULT_SLOT_COST
    if point_cost < 0:
        raise ValidationError(ErrorCode.INVALID_AMOUNT, "Point cost cannot be negative", {"point_cost": point_cost})

    respawn = Respawn(
        server_id=server_id,
        name=name,
        difficulty_id=difficulty_id,
        min_players=min_players,
        max_players=max_players,
        ts_code=ts_code,
        city=city,
        is_available=is_available,
        point_cost=point_cost,
    )
    session.add(respawn)
    await session.flush()
    return _format_respawn(respawn)


async def get_respawn(session: AsyncSession, respawn_id: int) -> Dict:
    respawn = await _get_or_404(session, Respawn, respawn_id, ErrorCode.RESPAWN_NOT_FOUND)
    return _format_respawn(respawn)


async def list_respawns(session: AsyncSession, server_id: int, available_only: bool = False) -> List[Dict]:
    query = (
        select(Respawn)
        .join(Difficulty, Respawn.difficulty_id == Difficulty.id)
        .where(Respawn.server_id == server_id)
        .order_by(Difficulty.sort_order, Respawn.name)
    )
    if available_only:
        query = query.where(Respawn.is_available.is_(True))
    result = await session.execute(query)
    return [_format_respawn(r) for r in result.scalars().all()]


async def update_respawn(session: AsyncSession, respawn_id: int, **fields) -> Dict:
    """
    Update respawn fields. Only keys present with a non-None value change.
    """
    respawn = await _get_or_404(session, Respawn, respawn_id, ErrorCode.RESPAWN_NOT_FOUND)
    allowed = {"name", "difficulty_id", "min_players", "max_players", "ts_code", "city", "is_available", "point_cost"}
    values = {k: v for k, v in fields.items() if k in allowed}

    if values.get("difficulty_id") is not None:
        await _get_or_404(session, Difficulty, values["difficulty_id"], ErrorCode.DIFFICULTY_NOT_FOUND)
    min_players = values["min_players"] if values.get("min_players") is not None else respawn.min_players
    max_players = values["max_players"] if values.get("max_players") is not None else respawn.max_players
    _validate_player_range(min_players, max_players)
    if values.get("point_cost") is not None and values["point_cost"] < 0:
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT, "Point cost cannot be negative", {"point_cost": values["point_cost"]}
        )

    if _apply_updates(respawn, values):
        await session.flush()
    return _format_respawn(respawn)


async def delete_respawn(session: AsyncSession, respawn_id: int) -> None:
    respawn = await _get_or_404(session, Respawn, respawn_id, ErrorCode.RESPAWN_NOT_FOUND)
    in_use = await _count_requests(session, Request.respawn_id, respawn_id)
    if in_use:
        raise ValidationError(
            ErrorCode.RESPAWN_IN_USE,
            "Respawn has booking requests and cannot be deleted",
            {"id": respawn_id, "request_count": in_use},
        )
    await session.delete(respawn)
    await session.flush()


# ────────────────────────────────────────────────────────────────────────────
# Slots
# ────────────────────────────────────────────────────────────────────────────


async def create_slot(session: AsyncSession, server_id: int, start_time: time, end_time: time) -> Dict:
    await _require_server(session, server_id)
    validate_slot_times(start_time, end_time)
    slot = Slot(server_id=server_id, start_time=start_time, end_time=end_time)
    session.add(slot)
    await session.flush()
    return _format_slot(slot)


async def get_slot(session: AsyncSession, slot_id: int) -> Dict:
    slot = await _get_or_404(session, Slot, slot_id, ErrorCode.SLOT_NOT_FOUND)
    return _format_slot(slot)


async def list_slots(session: AsyncSession, server_id: int) -> List[Dict]:
    result = await session.execute(select(Slot).where(Slot.server_id == server_id).order_by(Slot.start_time))
    return [_format_slot(s) for s in result.scalars().all()]


async def update_slot(
    session: AsyncSession, slot_id: int, start_time: Optional[time] = None, end_time: Optional[time] = None
) -> Dict:
    slot = await _get_or_404(session, Slot, slot_id, ErrorCode.SLOT_NOT_FOUND)
    validate_slot_times(
        start_time if start_time is not None else slot.start_time,
        end_time if end_time is not None else slot.end_time,
    )
    if _apply_updates(slot, {"start_time": start_time, "end_time": end_time}):
        await session.flush()
    return _format_slot(slot)


async def delete_slot(session: AsyncSession, slot_id: int) -> None:
    slot = await _get_or_404(session, Slot, slot_id, ErrorCode.SLOT_NOT_FOUND)
    in_use = await _count_requests(session, Request.slot_id, slot_id)
    if in_use:
        raise ValidationError(
            ErrorCode.SLOT_IN_USE,
            "Slot has booking requests and cannot be deleted",
            {"id": slot_id, "request_count": in_use},
        )
    await session.delete(slot)
    await session.flush()


# ────────────────────────────────────────────────────────────────────────────
# Schedule periods
# ────────────────────────────────────────────────────────────────────────────


async def create_period(
    session: AsyncSession,
    server_id: int,
    name: str,
    start_date: date,
    end_date: date,
    is_active: bool = True,
) -> Dict:
    await _require_server(session, server_id)
    validate_period_dates(start_date, end_date)
    period = SchedulePeriod(
        server_id=server_id, name=name, start_date=start_date, end_date=end_date, is_active=is_active
    )
    session.add(period)
    await session.flush()
    return _format_period(period)


async def get_period(session: AsyncSession, period_id: int) -> Dict:
    period = await _get_or_404(session, SchedulePeriod, period_id, ErrorCode.PERIOD_NOT_FOUND)
    return _format_period(period)


async def list_periods(session: AsyncSession, server_id: int) -> List[Dict]:
    result = await session.execute(
        select(SchedulePeriod).where(SchedulePeriod.server_id == server_id).order_by(SchedulePeriod.start_date)
    )
    return [_format_period(p) for p in result.scalars().all()]


async def get_active_periods(session: AsyncSession, server_id: int) -> List[Dict]:
    """Periods currently open for booking on a server."""
    result = await session.execute(
        select(SchedulePeriod)
        .where(SchedulePeriod.server_id == server_id, SchedulePeriod.is_active.is_(True))
        .order_by(SchedulePeriod.start_date)
    )
    return [_format_period(p) for p in result.scalars().all()]


async def update_period(
    session: AsyncSession,
    period_id: int,
    name: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    is_active: Optional[bool] = None,
) -> Dict:
    period = await _get_or_404(session, SchedulePeriod, period_id, ErrorCode.PERIOD_NOT_FOUND)
    validate_period_dates(
        start_date if start_date is not None else period.start_date,
        end_date if end_date is not None else period.end_date,
    )
    values = {"name": name, "start_date": start_date, "end_date": end_date, "is_active": is_active}
    if _apply_updates(period, values):
        await session.flush()
    return _format_period(period)


async def delete_period(session: AsyncSession, period_id: int) -> None:
    period = await _get_or_404(session, SchedulePeriod, period_id, ErrorCode.PERIOD_NOT_FOUND)
    in_use = await _count_requests(session, Request.period_id, period_id)
    if in_use:
        raise ValidationError(
            ErrorCode.PERIOD_IN_USE,
            "Period has booking requests and cannot be deleted",
            {"id": period_id, "request_count": in_use},
        )
    await session.delete(period)
    await session.flush()
