"""
Character service: stored characters and party member resolution.

Handles validating characters against the external validator, keeping a
single main character per user, and turning External(name) party members
into stored characters before a request is arbitrated.
"""

from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from huntschedule.database.models import Character, Server
from huntschedule.services.character_validator import (
    CharacterLookup,
    TibiaDataValidator,
    get_character_validator,
)
from huntschedule.services.conflict_arbiter import KnownMember, RequestDraft
from huntschedule.services.context import CallerContext
from huntschedule.services.errors import ErrorCode, NotFoundError, ValidationError
from huntschedule.utils.datetime_utils import isoformat_or_none, utcnow
import logging

logger = logging.getLogger(__name__)


def format_character(character: Character) -> Dict:
    return {
        "id": character.id,
        "user_id": character.user_id,
        "server_id": character.server_id,
        "name": character.name,
        "vocation": character.vocation,
        "level": character.level,
        "is_main": character.is_main,
        "is_external": character.is_external,
        "external_verified_at": isoformat_or_none(character.external_verified_at),
    }


async def get_character(session: AsyncSession, character_id: int) -> Character:
    result = await session.execute(select(Character).where(Character.id == character_id))
    character = result.scalar_one_or_none()
    if character is None:
        raise NotFoundError(ErrorCode.CHARACTER_NOT_FOUND, "Character not found", {"id": character_id})
    return character


async def list_user_characters(session: AsyncSession, user_id: int) -> List[Dict]:
    result = await session.execute(
        select(Character).where(Character.user_id == user_id).order_by(Character.is_main.desc(), Character.name)
    )
    return [format_character(c) for c in result.scalars().all()]


async def _get_server_by_name(session: AsyncSession, name: str) -> Optional[Server]:
    result = await session.execute(select(Server).where(func.lower(Server.name) == name.lower()))
    return result.scalars().first()


async def verify_external_character(
    session: AsyncSession,
    name: str,
    server_id: int,
    validator: Optional[TibiaDataValidator] = None,
) -> CharacterLookup:
    """
    Confirm a character exists on the game server the caller selected.

    Raises:
        NotFoundError: If the validator does not know the character (or is unreachable)
        ValidationError: If the character's world is not configured, or differs
            from the selected server
    """
    validator = validator or get_character_validator()
    lookup = await validator.validate_character(name)
    if lookup is None or not lookup.exists:
        raise NotFoundError(
            ErrorCode.CHARACTER_NOT_FOUND_EXTERNAL,
            f"Character '{name}' was not found",
            {"name": name},
        )

    world_server = await _get_server_by_name(session, lookup.world or "")
    if world_server is None:
        raise ValidationError(
            ErrorCode.CHARACTER_SERVER_NOT_CONFIGURED,
            f"Character '{name}' is on server '{lookup.world}' which is not configured",
            {"name": name, "world": lookup.world},
        )
    if world_server.id != server_id:
        raise ValidationError(
            ErrorCode.CHARACTER_SERVER_MISMATCH,
            f"Character '{name}' is on server '{lookup.world}'",
            {"name": name, "actual_server": lookup.world, "selected_server_id": server_id},
        )
    return lookup


async def _clear_main_flag(session: AsyncSession, user_id: int, keep_id: Optional[int] = None) -> None:
    query = update(Character).where(Character.user_id == user_id, Character.is_main.is_(True))
    if keep_id is not None:
        query = query.where(Character.id != keep_id)
    await session.execute(query.values(is_main=False).execution_options(synchronize_session="fetch"))


async def create_character(
    session: AsyncSession,
    caller: CallerContext,
    server_id: int,
    name: str,
    is_main: bool = False,
    validator: Optional[TibiaDataValidator] = None,
) -> Dict:
    """
    Register a character for the calling user after checking it with the validator.
    """
    server = await session.get(Server, server_id)
    if server is None:
        raise NotFoundError(ErrorCode.SERVER_NOT_FOUND, "Server not found", {"id": server_id})

    lookup = await verify_external_character(session, name, server_id, validator)

    if is_main:
        await _clear_main_flag(session, caller.user_id)

    character = Character(
        user_id=caller.user_id,
        server_id=server_id,
        name=lookup.name,
        vocation=lookup.vocation,
        level=lookup.level or 1,
        is_main=is_main,
    )
    session.add(character)
    await session.flush()
    await session.refresh(character)
    return format_character(character)


async def set_main_character(session: AsyncSession, caller: CallerContext, character_id: int) -> Dict:
    character = await get_character(session, character_id)
    if character.user_id != caller.user_id and not caller.is_admin:
        raise ValidationError(ErrorCode.NOT_AUTHORIZED, "Not authorized to modify this character")
    if character.user_id is not None:
        await _clear_main_flag(session, character.user_id, keep_id=character.id)
    character.is_main = True
    await session.flush()
    await session.refresh(character)
    return format_character(character)


async def delete_character(session: AsyncSession, caller: CallerContext, character_id: int) -> None:
    character = await get_character(session, character_id)
    if character.user_id != caller.user_id and not caller.is_admin:
        raise ValidationError(ErrorCode.NOT_AUTHORIZED, "Not authorized to delete this character")
    await session.delete(character)
    await session.flush()


async def _find_by_name(session: AsyncSession, name: str, server_id: int) -> Optional[Character]:
    result = await session.execute(
        select(Character)
        .where(func.lower(Character.name) == name.strip().lower(), Character.server_id == server_id)
        .order_by(Character.id)
    )
    return result.scalars().first()


async def resolve_party(
    session: AsyncSession,
    draft: RequestDraft,
    validator: Optional[TibiaDataValidator] = None,
) -> Tuple[RequestDraft, Dict[int, Character]]:
    """
    Turn every party member into a KnownMember backed by a stored character.

    External members are looked up by name on the request's server first;
    unknown names go through the validator and are stored as external
    characters. Known members are loaded as-is and checked by the arbiter.

    Returns:
        (draft with only KnownMember entries, characters keyed by id)
    """
    known_ids = [m.character_id for m in draft.party_members if isinstance(m, KnownMember)]
    characters: Dict[int, Character] = {}
    if known_ids:
        result = await session.execute(select(Character).where(Character.id.in_(known_ids)))
        characters = {c.id: c for c in result.scalars().all()}

    resolved = []
    for member in draft.party_members:
        if isinstance(member, KnownMember):
            resolved.append(member)
            continue

        character = await _find_by_name(session, member.name, draft.server_id)
        if character is None:
            lookup = await verify_external_character(session, member.name, draft.server_id, validator)
            character = Character(
                user_id=None,
                server_id=draft.server_id,
                name=lookup.name,
                vocation=lookup.vocation,
                level=lookup.level or 1,
                is_external=True,
                external_verified_at=utcnow(),
            )
            session.add(character)
            await session.flush()
            logger.info(f"Stored external character {lookup.name} for server {draft.server_id}")

        characters[character.id] = character
        resolved.append(
            KnownMember(
                character_id=character.id,
                role_in_party=member.role_in_party,
                is_leader=member.is_leader,
                named_externally=True,
            )
        )

    return (
        RequestDraft(
            user_id=draft.user_id,
            server_id=draft.server_id,
            respawn_id=draft.respawn_id,
            slot_id=draft.slot_id,
            period_id=draft.period_id,
            party_members=resolved,
        ),
        characters,
    )
