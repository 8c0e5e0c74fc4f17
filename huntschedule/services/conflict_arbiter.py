"""
Conflict arbiter: pure allow/deny decisions for booking requests.

Nothing here touches the database. The request service loads the catalog
rows, the party's characters and the existing requests for the tuple, then
asks evaluate() whether the candidate may be written.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Sequence, Union

from huntschedule.database.models import RequestStatus
from huntschedule.services.errors import (
    BookingError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)


@dataclass(frozen=True)
class KnownMember:
    """A party member that references a stored character."""

    character_id: int
    role_in_party: Optional[str] = None
    is_leader: bool = False
    # Set when the user typed the name rather than picking one of their characters
    named_externally: bool = False


@dataclass(frozen=True)
class ExternalMember:
    """A party member given by name only; verified against the external validator."""

    name: str
    role_in_party: Optional[str] = None
    is_leader: bool = False


PartyMember = Union[KnownMember, ExternalMember]


@dataclass
class RequestDraft:
    """A booking request that has not been written yet."""

    user_id: int
    server_id: int
    respawn_id: int
    slot_id: int
    period_id: int
    party_members: List[PartyMember] = field(default_factory=list)

    @property
    def tuple_key(self):
        return (self.respawn_id, self.slot_id, self.period_id)


@dataclass
class Decision:
    allowed: bool
    error: Optional[BookingError] = None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def _belongs_to_server(entity, server_id: int) -> bool:
    return entity is not None and entity.server_id == server_id


def find_approved_conflicts(
    respawn_id: int, slot_id: int, period_id: int, existing: Iterable, exclude_id: Optional[int] = None
) -> list:
    """Approved requests holding the given tuple, optionally ignoring one request id."""
    return [
        r
        for r in existing
        if r.respawn_id == respawn_id
        and r.slot_id == slot_id
        and r.period_id == period_id
        and r.status == RequestStatus.APPROVED.value
        and r.id != exclude_id
    ]


def check_catalog(draft: RequestDraft, server, respawn, slot, period) -> None:
    if server is None:
        raise NotFoundError(ErrorCode.SERVER_NOT_FOUND, "Server not found", {"id": draft.server_id})
    if not _belongs_to_server(respawn, draft.server_id):
        raise NotFoundError(ErrorCode.RESPAWN_NOT_FOUND, "Respawn not found on this server", {"id": draft.respawn_id})
    if not _belongs_to_server(slot, draft.server_id):
        raise NotFoundError(ErrorCode.SLOT_NOT_FOUND, "Slot not found on this server", {"id": draft.slot_id})
    if not _belongs_to_server(period, draft.server_id):
        raise NotFoundError(ErrorCode.PERIOD_NOT_FOUND, "Schedule period not found on this server", {"id": draft.period_id})
    if not respawn.is_available:
        raise ValidationError(ErrorCode.RESPAWN_UNAVAILABLE, "Respawn is not available for booking", {"id": respawn.id})


def check_party(party: Sequence[PartyMember], max_players: int) -> None:
    if not party:
        raise ValidationError(ErrorCode.EMPTY_PARTY, "A request needs at least one party member")
    leaders = sum(1 for member in party if member.is_leader)
    if leaders > 1:
        raise ValidationError(ErrorCode.MULTIPLE_LEADERS, "A party can only have one leader", {"leaders": leaders})
    if len(party) > max_players:
        raise ValidationError(
            ErrorCode.PARTY_TOO_LARGE,
            f"Party has {len(party)} members but this respawn allows {max_players}",
            {"size": len(party), "max_players": max_players},
        )


def check_characters(draft: RequestDraft, characters: Mapping[int, object]) -> None:
    for member in draft.party_members:
        if not isinstance(member, KnownMember):
            continue
        character = characters.get(member.character_id)
        if character is None:
            raise NotFoundError(ErrorCode.CHARACTER_NOT_FOUND, "Character not found", {"id": member.character_id})
        owned = character.user_id == draft.user_id
        if not (owned or character.is_external or member.named_externally):
            raise ValidationError(
                ErrorCode.CHARACTER_NOT_OWNED,
                f"Character '{character.name}' does not belong to you",
                {"id": character.id, "name": character.name},
            )
        if character.server_id != draft.server_id:
            raise ValidationError(
                ErrorCode.CHARACTER_SERVER_MISMATCH,
                f"Character '{character.name}' is on a different server",
                {"id": character.id, "name": character.name, "character_server_id": character.server_id},
            )


def evaluate(
    draft: RequestDraft,
    existing: Iterable,
    *,
    server,
    respawn,
    slot,
    period,
    characters: Optional[Mapping[int, object]] = None,
) -> Decision:
    """
    Decide whether a candidate request may be written.

    Args:
        draft: The candidate request. External members must already be
            resolved to KnownMember entries by the caller.
        existing: Requests already stored for the candidate's tuple (others are ignored)
        server, respawn, slot, period: Catalog rows the draft references, or None if missing
        characters: Stored characters keyed by id for the party's KnownMember entries

    Returns:
        Decision(allowed=True) or Decision(allowed=False, error=...) carrying a
        NotFoundError, ValidationError or ConflictError
    """
    try:
        check_catalog(draft, server, respawn, slot, period)
        check_party(draft.party_members, respawn.max_players)
        check_characters(draft, characters or {})
        conflicts = find_approved_conflicts(draft.respawn_id, draft.slot_id, draft.period_id, existing)
        if conflicts:
            raise ConflictError(
                ErrorCode.CONFLICT_WITH_APPROVED_REQUEST,
                "This slot is already taken by an approved request",
                {"id": conflicts[0].id},
            )
    except BookingError as e:
        return Decision(allowed=False, error=e)
    return Decision(allowed=True)
