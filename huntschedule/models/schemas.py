"""
Pydantic models for API request/response validation.
"""

from datetime import date, time
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator
from huntschedule.services.conflict_arbiter import ExternalMember, KnownMember, PartyMember


class PartyMemberInput(BaseModel):
    """A party member: either one of the caller's characters or a character name."""

    character_id: Optional[int] = None
    character_name: Optional[str] = Field(default=None, max_length=100)
    role_in_party: Optional[str] = Field(default=None, max_length=50)
    is_leader: bool = False

    @model_validator(mode="after")
    def validate_id_or_name(self):
        """Ensure exactly one of character_id or character_name is provided."""
        has_name = bool(self.character_name and self.character_name.strip())
        if self.character_id is None and not has_name:
            raise ValueError("Either character_id or character_name must be provided")
        if self.character_id is not None and has_name:
            raise ValueError("Provide either character_id or character_name, not both")
        return self

    def to_member(self) -> PartyMember:
        if self.character_id is not None:
            return KnownMember(
                character_id=self.character_id, role_in_party=self.role_in_party, is_leader=self.is_leader
            )
        return ExternalMember(
            name=self.character_name.strip(), role_in_party=self.role_in_party, is_leader=self.is_leader
        )


class CreateRequestRequest(BaseModel):
    """Request to book a respawn slot."""

    server_id: int
    respawn_id: int
    slot_id: int
    period_id: int
    party_members: List[PartyMemberInput] = Field(default_factory=list)
    user_id: Optional[int] = None  # Admins may book on behalf of another user


class RejectRequestRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class PartyMemberResponse(BaseModel):
    id: int
    character_id: Optional[int] = None
    character_name: str
    role_in_party: Optional[str] = None
    is_leader: bool


class RequestResponse(BaseModel):
    """Booking request with its party."""

    id: int
    user_id: int
    server_id: int
    respawn_id: int
    slot_id: int
    period_id: int
    status: str
    points_charged: int
    rejection_reason: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    reviewed_at: Optional[str] = None
    reviewed_by_id: Optional[int] = None
    cancelled_at: Optional[str] = None
    cancelled_by_id: Optional[int] = None
    party_members: List[PartyMemberResponse] = Field(default_factory=list)


class PointAdjustmentRequest(BaseModel):
    """Admin point adjustment; negative amounts debit."""

    user_id: int
    amount: int
    reason: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_amount(self):
        if self.amount == 0:
            raise ValueError("amount must be non-zero")
        return self


class PointTransactionResponse(BaseModel):
    id: int
    user_id: int
    admin_id: Optional[int] = None
    amount: int
    reason: str
    balance_after: int
    related_request_id: Optional[int] = None
    related_claim_id: Optional[int] = None
    created_at: Optional[str] = None


class BalanceResponse(BaseModel):
    user_id: int
    points: int


class CreateClaimRequest(BaseModel):
    """Request to redeem points."""

    points: int = Field(gt=0)
    note: Optional[str] = Field(default=None, max_length=500)
    screenshot_url: Optional[str] = Field(default=None, max_length=2000)


class ReviewClaimRequest(BaseModel):
    admin_response: Optional[str] = Field(default=None, max_length=500)


class ClaimResponse(BaseModel):
    id: int
    user_id: int
    points: int
    note: Optional[str] = None
    screenshot_url: Optional[str] = None
    status: str
    reviewed_by_id: Optional[int] = None
    admin_response: Optional[str] = None
    created_at: Optional[str] = None
    reviewed_at: Optional[str] = None


class ServerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    region: str = Field(min_length=1, max_length=50)
    pvp_type: Optional[str] = None
    is_active: bool = False


class ServerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    region: Optional[str] = Field(default=None, min_length=1, max_length=50)
    pvp_type: Optional[str] = None
    is_active: Optional[bool] = None


class CopyRespawnsRequest(BaseModel):
    """Copy every respawn of one server onto another."""

    source_server_id: int
    target_server_id: int
    overwrite_existing: bool = False


class CopyRespawnsResponse(BaseModel):
    copied_count: int
    deleted_count: int
    irreversible: bool
    message: str


class DifficultyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
    color: Optional[str] = None
    sort_order: int = 0


class DifficultyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None


class RespawnCreate(BaseModel):
    server_id: int
    name: str = Field(min_length=1, max_length=150)
    difficulty_id: int
    min_players: int = Field(default=1, ge=1)
    max_players: int = Field(default=4, ge=1)
    ts_code: Optional[str] = None
    city: Optional[str] = None
    is_available: bool = True
    point_cost: Optional[int] = Field(default=None, ge=0)


class RespawnUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    difficulty_id: Optional[int] = None
    min_players: Optional[int] = Field(default=None, ge=1)
    max_players: Optional[int] = Field(default=None, ge=1)
    ts_code: Optional[str] = None
    city: Optional[str] = None
    is_available: Optional[bool] = None
    point_cost: Optional[int] = Field(default=None, ge=0)


class SlotCreate(BaseModel):
    server_id: int
    start_time: time
    end_time: time


class SlotUpdate(BaseModel):
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class PeriodCreate(BaseModel):
    server_id: int
    name: str = Field(min_length=1, max_length=150)
    start_date: date
    end_date: date
    is_active: bool = True


class PeriodUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None


class CharacterCreate(BaseModel):
    server_id: int
    name: str = Field(min_length=2, max_length=100)
    is_main: bool = False
