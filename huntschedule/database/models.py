"""
SQLAlchemy ORM models for the hunt schedule system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Date,
    DateTime,
    Time,
    ForeignKey,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from huntschedule.database.db import Base
from huntschedule.utils.constants import DEFAULT_SLOT_COST


class RequestStatus(str, enum.Enum):
    """Booking request status enum."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ClaimStatus(str, enum.Enum):
    """Point claim status enum."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RoleName(str, enum.Enum):
    """Built-in role names."""

    ADMIN = "admin"
    USER = "user"


class NotificationType(str, enum.Enum):
    """Notification type enum."""

    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_CANCELLED = "request_cancelled"
    CLAIM_APPROVED = "claim_approved"
    CLAIM_REJECTED = "claim_rejected"


class Server(Base):
    """Game servers (worlds)."""

    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    region = Column(String(50), nullable=False)
    pvp_type = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    respawns = relationship("Respawn", back_populates="server", cascade="all, delete-orphan")
    slots = relationship("Slot", back_populates="server", cascade="all, delete-orphan")
    periods = relationship("SchedulePeriod", back_populates="server", cascade="all, delete-orphan")
    characters = relationship("Character", back_populates="server", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_servers_name", "name"),)


class Difficulty(Base):
    """Difficulty tiers, used for display ordering only."""

    __tablename__ = "difficulties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(String(255), nullable=True)
    color = Column(String(20), nullable=True)  # Hex color for the UI badge
    sort_order = Column(Integer, default=0, nullable=False)


class Respawn(Base):
    """Named hunting spots on a server."""

    __tablename__ = "respawns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=False)
    name = Column(String(150), nullable=False)
    difficulty_id = Column(Integer, ForeignKey("difficulties.id"), nullable=False)
    min_players = Column(Integer, default=1, nullable=False)
    max_players = Column(Integer, default=4, nullable=False)
    ts_code = Column(String(20), nullable=True)  # TeamSpeak channel code
    city = Column(String(100), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    point_cost = Column(Integer, default=DEFAULT_SLOT_COST, nullable=False)  # Charged on approval

    # Relationships
    server = relationship("Server", back_populates="respawns")
    difficulty = relationship("Difficulty")

    __table_args__ = (
        Index("idx_respawns_server_id", "server_id"),
        CheckConstraint("max_players >= 1", name="ck_respawns_max_players_positive"),
        CheckConstraint("point_cost >= 0", name="ck_respawns_point_cost_non_negative"),
    )


class Slot(Base):
    """Time-of-day intervals available for booking. end_time < start_time wraps past midnight."""

    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Relationships
    server = relationship("Server", back_populates="slots")

    __table_args__ = (
        Index("idx_slots_server_id", "server_id"),
        CheckConstraint("start_time <> end_time", name="ck_slots_non_empty"),
    )


class SchedulePeriod(Base):
    """Bounded date ranges within which slot bookings apply."""

    __tablename__ = "schedule_periods"

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=False)
    name = Column(String(150), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    server = relationship("Server", back_populates="periods")

    __table_args__ = (
        Index("idx_schedule_periods_server_id", "server_id"),
        CheckConstraint("end_date > start_date", name="ck_schedule_periods_date_order"),
    )


class Role(Base):
    """User roles."""

    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)


class User(Base):
    """User accounts. points is a cached balance of the user's point transactions."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    points = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    role = relationship("Role")
    characters = relationship("Character", back_populates="user")

    __table_args__ = (CheckConstraint("points >= 0", name="ck_users_points_non_negative"),)


class Character(Base):
    """In-game characters, either owned by a user or verified externally for a party."""

    __tablename__ = "characters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=False)
    name = Column(String(100), nullable=False)
    vocation = Column(String(50), nullable=True)
    level = Column(Integer, default=1, nullable=False)
    is_main = Column(Boolean, default=False, nullable=False)
    is_external = Column(Boolean, default=False, nullable=False)
    external_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="characters")
    server = relationship("Server", back_populates="characters")

    __table_args__ = (
        Index("idx_characters_user_id", "user_id"),
        Index("idx_characters_name_server", "name", "server_id"),
    )


class Request(Base):
    """Booking requests for a (respawn, slot, period) tuple. Rows are never deleted."""

    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=False)
    respawn_id = Column(Integer, ForeignKey("respawns.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("schedule_periods.id"), nullable=False)
    status = Column(String(20), nullable=False, default=RequestStatus.PENDING.value)
    points_charged = Column(Integer, default=0, nullable=False)
    rejection_reason = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    server = relationship("Server")
    respawn = relationship("Respawn")
    slot = relationship("Slot")
    period = relationship("SchedulePeriod")
    party_members = relationship(
        "RequestPartyMember",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestPartyMember.id",
    )

    __table_args__ = (
        Index("idx_requests_tuple", "respawn_id", "slot_id", "period_id"),
        Index("idx_requests_user_status", "user_id", "status"),
        # At most one approved request per (respawn, slot, period)
        Index(
            "uq_requests_approved_tuple",
            "respawn_id",
            "slot_id",
            "period_id",
            unique=True,
            postgresql_where=text("status = 'approved'"),
            sqlite_where=text("status = 'approved'"),
        ),
    )


class RequestPartyMember(Base):
    """Party members attached to a request."""

    __tablename__ = "request_party_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False)
    character_id = Column(Integer, ForeignKey("characters.id"), nullable=True)
    character_name = Column(String(100), nullable=False)
    role_in_party = Column(String(50), nullable=True)
    is_leader = Column(Boolean, default=False, nullable=False)

    # Relationships
    request = relationship("Request", back_populates="party_members")
    character = relationship("Character")


class PointTransaction(Base):
    """Append-only point ledger. Sum of amount per user equals User.points."""

    __tablename__ = "point_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # Set for manual adjustments
    amount = Column(Integer, nullable=False)  # Signed: negative for debits
    reason = Column(String(500), nullable=False)
    balance_after = Column(Integer, nullable=False)
    related_request_id = Column(Integer, ForeignKey("requests.id"), nullable=True)
    related_claim_id = Column(Integer, ForeignKey("point_claims.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    admin = relationship("User", foreign_keys=[admin_id])

    __table_args__ = (
        Index("idx_point_transactions_user_id", "user_id"),
        Index("idx_point_transactions_request_id", "related_request_id"),
    )


class PointClaim(Base):
    """Point redemptions: points are held on creation and returned on rejection."""

    __tablename__ = "point_claims"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    points = Column(Integer, nullable=False)
    note = Column(String(500), nullable=True)
    screenshot_url = Column(String(2000), nullable=True)
    status = Column(String(20), nullable=False, default=ClaimStatus.PENDING.value)
    reviewed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    admin_response = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])

    __table_args__ = (
        Index("idx_point_claims_status", "status"),
        CheckConstraint("points > 0", name="ck_point_claims_points_positive"),
    )


class Notification(Base):
    """In-app notifications emitted by request and claim reviews."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(Text, nullable=True)  # JSON string
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_notifications_user_unread", "user_id", "is_read"),)
