"""
Shared pytest configuration for hunt schedule tests.

Runs against PostgreSQL when TEST_DATABASE_URL is set, otherwise against a
fresh SQLite file per test (aiosqlite). Both backends enforce the partial
unique index on approved requests, so conflict behaviour is exercised on
either.

SAFETY: When TEST_DATABASE_URL is set, this module REFUSES to run against any
database whose name does not contain the substring "test". This prevents
accidental truncation of the development or production database.
"""

import os

os.environ.setdefault("ENV", "test")

import asyncio  # noqa: E402
from datetime import date, time  # noqa: E402
from urllib.parse import unquote  # noqa: E402

import httpx  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from huntschedule.database.db import Base  # noqa: E402
from huntschedule.database.models import (  # noqa: E402
    Character,
    Difficulty,
    RoleName,
    Respawn,
    SchedulePeriod,
    Server,
    Slot,
)
from huntschedule.services import point_service, user_service  # noqa: E402
from huntschedule.services.character_validator import TibiaDataValidator  # noqa: E402
from huntschedule.services.conflict_arbiter import KnownMember, RequestDraft  # noqa: E402
from huntschedule.services.context import CallerContext  # noqa: E402
from huntschedule.utils.constants import REASON_MANUAL_ADJUSTMENT  # noqa: E402


def _resolve_postgres_url():
    """Return TEST_DATABASE_URL after the safety check, or None to use SQLite."""
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        return None

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]  # strip query params
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"  Or unset it to run against a temporary SQLite file.\n"
            f"{'=' * 70}"
        )
    return url


POSTGRES_TEST_URL = _resolve_postgres_url()


async def _truncate_postgres(engine):
    async with engine.connect() as truncate_conn:
        async with truncate_conn.begin():
            result = await truncate_conn.execute(
                text("""
                    SELECT tablename FROM pg_tables
                    WHERE schemaname = 'public'
                    AND tablename NOT LIKE 'pg_%'
                    AND tablename NOT LIKE 'alembic_%'
                    ORDER BY tablename
                """)
            )
            tables = [row[0] for row in result.fetchall()]
            if tables:
                table_list = ", ".join(f'"{table}"' for table in tables)
                await truncate_conn.execute(text(f"TRUNCATE TABLE {table_list} RESTART IDENTITY CASCADE"))


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with all tables in place."""
    url = POSTGRES_TEST_URL or f"sqlite+aiosqlite:///{tmp_path / 'huntschedule_test.db'}"
    # NullPool avoids "Future attached to different loop" errors across tests
    engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if POSTGRES_TEST_URL:
        await _truncate_postgres(engine)

    # Code that opens its own sessions (booking_core) must hit the test database
    from huntschedule.database import db

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    await asyncio.sleep(0.05)  # Let connections finish before disposing
    await engine.dispose(close=True)


@pytest_asyncio.fixture
async def session_maker(test_engine):
    """Session maker for tests that need several independent sessions."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker):
    """Test database session. Nothing is committed unless a test does it explicitly."""
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


# ──────────────────────────────────────────────────────────────
# Domain fixtures
# ──────────────────────────────────────────────────────────────


TIBIA_CHARACTERS = {
    "knight of antica": {"name": "Knight of Antica", "world": "Antica", "vocation": "Elite Knight", "level": 210},
    "druid of antica": {"name": "Druid of Antica", "world": "Antica", "vocation": "Elder Druid", "level": 180},
    "secura sorcerer": {"name": "Secura Sorcerer", "world": "Secura", "vocation": "Master Sorcerer", "level": 320},
    "faraway paladin": {"name": "Faraway Paladin", "world": "Nowhere", "vocation": "Royal Paladin", "level": 95},
}


def tibiadata_handler(request: httpx.Request) -> httpx.Response:
    """Fake TibiaData v4 character endpoint."""
    name = unquote(request.url.path.rsplit("/", 1)[-1]).lower()
    if name == "broken api":
        return httpx.Response(500, json={"error": "internal"})
    character = TIBIA_CHARACTERS.get(name, {"name": ""})
    return httpx.Response(200, json={"character": {"character": character}})


@pytest_asyncio.fixture
async def fake_validator():
    return TibiaDataValidator(
        base_url="https://tibiadata.test/v4",
        transport=httpx.MockTransport(tibiadata_handler),
    )


@pytest_asyncio.fixture
async def counting_validator():
    """Validator over the fake endpoint that records every HTTP call it makes."""
    calls = []

    def _counting(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return tibiadata_handler(request)

    validator = TibiaDataValidator(
        base_url="https://tibiadata.test/v4",
        transport=httpx.MockTransport(_counting),
    )
    return validator, calls


@pytest_asyncio.fixture
async def world(db_session):
    """
    One bookable server (Antica) plus a second one (Secura), an admin and two
    users with 100 points each and a character apiece on Antica.
    """
    admin = await user_service.create_user(db_session, "admin", RoleName.ADMIN)
    alice = await user_service.create_user(db_session, "alice")
    bob = await user_service.create_user(db_session, "bob")

    antica = Server(name="Antica", region="EU", pvp_type="open", is_active=True)
    secura = Server(name="Secura", region="EU", pvp_type="optional", is_active=True)
    difficulty = Difficulty(name="medium", description="Intermediate challenge", sort_order=2)
    db_session.add_all([antica, secura, difficulty])
    await db_session.flush()

    respawn = Respawn(
        server_id=antica.id,
        name="Asura Palace",
        difficulty_id=difficulty.id,
        min_players=1,
        max_players=4,
        point_cost=10,
    )
    slot = Slot(server_id=antica.id, start_time=time(18, 0), end_time=time(20, 0))
    other_slot = Slot(server_id=antica.id, start_time=time(22, 0), end_time=time(2, 0))
    period = SchedulePeriod(
        server_id=antica.id, name="Week 1", start_date=date(2026, 1, 5), end_date=date(2026, 1, 12)
    )
    db_session.add_all([respawn, slot, other_slot, period])
    await db_session.flush()

    alice_knight = Character(user_id=alice["id"], server_id=antica.id, name="Alice Knight", level=300, is_main=True)
    alice_druid = Character(user_id=alice["id"], server_id=antica.id, name="Alice Druid", level=250)
    alice_secura = Character(user_id=alice["id"], server_id=secura.id, name="Alice Abroad", level=100)
    bob_paladin = Character(user_id=bob["id"], server_id=antica.id, name="Bob Paladin", level=280, is_main=True)
    db_session.add_all([alice_knight, alice_druid, alice_secura, bob_paladin])
    await db_session.flush()

    await point_service.credit(db_session, alice["id"], 100, REASON_MANUAL_ADJUSTMENT)
    await point_service.credit(db_session, bob["id"], 100, REASON_MANUAL_ADJUSTMENT)

    return {
        "admin": CallerContext(user_id=admin["id"], is_admin=True),
        "alice": CallerContext(user_id=alice["id"]),
        "bob": CallerContext(user_id=bob["id"]),
        "server_id": antica.id,
        "other_server_id": secura.id,
        "difficulty_id": difficulty.id,
        "respawn_id": respawn.id,
        "slot_id": slot.id,
        "other_slot_id": other_slot.id,
        "period_id": period.id,
        "characters": {
            "alice_knight": alice_knight.id,
            "alice_druid": alice_druid.id,
            "alice_secura": alice_secura.id,
            "bob_paladin": bob_paladin.id,
        },
    }


@pytest_asyncio.fixture
async def committed_world(db_session, world):
    """The world fixture, committed so that independent sessions can see it."""
    await db_session.commit()
    return world


@pytest_asyncio.fixture
async def make_draft(world):
    """Factory for request drafts on the world's default tuple."""

    def _make(user="alice", members=None, **overrides):
        if members is None:
            character = "alice_knight" if user == "alice" else "bob_paladin"
            members = [KnownMember(character_id=world["characters"][character], is_leader=True)]
        values = {
            "user_id": world[user].user_id,
            "server_id": world["server_id"],
            "respawn_id": world["respawn_id"],
            "slot_id": world["slot_id"],
            "period_id": world["period_id"],
            "party_members": members,
        }
        values.update(overrides)
        return RequestDraft(**values)

    return _make
