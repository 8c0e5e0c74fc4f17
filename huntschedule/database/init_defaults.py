#!/usr/bin/env python3
"""
Initialize default database values.
This script is run on startup to populate the built-in roles and difficulty tiers.
"""

import asyncio
from sqlalchemy import select
from huntschedule.database.db import AsyncSessionLocal
from huntschedule.database.models import Difficulty, Role, RoleName

DEFAULT_DIFFICULTIES = [
    {"name": "easy", "description": "Beginner friendly", "color": "green", "sort_order": 1},
    {"name": "medium", "description": "Intermediate challenge", "color": "yellow", "sort_order": 2},
    {"name": "hard", "description": "Advanced players", "color": "orange", "sort_order": 3},
    {"name": "nightmare", "description": "Elite players only", "color": "red", "sort_order": 4},
]


async def seed_defaults(session) -> None:
    """Insert missing roles and difficulties. Existing rows are left alone."""
    result = await session.execute(select(Role.name))
    existing_roles = set(result.scalars().all())
    for role in RoleName:
        if role.value not in existing_roles:
            session.add(Role(name=role.value))
            print(f"✓ Added role: {role.value}")

    result = await session.execute(select(Difficulty.name))
    existing_difficulties = set(result.scalars().all())
    for values in DEFAULT_DIFFICULTIES:
        if values["name"] not in existing_difficulties:
            session.add(Difficulty(**values))
            print(f"✓ Added difficulty: {values['name']}")

    await session.flush()


async def init_defaults():
    """Initialize default database values."""
    print("Initializing default database values...")

    async with AsyncSessionLocal() as session:
        await seed_defaults(session)
        await session.commit()

    print("✓ Default values initialized")


if __name__ == "__main__":
    asyncio.run(init_defaults())
