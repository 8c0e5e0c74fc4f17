"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

Complete database schema - creates all tables from scratch.

Creates all tables based on current models including:
- Catalog tables: servers, difficulties, respawns, slots, schedule_periods
- Account tables: roles, users, characters
- Booking tables: requests, request_party_members
- Ledger tables: point_transactions, point_claims
- Supporting tables: notifications
- The partial unique index allowing one approved request per (respawn, slot, period)
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from scratch."""
    # Import models to register them with Base.metadata
    from huntschedule.database.db import Base
    from huntschedule.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Drop all tables."""
    from huntschedule.database.db import Base
    from huntschedule.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
