"""Team challenges and the competitive leaderboard.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18

Creates: competitive_challenges, competitive_leaderboard
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, Sequence[str], None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- competitive_challenges --
    op.create_table(
        "competitive_challenges",
        sa.Column("id", sa.String(200), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("objectives", sa.JSON, nullable=False),
        sa.Column("total_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_competitive_challenges_user_id", "competitive_challenges", ["user_id"]
    )

    # -- competitive_leaderboard --
    op.create_table(
        "competitive_leaderboard",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "competitive_advantage_points", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("market_victories", sa.Integer, nullable=False, server_default="0"),
        sa.Column("intelligence_gathered", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rank_position", sa.Integer, nullable=True),
        sa.Column("percentile", sa.Float, nullable=True),
        sa.Column("last_updated", sa.DateTime, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("competitive_leaderboard")
    op.drop_index("ix_competitive_challenges_user_id", table_name="competitive_challenges")
    op.drop_table("competitive_challenges")
