"""Create director_sessions table

Revision ID: 5c1e7d2a9b40
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "5c1e7d2a9b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """One row per session: latest accepted snapshot plus its expiry."""
    op.create_table(
        "director_sessions",
        sa.Column("session_id", sa.String(64), primary_key=True),
        sa.Column("updated_at", sa.BigInteger, nullable=False),
        sa.Column(
            "state",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.BigInteger, nullable=False),
    )
    op.create_index("ix_director_sessions_expires_at", "director_sessions", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_director_sessions_expires_at", table_name="director_sessions")
    op.drop_table("director_sessions")
