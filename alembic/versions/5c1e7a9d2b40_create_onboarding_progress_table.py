"""create_onboarding_progress_table

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-19 10:42:13.518204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5c1e7a9d2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "onboarding_progress",
        sa.Column(
            "session_id",
            sa.String(length=128),
            nullable=False,
            comment="Anonymous guest session id",
        ),
        sa.Column("is_analyzing", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "payload",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
            comment="Full progress record (stages, flags, timestamps)",
        ),
        sa.PrimaryKeyConstraint("session_id"),
    )
    op.create_index(
        op.f("ix_onboarding_progress_is_analyzing"),
        "onboarding_progress",
        ["is_analyzing"],
        unique=False,
    )
    op.create_index(
        op.f("ix_onboarding_progress_updated_at"),
        "onboarding_progress",
        ["updated_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_onboarding_progress_updated_at"), table_name="onboarding_progress")
    op.drop_index(op.f("ix_onboarding_progress_is_analyzing"), table_name="onboarding_progress")
    op.drop_table("onboarding_progress")
