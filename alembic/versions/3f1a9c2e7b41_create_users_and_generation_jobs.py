"""create_users_and_generation_jobs

Revision ID: 3f1a9c2e7b41
Revises:
Create Date: 2026-10-17 09:12:40.118302

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

generation_status = postgresql.ENUM(
    "starting",
    "processing",
    "succeeded",
    "failed",
    "cancelled",
    name="generation_status",
    create_type=False,
)


def upgrade() -> None:
    """Create users (credits projection) and generation_jobs tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "credits",
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            server_default="0",
        ),
        sa.Column("total_generations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_generation_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        # Balance is never negative
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    generation_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("prompt", sa.String(length=500), nullable=False),
        sa.Column("aspect_ratio", sa.String(length=10), nullable=False),
        sa.Column("model_version", sa.String(length=255), nullable=False),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("provider_job_id", sa.String(length=255), nullable=True),
        sa.Column("status", generation_status, nullable=False),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("cost_credits", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_user_id", "generation_jobs", ["user_id"])
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"])
    op.create_index("ix_generation_jobs_created_at", "generation_jobs", ["created_at"])
    op.create_index("ix_generation_jobs_provider_job_id", "generation_jobs", ["provider_job_id"])


def downgrade() -> None:
    """Drop generation_jobs and users tables."""
    op.drop_index("ix_generation_jobs_provider_job_id", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_created_at", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_status", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_user_id", table_name="generation_jobs")
    op.drop_table("generation_jobs")
    generation_status.drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
