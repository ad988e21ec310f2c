"""Create challenge, archive, achievement and points ledger tables

Revision ID: 5c1e0b7a9d42
Revises:
Create Date: 2026-10-19 09:12:04.118305

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c1e0b7a9d42'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- challenge_instances: live state, one row per (user, template) ---
    op.create_table(
        "challenge_instances",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("template_id", sa.String(64), primary_key=True),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("period_key", sa.String(16), nullable=False),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_challenge_instances_completed", "challenge_instances", ["completed"]
    )

    # --- challenge_archive: rolled-over daily/weekly snapshots ---
    op.create_table(
        "challenge_archive",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("template_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("period_key", sa.String(16), nullable=False),
        sa.Column("progress", sa.Integer, nullable=False),
        sa.Column("completed", sa.Boolean, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "user_id", "template_id", "period_key",
            name="uq_challenge_archive_user_template_period",
        ),
    )
    op.create_index(
        "ix_challenge_archive_user_kind", "challenge_archive", ["user_id", "kind"]
    )
    op.create_index(
        "ix_challenge_archive_archived_at", "challenge_archive", ["archived_at"]
    )

    # --- achievements ---
    op.create_table(
        "achievements",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("template_id", sa.String(64), nullable=False),
        sa.Column("instance_id", sa.String(96), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("icon", sa.String(16), nullable=True),
        sa.Column("points", sa.Integer, nullable=True),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "user_id", "instance_id", name="uq_achievements_user_instance"
        ),
    )
    op.create_index(
        "ix_achievements_user_unlocked", "achievements", ["user_id", "unlocked_at"]
    )

    # --- points_ledger ---
    op.create_table(
        "points_ledger",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "user_id", "idempotency_key", name="uq_points_ledger_user_key"
        ),
    )


def downgrade() -> None:
    op.drop_table("points_ledger")
    op.drop_index("ix_achievements_user_unlocked", table_name="achievements")
    op.drop_table("achievements")
    op.drop_index("ix_challenge_archive_archived_at", table_name="challenge_archive")
    op.drop_index("ix_challenge_archive_user_kind", table_name="challenge_archive")
    op.drop_table("challenge_archive")
    op.drop_index("ix_challenge_instances_completed", table_name="challenge_instances")
    op.drop_table("challenge_instances")
