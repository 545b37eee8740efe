"""Create sync_checkpoints and sync_runs tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the checkpoint and run history tables."""

    alembic_op.create_table(
        "sync_checkpoints",
        sa.Column("run_identity", sa.String(length=128), primary_key=True),
        sa.Column("run_id", sa.String(length=64), nullable=False),
        sa.Column("last_page", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_time", sa.BigInteger(), nullable=False),
        sa.Column("last_update_time", sa.BigInteger(), nullable=False),
    )

    alembic_op.create_table(
        "sync_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("start_page", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_page", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pages_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rows_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("metrics", sa.JSON(), nullable=True),
        sa.Column("acceptance", sa.JSON(), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    alembic_op.create_index("ix_sync_runs_run_id", "sync_runs", ["run_id"])
    alembic_op.create_index("ix_sync_runs_status", "sync_runs", ["status"])


def downgrade() -> None:
    """Drop the sync tables and related indexes."""

    alembic_op.drop_index("ix_sync_runs_status", table_name="sync_runs")
    alembic_op.drop_index("ix_sync_runs_run_id", table_name="sync_runs")
    alembic_op.drop_table("sync_runs")
    alembic_op.drop_table("sync_checkpoints")
