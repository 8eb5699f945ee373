"""create automation schedules and pipeline runs

Revision ID: 0001_schedules_and_runs
Revises:
Create Date: 2026-09-14 09:12:40.418233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_schedules_and_runs"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "automation_schedules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column(
            "enabled", sa.Boolean(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column("cron_expression", sa.String(length=128), nullable=False),
        sa.Column("executor_options", sa.JSON(), nullable=True),
        sa.Column("last_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "run_count", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_schedules_enabled",
        "automation_schedules",
        ["enabled"],
        unique=False,
    )

    op.create_table(
        "pipeline_runs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("schedule_id", sa.Uuid(), nullable=True),
        sa.Column("source_id", sa.String(length=255), nullable=True),
        sa.Column("source_title", sa.String(length=512), nullable=True),
        sa.Column(
            "status",
            sa.Enum("RUNNING", "SUCCESS", "FAILED", name="pipeline_run_status"),
            nullable=False,
        ),
        sa.Column("stage", sa.String(length=255), nullable=True),
        sa.Column(
            "progress", sa.Integer(), server_default=sa.text("0"), nullable=False
        ),
        sa.Column("logs", sa.JSON(), nullable=False),
        sa.Column("result_ref", sa.String(length=255), nullable=True),
        sa.Column("result_url", sa.String(length=2048), nullable=True),
        sa.Column("error", sa.String(length=2048), nullable=True),
        sa.Column("error_stage", sa.String(length=255), nullable=True),
        sa.Column(
            "triggered_by",
            sa.Enum("schedule", "manual", name="pipeline_run_trigger"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_pipeline_runs_started_at", "pipeline_runs", ["started_at"], unique=False
    )
    op.create_index(
        "ix_pipeline_runs_schedule_id_status",
        "pipeline_runs",
        ["schedule_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_pipeline_runs_status_triggered_by",
        "pipeline_runs",
        ["status", "triggered_by"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_pipeline_runs_status_triggered_by", table_name="pipeline_runs")
    op.drop_index("ix_pipeline_runs_schedule_id_status", table_name="pipeline_runs")
    op.drop_index("ix_pipeline_runs_started_at", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
    op.drop_index(
        "ix_automation_schedules_enabled", table_name="automation_schedules"
    )
    op.drop_table("automation_schedules")
    sa.Enum(name="pipeline_run_trigger").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="pipeline_run_status").drop(op.get_bind(), checkfirst=True)
