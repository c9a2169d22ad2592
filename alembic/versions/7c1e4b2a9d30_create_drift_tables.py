"""create device and drift tables

Revision ID: 7c1e4b2a9d30
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

revision = "7c1e4b2a9d30"
down_revision = None
branch_labels = None
depends_on = None


sync_status_enum = sa.Enum("pending", "synced", "drift", "error", name="syncstatus", create_type=True)
run_status_enum = sa.Enum("running", "completed", "failed", name="runstatus", create_type=True)


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    if is_postgres:
        sync_status_enum.create(bind, checkfirst=True)
        run_status_enum.create(bind, checkfirst=True)

    op.create_table(
        "devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=False),
        sa.Column("device_type", sa.String(length=80), nullable=True),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "device_configs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("device_id", sa.Integer(), nullable=False),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("sync_status", sync_status_enum, nullable=True),
        sa.Column("last_synced", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_id"),
    )

    op.create_table(
        "drift_detection_schedules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("cron_spec", sa.String(length=120), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("device_ids", sa.JSON(), nullable=True),
        sa.Column("device_filter", sa.JSON(), nullable=True),
        sa.Column("last_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("run_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "drift_detection_runs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("status", run_status_enum, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("results", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["schedule_id"], ["drift_detection_schedules.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_drift_detection_runs_schedule_id", "drift_detection_runs", ["schedule_id"])

    op.create_table(
        "drift_reports",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("report_type", sa.String(length=20), nullable=False),
        sa.Column("device_id", sa.Integer(), nullable=True),
        sa.Column("schedule_id", sa.Integer(), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_devices", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("devices_in_sync", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("devices_drifted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("devices_errored", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_differences", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("critical_differences", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("warning_differences", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("info_differences", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("security_changes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("network_changes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_health_score", sa.Float(), nullable=False, server_default="100"),
        sa.Column("categories_affected", sa.JSON(), nullable=True),
        sa.Column("most_common_drifts", sa.JSON(), nullable=True),
        sa.Column("devices", sa.JSON(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_drift_reports_report_type", "drift_reports", ["report_type"])
    op.create_index("ix_drift_reports_device_id", "drift_reports", ["device_id"])
    op.create_index("ix_drift_reports_schedule_id", "drift_reports", ["schedule_id"])

    op.create_table(
        "drift_trends",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("device_id", sa.Integer(), nullable=False),
        sa.Column("path", sa.String(length=255), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("first_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("occurrences", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_drift_trends_device_id", "drift_trends", ["device_id"])
    op.create_index(
        "uq_drift_trends_open_device_path",
        "drift_trends",
        ["device_id", "path"],
        unique=True,
        sqlite_where=sa.text("resolved = 0"),
        postgresql_where=sa.text("NOT resolved"),
    )


def downgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"

    op.drop_index("uq_drift_trends_open_device_path", table_name="drift_trends")
    op.drop_index("ix_drift_trends_device_id", table_name="drift_trends")
    op.drop_table("drift_trends")
    op.drop_index("ix_drift_reports_schedule_id", table_name="drift_reports")
    op.drop_index("ix_drift_reports_device_id", table_name="drift_reports")
    op.drop_index("ix_drift_reports_report_type", table_name="drift_reports")
    op.drop_table("drift_reports")
    op.drop_index("ix_drift_detection_runs_schedule_id", table_name="drift_detection_runs")
    op.drop_table("drift_detection_runs")
    op.drop_table("drift_detection_schedules")
    op.drop_table("device_configs")
    op.drop_table("devices")

    if is_postgres:
        run_status_enum.drop(bind, checkfirst=True)
        sync_status_enum.drop(bind, checkfirst=True)
