"""asset pipeline schema

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "5c1e7a9d2b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "assets",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("group_ref", sa.String(100)),
        sa.Column("storage_key", sa.String(1024), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255)),
        sa.Column("description", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("scan_status", sa.String(20), nullable=False, server_default="not-scanned"),
        sa.Column("derivatives_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("thumbnail_key", sa.String(1024)),
        sa.Column("preview_keys", sa.JSON, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("row_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("quota_released", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("deleted_at", sa.DateTime),
        sa.Column("purged_at", sa.DateTime),
        sa.UniqueConstraint("storage_key", name="uq_assets_storage_key"),
    )
    op.create_index("ix_assets_owner_id", "assets", ["owner_id"])
    op.create_index("ix_assets_group_ref", "assets", ["group_ref"])
    op.create_index("ix_assets_status", "assets", ["status"])
    op.create_index("ix_assets_status_updated_at", "assets", ["status", "updated_at"])

    op.create_table(
        "upload_sessions",
        sa.Column(
            "asset_id",
            sa.String(32),
            sa.ForeignKey("assets.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("owner_id", sa.String(100), nullable=False),
        sa.Column("declared_size", sa.BigInteger, nullable=False),
        sa.Column("declared_type", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_upload_sessions_expires_at", "upload_sessions", ["expires_at"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "asset_id",
            sa.String(32),
            sa.ForeignKey("assets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False),
        sa.Column("run_at", sa.DateTime, nullable=False),
        sa.Column("lease_expires_at", sa.DateTime),
        sa.Column("lease_token", sa.String(32)),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("completed_at", sa.DateTime),
        sa.UniqueConstraint("asset_id", "kind", name="uq_jobs_asset_kind"),
    )
    op.create_index("ix_jobs_asset_id", "jobs", ["asset_id"])
    op.create_index("ix_jobs_kind_lease_expires_at", "jobs", ["kind", "lease_expires_at"])
    op.create_index("ix_jobs_kind_state_run_at", "jobs", ["kind", "state", "run_at"])

    op.create_table(
        "quota_counters",
        sa.Column("identity", sa.String(100), primary_key=True),
        sa.Column("request_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("window_started_at", sa.DateTime, nullable=False),
        sa.Column("stored_bytes", sa.BigInteger, nullable=False, server_default="0"),
    )


def downgrade():
    op.drop_table("quota_counters")
    op.drop_index("ix_jobs_kind_state_run_at", table_name="jobs")
    op.drop_index("ix_jobs_kind_lease_expires_at", table_name="jobs")
    op.drop_index("ix_jobs_asset_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_upload_sessions_expires_at", table_name="upload_sessions")
    op.drop_table("upload_sessions")
    op.drop_index("ix_assets_status_updated_at", table_name="assets")
    op.drop_index("ix_assets_status", table_name="assets")
    op.drop_index("ix_assets_group_ref", table_name="assets")
    op.drop_index("ix_assets_owner_id", table_name="assets")
    op.drop_table("assets")
