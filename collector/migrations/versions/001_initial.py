"""Initial collector schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(bind, name: str) -> bool:
    return sa.inspect(bind).has_table(name)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()

    if not _has_table(bind, "organization"):
        op.create_table(
            "organization",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("max_submissions_per_month", sa.Integer(), nullable=True),
            sa.Column("default_rate_limit_enabled", sa.Boolean(), nullable=True),
            sa.Column("default_rate_limit_max_requests", sa.Integer(), nullable=True),
            sa.Column("default_rate_limit_window_seconds", sa.Integer(), nullable=True),
            sa.Column("default_rate_limit_max_requests_per_hour", sa.Integer(), nullable=True),
            sa.Column("default_min_time_between_submissions_enabled", sa.Boolean(), nullable=True),
            sa.Column("default_min_time_between_submissions_seconds", sa.Integer(), nullable=True),
            sa.Column("default_max_request_size_bytes", sa.Integer(), nullable=True),
            sa.Column("default_referer_fallback_enabled", sa.Boolean(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_organization_slug", "organization", ["slug"], unique=True)

    if not _has_table(bind, "whitelisted_domain"):
        op.create_table(
            "whitelisted_domain",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("organization_id", sa.Uuid(), nullable=False),
            sa.Column("domain", sa.String(length=255), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organization.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_whitelisted_domain_organization_id", "whitelisted_domain", ["organization_id"]
        )

    if not _has_table(bind, "form"):
        op.create_table(
            "form",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("organization_id", sa.Uuid(), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("submit_hash", sa.String(length=64), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("use_org_integrations", sa.Boolean(), nullable=True),
            sa.Column("csrf_enabled", sa.Boolean(), nullable=False),
            sa.Column("use_org_security_settings", sa.Boolean(), nullable=True),
            sa.Column("rate_limit_enabled", sa.Boolean(), nullable=True),
            sa.Column("rate_limit_max_requests", sa.Integer(), nullable=True),
            sa.Column("rate_limit_window_seconds", sa.Integer(), nullable=True),
            sa.Column("rate_limit_max_requests_per_hour", sa.Integer(), nullable=True),
            sa.Column("min_time_between_submissions_enabled", sa.Boolean(), nullable=True),
            sa.Column("min_time_between_submissions_seconds", sa.Integer(), nullable=True),
            sa.Column("max_request_size_bytes", sa.Integer(), nullable=True),
            sa.Column("referer_fallback_enabled", sa.Boolean(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organization.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_form_organization_id", "form", ["organization_id"])
        op.create_index("ix_form_slug", "form", ["slug"], unique=True)
        op.create_index("ix_form_submit_hash", "form", ["submit_hash"], unique=True)

    if not _has_table(bind, "submission"):
        op.create_table(
            "submission",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("form_id", sa.Uuid(), nullable=False),
            sa.Column("data", sa.JSON(), nullable=False),
            sa.Column("origin_domain", sa.String(length=255), nullable=True),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["form_id"], ["form.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_submission_form_id", "submission", ["form_id"])
        op.create_index("ix_submission_created_at", "submission", ["created_at"])

    if not _has_table(bind, "integration"):
        op.create_table(
            "integration",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("organization_id", sa.Uuid(), nullable=False),
            sa.Column("form_id", sa.Uuid(), nullable=True),
            sa.Column("scope", sa.String(length=20), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("config", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organization.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["form_id"], ["form.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_integration_organization_id", "integration", ["organization_id"])
        op.create_index("ix_integration_form_id", "integration", ["form_id"])

    if not _has_table(bind, "integration_job"):
        op.create_table(
            "integration_job",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("queue_name", sa.String(length=64), nullable=False),
            sa.Column("integration_type", sa.String(length=20), nullable=False),
            sa.Column("submission_id", sa.Uuid(), nullable=False),
            sa.Column("singleton_key", sa.String(length=128), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("available_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("expire_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False),
            sa.Column("max_attempts", sa.Integer(), nullable=False),
            sa.Column("retry_delay_seconds", sa.Integer(), nullable=False),
            sa.Column("retry_backoff", sa.Boolean(), nullable=False),
            sa.Column("error_message", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["submission_id"], ["submission.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("singleton_key"),
        )
        op.create_index("ix_integration_job_queue_name", "integration_job", ["queue_name"])
        op.create_index("ix_integration_job_submission_id", "integration_job", ["submission_id"])
        op.create_index("ix_integration_job_available_at", "integration_job", ["available_at"])


def downgrade() -> None:
    for table in (
        "integration_job",
        "integration",
        "submission",
        "form",
        "whitelisted_domain",
        "organization",
    ):
        op.drop_table(table)
