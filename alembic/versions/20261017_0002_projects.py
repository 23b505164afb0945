"""Add named projects, per-channel config, and project names on sessions and jobs."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0002"
down_revision = "20261017_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("name", sa.String(), primary_key=True),
        sa.Column("path", sa.String(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "channel_configs",
        sa.Column("channel_id", sa.String(), primary_key=True),
        sa.Column(
            "project_name",
            sa.String(),
            sa.ForeignKey("projects.name", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("working_dir", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    with op.batch_alter_table("thread_sessions") as batch:
        batch.add_column(sa.Column("project_name", sa.String(), nullable=True))
    with op.batch_alter_table("agent_jobs") as batch:
        batch.add_column(sa.Column("project_name", sa.String(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("agent_jobs") as batch:
        batch.drop_column("project_name")
    with op.batch_alter_table("thread_sessions") as batch:
        batch.drop_column("project_name")
    op.drop_table("channel_configs")
    op.drop_table("projects")
