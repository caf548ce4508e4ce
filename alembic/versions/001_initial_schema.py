"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-02-02

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("is_subscribed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("timezone", sa.String(64), nullable=True, server_default="UTC"),
        sa.Column("preferred_send_time", sa.String(8), nullable=True, server_default="08:00"),
        sa.Column("send_frequency", sa.String(10), nullable=True, server_default="daily"),
        sa.Column("weekend_delivery", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_sent_date", sa.String(32), nullable=True),
        sa.Column("keywords", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("custom_prompt", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_sources",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("handle", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "handle", name="uq_user_source_handle"),
    )
    op.create_index("ix_user_sources_user_id", "user_sources", ["user_id"])
    op.create_index("ix_user_sources_handle", "user_sources", ["handle"])

    op.create_table(
        "source_posts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("handle", sa.String(255), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("url", sa.String(2048), nullable=True),
        sa.Column("posted_at", sa.DateTime(), nullable=False),
        sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reposts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fetched_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id"),
    )
    op.create_index("ix_source_posts_handle", "source_posts", ["handle"])
    op.create_index("ix_source_posts_posted_at", "source_posts", ["posted_at"])

    op.create_table(
        "newsletters",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("post_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("date_range", sa.String(100), nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("prompt_version", sa.String(20), nullable=True),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("sent_to", sa.String(255), nullable=True),
        sa.Column("email_id", sa.String(255), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_newsletters_user_id", "newsletters", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_newsletters_user_id", table_name="newsletters")
    op.drop_table("newsletters")
    op.drop_index("ix_source_posts_posted_at", table_name="source_posts")
    op.drop_index("ix_source_posts_handle", table_name="source_posts")
    op.drop_table("source_posts")
    op.drop_index("ix_user_sources_handle", table_name="user_sources")
    op.drop_index("ix_user_sources_user_id", table_name="user_sources")
    op.drop_table("user_sources")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
