"""Initial schema

users, activity_events (unique external_id), reward_history,
rewardable_channels, roles and levels.

Revision ID: 3c9e1f4a7b20
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "3c9e1f4a7b20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("discord_id", sa.String(32), nullable=False, unique=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("global_name", sa.String(100), nullable=True),
        sa.Column("discriminator", sa.String(10), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("current_reward", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_daily_bonus", sa.DateTime(timezone=True), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_reward_desc", "users", ["current_reward"])

    op.create_table(
        "activity_events",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("channel_id", sa.String(32), nullable=False),
        sa.Column("external_id", sa.String(32), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_activity_events_external_id", "activity_events", ["external_id"], unique=True
    )
    op.create_index("ix_activity_events_channel", "activity_events", ["channel_id"])
    op.create_index(
        "ix_activity_events_user_time", "activity_events", ["user_id", "created_at"]
    )

    op.create_table(
        "reward_history",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "user_id", sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "event_id", sa.Integer(),
            sa.ForeignKey("activity_events.id", ondelete="SET NULL"),
            nullable=True, unique=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_reward_history_user_type_time",
        "reward_history",
        ["user_id", "type", "created_at"],
    )

    op.create_table(
        "rewardable_channels",
        sa.Column("channel_id", sa.String(32), primary_key=True),
        sa.Column("channel_name", sa.String(100), nullable=True),
        sa.Column("message_reward_amount", sa.Integer(), server_default="0"),
        sa.Column("comment_reward_amount", sa.Integer(), server_default="0"),
        sa.Column("forum_post_reward_amount", sa.Integer(), server_default="0"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("discord_role_id", sa.String(32), nullable=False, unique=True),
        sa.Column("role_name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
    )

    op.create_table(
        "levels",
        sa.Column("level_number", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("required_reward_amount", sa.Integer(), nullable=False),
        sa.Column("level_name", sa.String(100), nullable=False),
        sa.Column(
            "role_id", sa.Integer(),
            sa.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True,
        ),
    )


def downgrade() -> None:
    op.drop_table("levels")
    op.drop_table("roles")
    op.drop_table("rewardable_channels")
    op.drop_table("reward_history")
    op.drop_index("ix_activity_events_user_time", table_name="activity_events")
    op.drop_index("ix_activity_events_channel", table_name="activity_events")
    op.drop_index("ix_activity_events_external_id", table_name="activity_events")
    op.drop_table("activity_events")
    op.drop_index("ix_users_reward_desc", table_name="users")
    op.drop_table("users")
