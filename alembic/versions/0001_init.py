"""init
Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]

def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("username", sa.String(length=60), nullable=False, unique=True),
        sa.Column("admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("moderator", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("trust_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("dismissed_banner_key", sa.Integer(), nullable=True),
    )
    op.create_index("ix_users_dismissed_banner_key", "users", ["dismissed_banner_key"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("auto_close_hours", sa.Integer(), nullable=True),
        sa.Column("auto_close_based_on_last_post", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )

    op.create_table(
        "topics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("archetype", sa.String(length=30), nullable=False, server_default="regular"),
        sa.Column("visible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pinned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pinned_globally", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pinned_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bumped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("highest_post_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("moderator_posts_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "archetype IN ('regular','banner','private_message')",
            name="ck_topics_archetype",
        ),
    )
    op.create_index("ix_topics_user_id", "topics", ["user_id"])
    op.create_index("ix_topics_category_id", "topics", ["category_id"])
    op.create_index("ix_topics_archetype", "topics", ["archetype"])
    op.create_index("ix_topics_pinned_until", "topics", ["pinned_until"])

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("topic_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("post_number", sa.Integer(), nullable=False),
        sa.Column("post_type", sa.String(length=30), nullable=False, server_default="regular"),
        sa.Column("action_code", sa.String(length=60), nullable=True),
        sa.Column("raw", sa.Text(), nullable=False, server_default=""),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("topic_id", "post_number", name="uq_posts_topic_post_number"),
    )
    op.create_index("ix_posts_topic_id", "posts", ["topic_id"])

    op.create_table(
        "topic_users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("topic_id", sa.Integer(), nullable=False),
        sa.Column("cleared_pinned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notification_level", sa.String(length=20), nullable=False, server_default="regular"),
        sa.UniqueConstraint("user_id", "topic_id", name="uq_topic_users_user_topic"),
    )
    op.create_index("ix_topic_users_user_id", "topic_users", ["user_id"])
    op.create_index("ix_topic_users_topic_id", "topic_users", ["topic_id"])

    op.create_table(
        "user_archived_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("topic_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("user_id", "topic_id", name="uq_user_archived_messages_user_topic"),
    )
    op.create_index("ix_user_archived_messages_user_id", "user_archived_messages", ["user_id"])
    op.create_index("ix_user_archived_messages_topic_id", "user_archived_messages", ["topic_id"])

    op.create_table(
        "status_updates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("topic_id", sa.Integer(), nullable=False),
        sa.Column("status_type", sa.String(length=30), nullable=False),
        sa.Column("execute_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("based_on_last_post", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("topic_id", "status_type", name="uq_status_updates_topic_status_type"),
        sa.CheckConstraint(
            "status_type IN ('close','open','publish_to_category','delete','delete_replies','reminder','bump')",
            name="ck_status_updates_status_type",
        ),
    )
    op.create_index("ix_status_updates_topic_id", "status_updates", ["topic_id"])
    op.create_index("ix_status_updates_execute_at", "status_updates", ["execute_at"])


def downgrade():
    op.drop_index("ix_status_updates_execute_at", table_name="status_updates")
    op.drop_index("ix_status_updates_topic_id", table_name="status_updates")
    op.drop_table("status_updates")
    op.drop_index("ix_user_archived_messages_topic_id", table_name="user_archived_messages")
    op.drop_index("ix_user_archived_messages_user_id", table_name="user_archived_messages")
    op.drop_table("user_archived_messages")
    op.drop_index("ix_topic_users_topic_id", table_name="topic_users")
    op.drop_index("ix_topic_users_user_id", table_name="topic_users")
    op.drop_table("topic_users")
    op.drop_index("ix_posts_topic_id", table_name="posts")
    op.drop_table("posts")
    op.drop_index("ix_topics_pinned_until", table_name="topics")
    op.drop_index("ix_topics_archetype", table_name="topics")
    op.drop_index("ix_topics_category_id", table_name="topics")
    op.drop_index("ix_topics_user_id", table_name="topics")
    op.drop_table("topics")
    op.drop_table("categories")
    op.drop_index("ix_users_dismissed_banner_key", table_name="users")
    op.drop_table("users")
