"""Pair locks, request attempt ledger, burn-after-read and contact nicknames

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "relationship_locks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("pair_key", sa.String(80), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_relationship_locks"),
        sa.UniqueConstraint("pair_key", name="uq_relationship_locks_pair_key"),
    )

    op.create_table(
        "friend_request_attempts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sender_id", sa.Uuid(), nullable=False),
        sa.Column("receiver_id", sa.Uuid(), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_friend_request_attempts"),
        sa.UniqueConstraint(
            "sender_id", "receiver_id", name="uq_friend_request_attempts_pair"
        ),
    )

    op.add_column("contacts", sa.Column("nickname", sa.String(100), nullable=True))
    op.add_column(
        "disappearing_messages_queue",
        sa.Column("burn_after_read", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "disappearing_message_settings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("time_to_live", sa.Integer(), nullable=False),
        sa.Column("burn_after_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_disappearing_message_settings"),
        sa.UniqueConstraint("user_id", name="uq_disappearing_message_settings_user_id"),
    )

    op.create_table(
        "message_views",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("message_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_message_views"),
        sa.ForeignKeyConstraint(
            ["message_id"],
            ["messages.id"],
            name="fk_message_views_message_id_messages",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_views_pair"),
    )
    op.create_index("ix_message_views_message_id", "message_views", ["message_id"])


def downgrade() -> None:
    op.drop_table("message_views")
    op.drop_table("disappearing_message_settings")
    op.drop_column("disappearing_messages_queue", "burn_after_read")
    op.drop_column("contacts", "nickname")
    op.drop_table("friend_request_attempts")
    op.drop_table("relationship_locks")
