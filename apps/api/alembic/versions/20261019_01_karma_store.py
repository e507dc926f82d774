"""Karma ledger, token and pending redemption tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Atomic clamp-and-add used by the hosted (PostgREST) store through /rpc.
APPLY_DELTA_FUNCTION = """
CREATE OR REPLACE FUNCTION karma_apply_delta(p_user text, p_delta numeric, p_min numeric, p_max numeric)
RETURNS numeric
LANGUAGE sql
AS $$
    INSERT INTO karma (user_name, value)
    VALUES (p_user, greatest(p_min, least(p_max, p_delta)))
    ON CONFLICT (user_name) DO UPDATE
        SET value = greatest(p_min, least(p_max, karma.value + p_delta)),
            updated_at = now()
    RETURNING value;
$$;
"""


def upgrade() -> None:
    op.create_table(
        "karma",
        sa.Column("user_name", sa.String(), primary_key=True),
        sa.Column("value", sa.Numeric(10, 3), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "pending",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_name", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("delta", sa.Numeric(10, 3), nullable=False),
        sa.Column("reward_id", sa.String(), nullable=True),
        sa.Column("broadcaster_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
    )
    op.create_index("ix_pending_created_at", "pending", ["created_at"])

    if op.get_bind().dialect.name == "postgresql":
        op.execute(APPLY_DELTA_FUNCTION)


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS karma_apply_delta(text, numeric, numeric, numeric)")
    op.drop_index("ix_pending_created_at", table_name="pending")
    op.drop_table("pending")
    op.drop_table("tokens")
    op.drop_table("karma")
