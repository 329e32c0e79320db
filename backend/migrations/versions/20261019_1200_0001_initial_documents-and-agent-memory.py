"""Initial schema - documents and agent memory.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic
revision = "0001_initial"
down_revision: str | None = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create documents table
    op.create_table(
        "documents",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False, server_default="Untitled"),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        sa.Column("user_id", sa.String(255), nullable=True, index=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.text("NOW()")),
    )

    # Create agent_memory_entries table
    op.create_table(
        "agent_memory_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("mode", sa.String(32), nullable=False, comment="'rag' or 'research'"),
        sa.Column("role", sa.String(16), nullable=False, comment="'human', 'assistant' or 'system'"),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("tokens", sa.Integer, nullable=False),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index(
        "ix_agent_memory_entries_user_mode_created",
        "agent_memory_entries",
        ["user_id", "mode", "created_at"],
    )

    # Create agent_memory_summaries table
    op.create_table(
        "agent_memory_summaries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("mode", sa.String(32), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("tokens", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("user_id", "mode", name="uq_agent_memory_summaries_user_mode"),
    )


def downgrade() -> None:
    op.drop_table("agent_memory_summaries")
    op.drop_index("ix_agent_memory_entries_user_mode_created", table_name="agent_memory_entries")
    op.drop_table("agent_memory_entries")
    op.drop_table("documents")
