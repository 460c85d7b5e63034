"""Create searchable content and the search cache, history and analytics tables.

Revision ID: 001_search_schema
Revises: None
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_search_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False, server_default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if server_default else None,
    )


def upgrade() -> None:
    """Apply schema migrations."""
    # Enable pgvector extension for embeddings
    op.execute('CREATE EXTENSION IF NOT EXISTS "vector"')

    op.create_table(
        "content_items",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False, server_default="note"),
        sa.Column("title", sa.String(500), nullable=True),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        sa.Column("tags", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("categories", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("importance", sa.String(10), nullable=True),
        sa.Column("sentiment", sa.String(10), nullable=True),
        sa.Column("embedding", Vector(1536), nullable=True),
        sa.Column("search_vector", postgresql.TSVECTOR, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("deleted_at", nullable=True, server_default=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("entity_type IN ('note', 'document')", name="ck_content_items_entity_type"),
    )
    op.create_index(
        "idx_content_items_search_vector",
        "content_items",
        ["search_vector"],
        unique=False,
        postgresql_using="gin",
    )
    op.create_index("idx_content_items_user_updated", "content_items", ["user_id", "updated_at"], unique=False)
    op.execute(
        "CREATE INDEX idx_content_items_embedding ON content_items "
        "USING hnsw (embedding vector_cosine_ops)"
    )

    op.create_table(
        "search_cache",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("cache_key", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("query", sa.Text, nullable=False),
        sa.Column("filters", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("results", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("result_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total", sa.Integer, nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("expires_at", server_default=False),
        sa.Column("hit_count", sa.Integer, nullable=False, server_default="0"),
        _timestamp("last_hit_at", nullable=True, server_default=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cache_key"),
        sa.CheckConstraint("expires_at > created_at", name="ck_search_cache_expiry"),
    )
    op.create_index("idx_search_cache_user_expires", "search_cache", ["user_id", "expires_at"], unique=False)

    op.create_table(
        "search_history",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("query", sa.Text, nullable=False),
        sa.Column("normalized_query", sa.Text, nullable=False),
        sa.Column("query_type", sa.String(10), nullable=False, server_default="keyword"),
        sa.Column("filters", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("result_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("use_count", sa.Integer, nullable=False, server_default="1"),
        _timestamp("last_used_at"),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "normalized_query", name="uq_search_history_user_query"),
        sa.CheckConstraint("use_count >= 1", name="ck_search_history_use_count"),
    )
    op.create_index("idx_search_history_user_recent", "search_history", ["user_id", "last_used_at"], unique=False)

    op.create_table(
        "search_analytics",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("query", sa.Text, nullable=False),
        sa.Column("query_type", sa.String(10), nullable=False, server_default="keyword"),
        sa.Column("results_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("execution_time_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("filters", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("execution_time_ms >= 0", name="ck_search_analytics_execution_time"),
    )
    op.create_index("idx_search_analytics_user_created", "search_analytics", ["user_id", "created_at"], unique=False)

    # Combined 'simple' (keeps Korean tokens) + 'english' (stemming) tsvector.
    # Title A, content B, tags C.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION update_content_search_vector()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.search_vector :=
                setweight(to_tsvector('simple', coalesce(NEW.title, '')), 'A') ||
                setweight(to_tsvector('simple', coalesce(NEW.content, '')), 'B') ||
                setweight(jsonb_to_tsvector('simple', coalesce(NEW.tags, '[]'::jsonb), '["string"]'), 'C') ||
                setweight(to_tsvector('english', coalesce(NEW.title, '')), 'A') ||
                setweight(to_tsvector('english', coalesce(NEW.content, '')), 'B');
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """
    )

    op.execute(
        """
        CREATE TRIGGER trigger_update_content_search_vector
            BEFORE INSERT OR UPDATE OF title, content, tags ON content_items
            FOR EACH ROW
            EXECUTE FUNCTION update_content_search_vector();
    """
    )


def downgrade() -> None:
    """Revert schema migrations."""
    op.execute("DROP TRIGGER IF EXISTS trigger_update_content_search_vector ON content_items")
    op.execute("DROP FUNCTION IF EXISTS update_content_search_vector()")

    op.drop_index("idx_search_analytics_user_created", table_name="search_analytics")
    op.drop_table("search_analytics")

    op.drop_index("idx_search_history_user_recent", table_name="search_history")
    op.drop_table("search_history")

    op.drop_index("idx_search_cache_user_expires", table_name="search_cache")
    op.drop_table("search_cache")

    op.execute("DROP INDEX IF EXISTS idx_content_items_embedding")
    op.drop_index("idx_content_items_user_updated", table_name="content_items")
    op.drop_index("idx_content_items_search_vector", table_name="content_items")
    op.drop_table("content_items")
