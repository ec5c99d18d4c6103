"""
初始数据库迁移脚本

创建检索服务的全部表：
- indexing_jobs        : 索引任务队列
- unstructured_parents : 父文档（摘要 + 摘要向量 + 内容哈希）
- unstructured_chunks  : 文本块（内容 + 向量）

以及父文档门控使用的 match_unstructured_parents 函数（仅在服务器提供 pgvector 时创建）。

Revision ID: 20261019_0001
Revises: 无（初始迁移）
Create Date: 2026-10-19 00:00:00
"""

import logging
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

logger = logging.getLogger("alembic.runtime.migration")

# 迁移版本标识
revision: str = "20261019_0001"
down_revision: Union[str, None] = None  # 无前置迁移
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# 向量以 float8[] 存储，函数内转换为 vector 计算余弦距离
MATCH_PARENTS_FUNCTION = """
CREATE OR REPLACE FUNCTION match_unstructured_parents(
    match_embedding double precision[],
    match_threshold double precision,
    match_count integer,
    filter_workspace_id text
)
RETURNS TABLE (
    id varchar,
    source_type varchar,
    source_id varchar,
    summary text,
    similarity double precision
)
LANGUAGE sql STABLE
AS $$
    SELECT
        p.id,
        p.source_type,
        p.source_id,
        p.summary,
        1 - (p.summary_embedding::vector <=> match_embedding::vector) AS similarity
    FROM unstructured_parents p
    WHERE p.workspace_id = filter_workspace_id
      AND p.summary_embedding IS NOT NULL
      AND 1 - (p.summary_embedding::vector <=> match_embedding::vector) >= match_threshold
    ORDER BY p.summary_embedding::vector <=> match_embedding::vector
    LIMIT match_count;
$$;
"""


def _pgvector_available() -> bool:
    """数据库服务器是否安装了 pgvector 扩展"""
    bind = op.get_bind()
    return bool(
        bind.execute(
            sa.text("SELECT 1 FROM pg_available_extensions WHERE name = 'vector'")
        ).scalar()
    )


def upgrade() -> None:
    """升级：创建表、索引和门控函数"""
    pgvector_available = _pgvector_available()
    if pgvector_available:
        op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "indexing_jobs",
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("resource_type", sa.String(length=16), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("resource_type", "resource_id", name="uq_indexing_jobs_resource"),
    )
    op.create_index("ix_indexing_jobs_workspace_id", "indexing_jobs", ["workspace_id"])
    op.create_index("ix_indexing_jobs_status_created_at", "indexing_jobs", ["status", "created_at"])
    # worker 只扫描 pending 任务
    op.create_index(
        "ix_indexing_jobs_pending_created_at",
        "indexing_jobs",
        ["created_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "unstructured_parents",
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("tab_id", sa.String(length=64), nullable=True),
        sa.Column("source_type", sa.String(length=16), nullable=False),
        sa.Column("source_id", sa.String(length=64), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("summary_embedding", postgresql.ARRAY(sa.Float()), nullable=True),
        sa.Column("content_hash", sa.String(length=64), nullable=True),
        sa.Column("last_indexed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_type", "source_id", name="uq_unstructured_parents_source"),
    )
    op.create_index("ix_unstructured_parents_workspace_id", "unstructured_parents", ["workspace_id"])

    op.create_table(
        "unstructured_chunks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("parent_id", sa.String(length=36), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", postgresql.ARRAY(sa.Float()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["parent_id"], ["unstructured_parents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("parent_id", "chunk_index", name="uq_unstructured_chunks_parent_index"),
    )
    op.create_index("ix_unstructured_chunks_parent_id", "unstructured_chunks", ["parent_id"])

    if pgvector_available:
        op.execute(MATCH_PARENTS_FUNCTION)
    else:
        # 没有 pgvector 时不创建门控函数，检索自动回退到本地余弦计算
        logger.warning("pgvector 扩展不可用，跳过 match_unstructured_parents")


def downgrade() -> None:
    """降级：删除函数和所有表"""
    op.execute(
        "DROP FUNCTION IF EXISTS match_unstructured_parents("
        "double precision[], double precision, integer, text)"
    )
    op.drop_index("ix_unstructured_chunks_parent_id", table_name="unstructured_chunks")
    op.drop_table("unstructured_chunks")
    op.drop_index("ix_unstructured_parents_workspace_id", table_name="unstructured_parents")
    op.drop_table("unstructured_parents")
    op.drop_index("ix_indexing_jobs_pending_created_at", table_name="indexing_jobs")
    op.drop_index("ix_indexing_jobs_status_created_at", table_name="indexing_jobs")
    op.drop_index("ix_indexing_jobs_workspace_id", table_name="indexing_jobs")
    op.drop_table("indexing_jobs")
