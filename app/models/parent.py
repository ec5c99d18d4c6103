"""
父文档模型 (Parent)

每个被索引的资源对应一行：保存 LLM 摘要、摘要向量和内容哈希。
检索时先用摘要向量做父文档门控，再对命中父文档的 chunk 精排。
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import UUID_PK, EmbeddingVector, TimestampMixin, new_uuid


class Parent(TimestampMixin, Base):
    """父文档表（unstructured_parents）"""
    __tablename__ = "unstructured_parents"
    __table_args__ = (
        UniqueConstraint("source_type", "source_id", name="uq_unstructured_parents_source"),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_uuid)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(String(64))
    tab_id: Mapped[str | None] = mapped_column(String(64))
    source_type: Mapped[str] = mapped_column(String(16), nullable=False)
    source_id: Mapped[str] = mapped_column(String(64), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    summary_embedding: Mapped[list[float] | None] = mapped_column(EmbeddingVector)
    # 原文 SHA-256（十六进制），用于变更检测
    content_hash: Mapped[str | None] = mapped_column(String(64))
    last_indexed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
