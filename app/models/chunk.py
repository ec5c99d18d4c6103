"""
文本块模型 (Chunk) - 检索精排的基本单位

数据流向: 资源原文 → Chunker → Chunks → Embedding → unstructured_chunks
重新索引时父文档的全部 chunk 先删除再整体写入。
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import UUID_PK, EmbeddingVector, new_uuid


class Chunk(Base):
    """文本块表（unstructured_chunks）"""
    __tablename__ = "unstructured_chunks"
    __table_args__ = (
        UniqueConstraint("parent_id", "chunk_index", name="uq_unstructured_chunks_parent_index"),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_uuid)
    parent_id: Mapped[str] = mapped_column(
        ForeignKey("unstructured_parents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # 在父文档中的顺序（从 0 开始，连续）
    chunk_index: Mapped[int] = mapped_column(nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(EmbeddingVector)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
