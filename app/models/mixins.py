"""
模型混入类 (Mixins) 与公共列类型

使用示例：
    class IndexingJob(TimestampMixin, Base):
        __tablename__ = "indexing_jobs"
        id: Mapped[UUID_PK] = mapped_column(default=new_uuid)
        # 自动获得 created_at 和 updated_at 字段
"""

from datetime import datetime, timezone
from typing import Annotated
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Float, String, func
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

# ==================== 类型别名 ====================
# String(36) 对应 UUID 的标准格式：xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx
UUID_PK = Annotated[str, mapped_column(String(36), primary_key=True)]

# 向量列：PostgreSQL 上为 float8[]（由 match_unstructured_parents 转为 vector），
# 其他数据库（SQLite 测试库）存为 JSON 数组
EmbeddingVector = JSON().with_variant(ARRAY(Float), "postgresql")


def new_uuid() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """
    时间戳混入类

    - created_at: 记录创建时间，索引队列按它做 FIFO
    - updated_at: 最后更新时间，卡死任务回收按它判断
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
