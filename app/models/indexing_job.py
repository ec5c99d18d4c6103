"""
索引任务模型 (IndexingJob)

状态流转：
    enqueue → pending ──(乐观认领)──→ processing ──→ completed
                                           └──────→ failed

- 同一资源 (resource_type, resource_id) 只有一行
- 只有 pick_next_job 的条件更新能把 pending 改为 processing
- failed 任务不会被队列自动重新入队
"""

from sqlalchemy import Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import UUID_PK, TimestampMixin, new_uuid

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
TERMINAL_STATUSES = (JOB_COMPLETED, JOB_FAILED)


class IndexingJob(TimestampMixin, Base):
    """索引任务表：每个待（重新）索引的工作区资源一行"""
    __tablename__ = "indexing_jobs"
    __table_args__ = (
        UniqueConstraint("resource_type", "resource_id", name="uq_indexing_jobs_resource"),
        Index("ix_indexing_jobs_status_created_at", "status", "created_at"),
        # worker 只扫描 pending 任务
        Index(
            "ix_indexing_jobs_pending_created_at",
            "created_at",
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[UUID_PK] = mapped_column(default=new_uuid)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # file / block / doc / table
    resource_type: Mapped[str] = mapped_column(String(16), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JOB_PENDING)
    # 被认领的次数
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return (
            f"<IndexingJob {self.id} {self.resource_type}:{self.resource_id} "
            f"status={self.status}>"
        )
