"""
索引任务队列服务 (Indexing Queue)

持久化在 indexing_jobs 表中的去重队列：
1. enqueue / bulk_enqueue：按 (resource_type, resource_id) 去重，先写者胜
2. pick_next_job：取最早的 pending 任务，条件更新 status='pending' 乐观认领
3. complete_job / fail_job：终态，队列本身不重试
4. reclaim_stale_jobs：processing 超时的任务重置为 pending

多个 worker 并发安全只依赖第 2 步的条件更新（影响行数为 0 即认领失败）。
"""

import logging
from datetime import timedelta
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import JobQueueError
from app.models.indexing_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    TERMINAL_STATUSES,
    IndexingJob,
)
from app.models.mixins import new_uuid, utcnow
from app.schemas.indexing import EnqueueRequest

logger = logging.getLogger(__name__)


class IndexingQueue:
    """
    索引任务队列

    使用示例：
    ```python
    queue = IndexingQueue(session)
    job_id = await queue.enqueue("ws-1", "doc", "doc-1")
    job = await queue.pick_next_job()
    if job:
        ...
        await queue.complete_job(job.id)
    ```
    """

    def __init__(self, session: AsyncSession, duplicate_policy: str | None = None):
        settings = get_settings()
        self.session = session
        self.duplicate_policy = duplicate_policy or settings.job_duplicate_policy
        self.error_max_chars = settings.job_error_max_chars

    # ==================== 入队 ====================

    def _insert(self):
        """按方言选择支持 ON CONFLICT DO NOTHING 的 insert"""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(IndexingJob)
        if dialect == "sqlite":
            return sqlite.insert(IndexingJob)
        raise JobQueueError(f"不支持的数据库方言: {dialect}")

    @staticmethod
    def _row(request: EnqueueRequest, now) -> dict:
        return {
            "id": new_uuid(),
            "workspace_id": request.workspace_id,
            "resource_type": request.resource_type,
            "resource_id": request.resource_id,
            "status": JOB_PENDING,
            "attempts": 0,
            "created_at": now,
            "updated_at": now,
        }

    async def enqueue(self, workspace_id: str, resource_type: str, resource_id: str) -> str | None:
        """
        入队一个资源

        Returns:
            新任务 ID；重复入队返回 None。
            always-fresh 策略下已终结的任务被重置为 pending 并返回其 ID。
        """
        request = EnqueueRequest(
            workspace_id=workspace_id,
            resource_type=resource_type,
            resource_id=resource_id,
        )
        row = self._row(request, utcnow())
        stmt = self._insert().values(**row).on_conflict_do_nothing(
            index_elements=["resource_type", "resource_id"],
        )

        try:
            result = await self.session.execute(stmt)
            if result.rowcount == 1:
                await self.session.commit()
                logger.info(f"索引任务入队: {resource_type}:{resource_id} job={row['id']}")
                return row["id"]

            revived_id = None
            if self.duplicate_policy == "always-fresh":
                revived_id = await self._revive_terminal(request)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"索引任务入队失败: {resource_type}:{resource_id}: {e}")
            raise JobQueueError(f"索引任务入队失败: {e}") from e

        if revived_id:
            logger.info(f"已终结的索引任务重置为 pending: {resource_type}:{resource_id} job={revived_id}")
        else:
            logger.debug(f"重复入队被忽略: {resource_type}:{resource_id}")
        return revived_id

    async def _revive_terminal(self, request: EnqueueRequest) -> str | None:
        """把同一资源的 completed/failed 任务重置为 pending，返回任务 ID"""
        job_id = await self.session.scalar(
            select(IndexingJob.id).where(
                IndexingJob.resource_type == request.resource_type,
                IndexingJob.resource_id == request.resource_id,
                IndexingJob.status.in_(TERMINAL_STATUSES),
            )
        )
        if job_id is None:
            return None

        now = utcnow()
        result = await self.session.execute(
            update(IndexingJob)
            .where(IndexingJob.id == job_id, IndexingJob.status.in_(TERMINAL_STATUSES))
            .values(
                status=JOB_PENDING,
                error_message=None,
                workspace_id=request.workspace_id,
                created_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return job_id if result.rowcount == 1 else None

    async def bulk_enqueue(self, jobs: Iterable[EnqueueRequest]) -> int:
        """
        批量入队（一条 INSERT），去重语义与 enqueue 相同

        Returns:
            新建（always-fresh 策略下包含重置）的任务数
        """
        unique: dict[tuple[str, str], EnqueueRequest] = {}
        for job in jobs:
            unique.setdefault((job.resource_type, job.resource_id), job)
        if not unique:
            return 0

        now = utcnow()
        rows = [self._row(job, now) for job in unique.values()]
        stmt = self._insert().values(rows).on_conflict_do_nothing(
            index_elements=["resource_type", "resource_id"],
        )

        try:
            result = await self.session.execute(stmt)
            count = max(result.rowcount, 0)
            if self.duplicate_policy == "always-fresh":
                count += await self._revive_terminal_bulk(list(unique.values()))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"批量入队失败: {e}")
            raise JobQueueError(f"批量入队失败: {e}") from e

        logger.info(f"批量入队: 请求 {len(unique)} 个资源，入队 {count} 个")
        return count

    async def _revive_terminal_bulk(self, jobs: list[EnqueueRequest]) -> int:
        now = utcnow()
        by_type: dict[str, list[str]] = {}
        for job in jobs:
            by_type.setdefault(job.resource_type, []).append(job.resource_id)

        revived = 0
        for resource_type, resource_ids in by_type.items():
            result = await self.session.execute(
                update(IndexingJob)
                .where(
                    IndexingJob.resource_type == resource_type,
                    IndexingJob.resource_id.in_(resource_ids),
                    IndexingJob.status.in_(TERMINAL_STATUSES),
                )
                .values(status=JOB_PENDING, error_message=None, created_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            revived += max(result.rowcount, 0)
        return revived

    # ==================== 认领 ====================

    async def pick_next_job(self) -> IndexingJob | None:
        """
        认领最早的 pending 任务

        Returns:
            认领成功的任务（status=processing）；没有任务或被其他 worker 抢先时返回 None
        """
        job_id = await self._next_pending()
        if job_id is None:
            return None
        return await self._claim(job_id)

    async def _next_pending(self) -> str | None:
        """FIFO：按 created_at 取最早的 pending 任务 ID"""
        return await self.session.scalar(
            select(IndexingJob.id)
            .where(IndexingJob.status == JOB_PENDING)
            .order_by(IndexingJob.created_at, IndexingJob.id)
            .limit(1)
        )

    async def _claim(self, job_id: str) -> IndexingJob | None:
        """条件更新 pending → processing，影响行数为 0 表示认领失败"""
        result = await self.session.execute(
            update(IndexingJob)
            .where(IndexingJob.id == job_id, IndexingJob.status == JOB_PENDING)
            .values(
                status=JOB_PROCESSING,
                attempts=IndexingJob.attempts + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        if result.rowcount != 1:
            logger.debug(f"任务已被其他 worker 认领: {job_id}")
            return None

        return await self.session.get(IndexingJob, job_id, populate_existing=True)

    async def has_pending(self) -> bool:
        count = await self.session.scalar(
            select(func.count()).select_from(IndexingJob).where(IndexingJob.status == JOB_PENDING)
        )
        return bool(count)

    # ==================== 终态 ====================

    async def complete_job(self, job_id: str) -> None:
        await self._finish(job_id, JOB_COMPLETED, None)

    async def fail_job(self, job_id: str, error: str) -> None:
        """标记失败，错误信息截断到 job_error_max_chars"""
        await self._finish(job_id, JOB_FAILED, (error or "")[: self.error_max_chars])

    async def _finish(self, job_id: str, status: str, error_message: str | None) -> None:
        await self.session.execute(
            update(IndexingJob)
            .where(IndexingJob.id == job_id)
            .values(status=status, error_message=error_message, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    # ==================== 维护 ====================

    async def reclaim_stale_jobs(self, older_than: timedelta | None = None) -> int:
        """
        回收卡死任务：processing 且 updated_at 早于 now - older_than 的任务重置为 pending

        Args:
            older_than: 超时时长，默认使用 job_stale_after_seconds（为 0 时不回收）

        Returns:
            回收的任务数
        """
        if older_than is None:
            seconds = get_settings().job_stale_after_seconds
            if seconds <= 0:
                return 0
            older_than = timedelta(seconds=seconds)

        cutoff = utcnow() - older_than
        result = await self.session.execute(
            update(IndexingJob)
            .where(IndexingJob.status == JOB_PROCESSING, IndexingJob.updated_at < cutoff)
            .values(status=JOB_PENDING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        reclaimed = max(result.rowcount, 0)
        if reclaimed:
            logger.warning(f"回收卡死的索引任务 {reclaimed} 个（超过 {older_than} 未更新）")
        return reclaimed

    async def get_job(self, job_id: str) -> IndexingJob | None:
        return await self.session.get(IndexingJob, job_id, populate_existing=True)
