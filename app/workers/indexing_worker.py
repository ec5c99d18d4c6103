"""
索引 worker

每一批：
1. 回收卡死任务（job_stale_after_seconds > 0 时）
2. 循环认领任务，最多 limit 个
3. 调用 ResourceIndexer 处理，成功 complete_job，异常 fail_job

remaining=True 表示本批认领数达到上限，队列里可能还有任务。

用法示例：
    python -m app.workers.indexing_worker --once
    python -m app.workers.indexing_worker --limit 20 --interval 10
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.session import SessionLocal
from app.exceptions import JobQueueError
from app.infra.logging import log_context, setup_logging
from app.services.indexer import ResourceIndexer
from app.services.job_queue import IndexingQueue

logger = logging.getLogger(__name__)

# 认领冲突（被其他 worker 抢先）时最多重试的次数
MAX_CLAIM_RETRIES = 3


@dataclass
class WorkerReport:
    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    remaining: bool = False
    reclaimed: int = 0

    @property
    def claimed(self) -> int:
        return len(self.processed) + len(self.failed)

    @property
    def message(self) -> str:
        if not self.claimed:
            return "No pending jobs"
        return f"Processed {len(self.processed)} jobs, {len(self.failed)} failed"


async def run_worker_batch(
    session: AsyncSession,
    limit: int | None = None,
    indexer: ResourceIndexer | None = None,
    queue: IndexingQueue | None = None,
) -> WorkerReport:
    """
    处理一批索引任务

    Args:
        limit: 本批最多认领的任务数，默认 worker_batch_limit

    Returns:
        WorkerReport: 成功/失败的任务 ID 及是否可能还有剩余任务
    """
    limit = limit or get_settings().worker_batch_limit
    queue = queue or IndexingQueue(session)
    indexer = indexer or ResourceIndexer(session)
    report = WorkerReport()

    report.reclaimed = await queue.reclaim_stale_jobs()

    conflicts = 0
    while report.claimed < limit:
        job = await queue.pick_next_job()
        if job is None:
            # 认领被抢先但队列仍有任务时重试
            if conflicts < MAX_CLAIM_RETRIES and await queue.has_pending():
                conflicts += 1
                continue
            break

        # rollback 会让 ORM 实例过期，先取出 ID
        job_id = job.id
        with log_context(job_id=job_id, workspace_id=job.workspace_id):
            try:
                outcome = await indexer.process_job(job)
            except Exception as e:
                logger.exception(f"索引任务失败 {job_id}: {e}")
                await session.rollback()
                await queue.fail_job(job_id, str(e) or type(e).__name__)
                report.failed.append(job_id)
            else:
                await queue.complete_job(job_id)
                report.processed.append(job_id)
                logger.debug(f"索引任务完成 {job_id}: {outcome.status}")

    report.remaining = report.claimed == limit
    if report.claimed:
        logger.info(
            f"worker 批次完成: 成功 {len(report.processed)}，失败 {len(report.failed)}，"
            f"remaining={report.remaining}"
        )
    return report


async def run_worker_forever(interval: float | None = None, limit: int | None = None) -> None:
    """持续轮询：队列可能还有任务时立即继续，否则休眠 interval 秒"""
    interval = interval if interval is not None else get_settings().worker_poll_interval_seconds
    logger.info(f"索引 worker 启动，轮询间隔 {interval}s")
    while True:
        try:
            async with SessionLocal() as session:
                report = await run_worker_batch(session, limit=limit)
        except (JobQueueError, SQLAlchemyError) as e:
            # 数据库暂时不可用，等待下一轮
            logger.error(f"worker 批次异常，{interval}s 后重试: {e}")
            await asyncio.sleep(interval)
            continue
        if not report.remaining:
            await asyncio.sleep(interval)


async def _run_once(limit: int | None) -> WorkerReport:
    async with SessionLocal() as session:
        return await run_worker_batch(session, limit=limit)


def main() -> None:
    parser = argparse.ArgumentParser(description="Workspace indexing worker")
    parser.add_argument("--once", action="store_true", help="Process a single batch and exit")
    parser.add_argument("--limit", type=int, help="Max jobs per batch")
    parser.add_argument("--interval", type=float, help="Poll interval in seconds")
    args = parser.parse_args()

    setup_logging()
    if args.once:
        report = asyncio.run(_run_once(args.limit))
        print(report.message)
    else:
        asyncio.run(run_worker_forever(interval=args.interval, limit=args.limit))


if __name__ == "__main__":
    main()
