"""
索引 worker 测试

测试 app/workers/indexing_worker.py：
- 成功 / 失败任务的记录
- limit 与 remaining
- 批次开始前回收卡死任务
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update

from app.models.indexing_job import IndexingJob
from app.models.mixins import utcnow
from app.services.indexer import IndexOutcome
from app.services.job_queue import IndexingQueue
from app.workers.indexing_worker import WorkerReport, run_worker_batch


class FakeIndexer:
    """按资源 ID 决定成功或失败的假索引器"""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.seen: list[str] = []

    async def process_job(self, job):
        self.seen.append(job.resource_id)
        if job.resource_id in self.failing:
            raise RuntimeError(f"cannot index {job.resource_id}")
        return IndexOutcome(status="indexed")


async def _enqueue(session, *resource_ids):
    queue = IndexingQueue(session)
    return [await queue.enqueue("ws-1", "doc", rid) for rid in resource_ids]


class TestWorkerReport:
    def test_message(self):
        assert WorkerReport().message == "No pending jobs"
        assert WorkerReport(processed=["a"], failed=["b"]).message == "Processed 1 jobs, 1 failed"


class TestRunWorkerBatch:
    @pytest.mark.asyncio
    async def test_empty_queue(self, session):
        report = await run_worker_batch(session, indexer=FakeIndexer())

        assert report.processed == []
        assert report.failed == []
        assert report.remaining is False

    @pytest.mark.asyncio
    async def test_completes_and_fails_jobs(self, session):
        ok_id, bad_id = await _enqueue(session, "doc-ok", "doc-bad")
        indexer = FakeIndexer(failing={"doc-bad"})

        report = await run_worker_batch(session, limit=10, indexer=indexer)

        assert report.processed == [ok_id]
        assert report.failed == [bad_id]
        assert report.remaining is False

        queue = IndexingQueue(session)
        assert (await queue.get_job(ok_id)).status == "completed"
        failed = await queue.get_job(bad_id)
        assert failed.status == "failed"
        assert failed.error_message == "cannot index doc-bad"
        assert failed.attempts == 1

    @pytest.mark.asyncio
    async def test_limit_sets_remaining(self, session):
        await _enqueue(session, "d1", "d2", "d3")
        indexer = FakeIndexer()

        report = await run_worker_batch(session, limit=2, indexer=indexer)

        assert len(report.processed) == 2
        assert report.remaining is True
        assert indexer.seen == ["d1", "d2"]

        report = await run_worker_batch(session, limit=2, indexer=indexer)
        assert len(report.processed) == 1
        assert report.remaining is False

    @pytest.mark.asyncio
    async def test_reclaims_stale_jobs_first(self, session):
        (job_id,) = await _enqueue(session, "d1")
        queue = IndexingQueue(session)
        await queue.pick_next_job()
        await session.execute(
            update(IndexingJob)
            .where(IndexingJob.id == job_id)
            .values(updated_at=utcnow() - timedelta(hours=2))
        )
        await session.commit()

        report = await run_worker_batch(session, indexer=FakeIndexer())

        assert report.reclaimed == 1
        assert report.processed == [job_id]
        assert (await queue.get_job(job_id)).attempts == 2

    @pytest.mark.asyncio
    async def test_uses_given_queue(self, session):
        queue = AsyncMock(spec=IndexingQueue)
        queue.reclaim_stale_jobs.return_value = 0
        queue.pick_next_job.return_value = None
        queue.has_pending.return_value = False

        report = await run_worker_batch(session, indexer=FakeIndexer(), queue=queue)

        assert report.claimed == 0
        queue.pick_next_job.assert_awaited_once()
