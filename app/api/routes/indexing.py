"""
索引队列内部接口

供产品后端（资源变更事件）和定时任务调用，受 internal_api_token 保护：
- POST /internal/indexing/enqueue       入队单个资源
- POST /internal/indexing/bulk-enqueue  批量入队
- POST /internal/indexing/worker        处理一批任务
- POST /internal/indexing/backfill      回填整个工作区
- GET  /internal/indexing/jobs/{job_id} 查询任务状态
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db_session, require_internal_token
from app.schemas import (
    BackfillRequest,
    BackfillResponse,
    BulkEnqueueRequest,
    BulkEnqueueResponse,
    EnqueueRequest,
    EnqueueResponse,
    JobResponse,
    WorkerRunRequest,
    WorkerRunResponse,
)
from app.services.backfill import backfill_workspace
from app.services.job_queue import IndexingQueue
from app.workers.indexing_worker import run_worker_batch

router = APIRouter(
    prefix="/internal/indexing",
    tags=["indexing"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/enqueue", response_model=EnqueueResponse)
async def enqueue(payload: EnqueueRequest, db: AsyncSession = Depends(get_db_session)):
    """入队一个资源，重复入队返回 job_id=null"""
    job_id = await IndexingQueue(db).enqueue(
        payload.workspace_id,
        payload.resource_type,
        payload.resource_id,
    )
    return EnqueueResponse(job_id=job_id)


@router.post("/bulk-enqueue", response_model=BulkEnqueueResponse)
async def bulk_enqueue(payload: BulkEnqueueRequest, db: AsyncSession = Depends(get_db_session)):
    count = await IndexingQueue(db).bulk_enqueue(payload.jobs)
    return BulkEnqueueResponse(count=count)


@router.post("/worker", response_model=WorkerRunResponse)
async def run_worker(
    payload: WorkerRunRequest | None = None,
    db: AsyncSession = Depends(get_db_session),
):
    """
    处理一批索引任务

    定时任务反复调用，remaining=true 时可立即再次调用。
    """
    report = await run_worker_batch(db, limit=payload.limit if payload else None)
    return WorkerRunResponse(
        message=report.message,
        processed=report.processed,
        failed=report.failed,
        remaining=report.remaining,
        reclaimed=report.reclaimed,
    )


@router.post("/backfill", response_model=BackfillResponse)
async def backfill(payload: BackfillRequest, db: AsyncSession = Depends(get_db_session)):
    report = await backfill_workspace(
        db,
        payload.workspace_id,
        resource_types=payload.resource_types,
        max_items=payload.max_items,
    )
    return BackfillResponse(
        workspace_id=report.workspace_id,
        enqueued=report.enqueued,
        counts=report.counts,
    )


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, db: AsyncSession = Depends(get_db_session)):
    job = await IndexingQueue(db).get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "JOB_NOT_FOUND", "detail": f"Indexing job {job_id} not found"},
        )
    return JobResponse.model_validate(job)
