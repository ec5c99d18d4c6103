"""
工作区回填服务

列出工作区内指定类型的全部资源（分页，每页 1000），
按每批 500 个批量入队，用于首次启用检索或重建索引。
"""

import logging
from dataclasses import dataclass, field
from typing import get_args

from sqlalchemy.ext.asyncio import AsyncSession

from app.pipeline.fetchers import get_fetcher
from app.schemas.indexing import EnqueueRequest, ResourceType
from app.services.job_queue import IndexingQueue

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
JOB_BATCH_SIZE = 500

ALL_RESOURCE_TYPES: tuple[str, ...] = get_args(ResourceType)


@dataclass
class BackfillReport:
    workspace_id: str
    enqueued: int = 0
    counts: dict[str, int] = field(default_factory=dict)


async def _list_all_ids(
    session: AsyncSession,
    resource_type: str,
    workspace_id: str,
    max_items: int | None,
) -> list[str]:
    fetcher = get_fetcher(resource_type)
    ids: list[str] = []
    offset = 0
    while True:
        page = await fetcher.list_ids(session, workspace_id, limit=PAGE_SIZE, offset=offset)
        ids.extend(page)
        if len(page) < PAGE_SIZE or (max_items is not None and len(ids) >= max_items):
            break
        offset += PAGE_SIZE
    return ids if max_items is None else ids[:max_items]


async def backfill_workspace(
    session: AsyncSession,
    workspace_id: str,
    resource_types: list[str] | None = None,
    max_items: int | None = None,
    queue: IndexingQueue | None = None,
) -> BackfillReport:
    """
    回填工作区

    Args:
        resource_types: 要回填的资源类型，默认全部
        max_items: 所有类型合计最多入队的资源数

    Returns:
        BackfillReport: 每种类型列出的资源数和实际入队数
    """
    queue = queue or IndexingQueue(session)
    report = BackfillReport(workspace_id=workspace_id)
    remaining = max_items

    jobs: list[EnqueueRequest] = []
    for resource_type in resource_types or ALL_RESOURCE_TYPES:
        if remaining is not None and remaining <= 0:
            report.counts[resource_type] = 0
            continue
        ids = await _list_all_ids(session, resource_type, workspace_id, remaining)
        report.counts[resource_type] = len(ids)
        if remaining is not None:
            remaining -= len(ids)
        jobs.extend(
            EnqueueRequest(workspace_id=workspace_id, resource_type=resource_type, resource_id=rid)
            for rid in ids
        )

    for start in range(0, len(jobs), JOB_BATCH_SIZE):
        report.enqueued += await queue.bulk_enqueue(jobs[start:start + JOB_BATCH_SIZE])

    logger.info(f"工作区回填完成 {workspace_id}: 列出 {report.counts}，入队 {report.enqueued}")
    return report
