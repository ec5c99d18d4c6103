"""
资源索引服务 (Resource Indexer)

处理一个索引任务：
1. 通过资源类型对应的读取器获取文本（空内容直接返回，不算失败）
2. SHA-256 变更检测，内容未变只刷新 last_indexed_at
3. 生成摘要（失败时回退为原文截断）并向量化
4. 切分 chunk，按并发度分批向量化
5. 单个事务内：更新/插入父文档 → 删除旧 chunk → 批量插入新 chunk

所有向量在写库前算好，新的 content_hash 只会和新 chunk 一起提交。
"""

import hashlib
import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import IndexingError
from app.infra.embeddings import get_embedding, get_embeddings
from app.infra.logging import StageTimer
from app.models.chunk import Chunk
from app.models.indexing_job import IndexingJob
from app.models.mixins import utcnow
from app.models.parent import Parent
from app.pipeline.base import BaseChunkerOperator, BaseFetcherOperator, FetchedContent
from app.pipeline.enrichers.summarizer import DocumentSummarizer
from app.pipeline.fetchers import get_fetcher
from app.pipeline.registry import operator_registry

logger = logging.getLogger(__name__)

OUTCOME_EMPTY = "empty"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_INDEXED = "indexed"


def hash_content(text: str) -> str:
    """SHA-256 十六进制摘要"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class IndexOutcome:
    """单个任务的索引结果"""
    status: str                  # empty / unchanged / indexed
    parent_id: str | None = None
    chunk_count: int = 0
    used_fallback_summary: bool = False


def build_chunker() -> BaseChunkerOperator:
    settings = get_settings()
    chunker_cls = operator_registry.require("chunker", settings.chunker_name)
    return chunker_cls(
        target_tokens=settings.chunk_target_tokens,
        overlap_tokens=settings.chunk_overlap_tokens,
    )


class ResourceIndexer:
    """
    资源索引器

    使用示例：
    ```python
    indexer = ResourceIndexer(session)
    outcome = await indexer.process_job(job)
    ```
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        fetchers: dict[str, BaseFetcherOperator] | None = None,
        summarizer: DocumentSummarizer | None = None,
        chunker: BaseChunkerOperator | None = None,
    ):
        self.session = session
        self._fetchers = dict(fetchers or {})
        self.summarizer = summarizer or DocumentSummarizer()
        self.chunker = chunker or build_chunker()
        self.embedding_concurrency = get_settings().embedding_concurrency

    def _fetcher(self, resource_type: str) -> BaseFetcherOperator:
        if resource_type not in self._fetchers:
            self._fetchers[resource_type] = get_fetcher(resource_type)
        return self._fetchers[resource_type]

    async def process_job(self, job: IndexingJob) -> IndexOutcome:
        """
        索引一个任务对应的资源

        Raises:
            任何异常都会中止本任务，由调用方记录 fail_job
        """
        label = f"{job.resource_type}:{job.resource_id}"
        timer = StageTimer()
        logger.info(f"开始索引 {label} (job={job.id})")

        # ===== 1. 读取内容 =====
        content = await self._fetcher(job.resource_type).fetch(self.session, job.resource_id)
        timer.mark("fetch")
        if content is None or content.is_empty:
            logger.warning(f"资源不存在或内容为空，跳过: {label}")
            await self.session.commit()
            return IndexOutcome(status=OUTCOME_EMPTY)

        # ===== 2. 变更检测 =====
        content_hash = hash_content(content.text)
        existing = (
            await self.session.execute(
                select(Parent.id, Parent.content_hash).where(
                    Parent.source_type == job.resource_type,
                    Parent.source_id == job.resource_id,
                )
            )
        ).first()

        if existing is not None and existing.content_hash == content_hash:
            parent = await self.session.get(Parent, existing.id)
            parent.last_indexed_at = utcnow()
            await self.session.commit()
            logger.info(f"内容未变化，跳过重新索引: {label}")
            return IndexOutcome(status=OUTCOME_UNCHANGED, parent_id=existing.id)

        # 结束读事务，避免在调用 LLM/Embedding 期间占用数据库事务
        await self.session.commit()

        # ===== 3. 摘要 + 向量化（全部在写库前完成）=====
        summary = await self.summarizer.summarize(content.text)
        summary_embedding = await get_embedding(summary.summary)
        timer.mark("summary")

        pieces = self.chunker.chunk(content.text)
        chunk_embeddings = await get_embeddings(
            [piece.text for piece in pieces],
            concurrency=self.embedding_concurrency,
        )
        timer.mark("embedding")
        if len(chunk_embeddings) != len(pieces):
            raise IndexingError(f"{label} chunk 向量数量不一致: {len(chunk_embeddings)} != {len(pieces)}")
        logger.debug(f"{label} 切分为 {len(pieces)} 个 chunk，摘要向量维度 {len(summary_embedding)}")

        # ===== 4. 单事务写入 =====
        try:
            parent_id = await self._write(
                job,
                content,
                content_hash=content_hash,
                existing_id=existing.id if existing is not None else None,
                summary=summary.summary,
                summary_embedding=summary_embedding,
                chunks=[(piece.text, emb) for piece, emb in zip(pieces, chunk_embeddings)],
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        timer.mark("persist")

        logger.info(
            f"索引完成 {label}: {len(pieces)} 个 chunk",
            extra={"timing": timer.durations(), "fallback_summary": summary.used_fallback},
        )
        return IndexOutcome(
            status=OUTCOME_INDEXED,
            parent_id=parent_id,
            chunk_count=len(pieces),
            used_fallback_summary=summary.used_fallback,
        )

    async def _write(
        self,
        job: IndexingJob,
        content: FetchedContent,
        *,
        content_hash: str,
        existing_id: str | None,
        summary: str,
        summary_embedding: list[float],
        chunks: list[tuple[str, list[float]]],
    ) -> str:
        """更新/插入父文档并替换全部 chunk（不提交）"""
        now = utcnow()
        parent = await self.session.get(Parent, existing_id) if existing_id else None

        if parent is None:
            parent = Parent(
                workspace_id=job.workspace_id,
                source_type=job.resource_type,
                source_id=job.resource_id,
            )
            self.session.add(parent)

        parent.workspace_id = job.workspace_id
        parent.project_id = content.project_id
        parent.tab_id = content.tab_id
        parent.summary = summary
        parent.summary_embedding = summary_embedding
        parent.content_hash = content_hash
        parent.last_indexed_at = now
        await self.session.flush()

        await self.session.execute(delete(Chunk).where(Chunk.parent_id == parent.id))
        self.session.add_all(
            Chunk(parent_id=parent.id, chunk_index=i, content=chunk_text, embedding=embedding)
            for i, (chunk_text, embedding) in enumerate(chunks)
        )
        await self.session.flush()
        return parent.id
