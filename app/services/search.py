"""
工作区检索与问答服务 (Search Engine)

检索流程：
1. 查询向量化并 L2 归一化
2. 父文档门控：摘要相似度 ≥ 阈值的前 K 个父文档（无命中时放宽阈值，见 ParentGate）
3. chunk 精排：一次性读取命中父文档的全部 chunk，按余弦相似度排序，
   每个父文档保留 ≥ 阈值的前 N 个；都不达标时保留得分最高的几个
4. 丢弃没有 chunk 的父文档，按父文档分数降序

问答流程：
1. 无检索结果 → 固定回答，不调用 LLM
2. 解析来源标题，拼装编号上下文（每个来源最多 3 个 chunk）
3. LLM 按上下文回答并在末尾输出 SOURCES 行
4. 解析 SOURCES 行，只返回被引用的来源
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import LLMError, SearchError
from app.infra.embeddings import get_embedding
from app.infra.llm import chat_completion
from app.infra.logging import StageTimer
from app.infra.vectors import cosine_similarity, normalize_embedding, parse_embedding
from app.models.chunk import Chunk
from app.services.citations import (
    AnswerSource,
    build_context,
    parse_sources_line,
    present_sources,
    resolve_source_titles,
)
from app.services.similarity import ParentGate, ParentMatch

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = "I couldn't find any relevant information in your workspace."

ANSWER_SYSTEM_PROMPT = """You are a workspace assistant. Answer the user's question based ONLY on the following context.
The context provides sources labeled [1], [2], etc.

1. Answer the question clearly using Markdown.
2. Cite your sources using their numbers, e.g., "Feature X is ready [1]".
3. If the answer isn't in the context, say "I don't have enough information."
4. AT THE VERY END, output a single line starting with "SOURCES:" listing the numbers of sources you actually used to answer.
   Example:
   ... answer text ...

   SOURCES: [1], [3]"""


@dataclass
class ScoredChunk:
    content: str
    score: float


@dataclass
class SearchResult:
    """检索结果：一个父文档及其精排后的 chunk"""
    parent_id: str
    source_type: str
    source_id: str
    summary: str | None
    score: float
    chunks: list[ScoredChunk] = field(default_factory=list)

    def top_chunks(self, n: int) -> list[ScoredChunk]:
        return sorted(self.chunks, key=lambda c: c.score, reverse=True)[:n]


@dataclass
class AnswerResult:
    answer: str
    sources: list[AnswerSource] = field(default_factory=list)


def select_chunks(
    scored: list[ScoredChunk],
    *,
    min_score: float,
    max_chunks: int,
    fallback_chunks: int,
) -> list[ScoredChunk]:
    """每个父文档的 chunk 取舍：达标的前 max_chunks 个，否则得分最高的 fallback_chunks 个"""
    ordered = sorted(scored, key=lambda c: c.score, reverse=True)
    passing = [c for c in ordered if c.score >= min_score][:max_chunks]
    return passing or ordered[:fallback_chunks]


class SearchEngine:
    """
    检索与问答引擎

    使用示例：
    ```python
    engine = SearchEngine(session)
    results = await engine.search_workspace("ws-1", "When does Firefly launch?")
    answer = await engine.answer_query("ws-1", "When does Firefly launch?")
    ```
    """

    def __init__(self, session: AsyncSession, gate: ParentGate | None = None):
        self.session = session
        self.gate = gate or ParentGate()
        self.settings = get_settings()

    async def search_workspace(self, workspace_id: str, query: str) -> list[SearchResult]:
        """
        检索工作区

        Raises:
            EmbeddingError: 查询向量化失败
            SearchError: 数据库读取失败
        """
        settings = self.settings
        timer = StageTimer()

        query_vec = normalize_embedding(await get_embedding(query))
        timer.mark("embedding")

        try:
            parents = await self.gate.match(
                self.session,
                workspace_id,
                query_vec,
                min_score=settings.search_min_parent_score,
                limit=settings.search_parent_top_k,
            )
            timer.mark("gating")
            if not parents:
                logger.info(f"工作区 {workspace_id} 无相关父文档")
                return []

            results = await self._rerank_chunks(parents, query_vec)
            timer.mark("rerank")
        except SQLAlchemyError as e:
            logger.error(f"检索失败 workspace={workspace_id}: {e}")
            raise SearchError(f"检索失败: {e}") from e

        logger.info(
            f"检索完成: 父文档 {len(parents)} 个，最终结果 {len(results)} 个 "
            f"(策略={self.gate.last_strategy})",
            extra={"timing": timer.durations()},
        )
        return results

    async def _rerank_chunks(
        self,
        parents: list[ParentMatch],
        query_vec: list[float],
    ) -> list[SearchResult]:
        settings = self.settings
        results = {
            p.id: SearchResult(
                parent_id=p.id,
                source_type=p.source_type,
                source_id=p.source_id,
                summary=p.summary,
                score=p.similarity,
            )
            for p in parents
        }

        rows = await self.session.execute(
            select(Chunk.parent_id, Chunk.content, Chunk.embedding).where(
                Chunk.parent_id.in_(list(results))
            )
        )

        buckets: dict[str, list[ScoredChunk]] = {}
        all_scores: list[float] = []
        for row in rows:
            embedding = parse_embedding(row.embedding)
            if not embedding:
                continue
            score = cosine_similarity(query_vec, normalize_embedding(embedding))
            all_scores.append(score)
            buckets.setdefault(row.parent_id, []).append(ScoredChunk(content=row.content, score=score))

        if all_scores:
            logger.debug(
                f"chunk 分数统计: count={len(all_scores)}, "
                f"max={max(all_scores):.4f}, avg={sum(all_scores) / len(all_scores):.4f}"
            )

        for parent_id, bucket in buckets.items():
            results[parent_id].chunks = select_chunks(
                bucket,
                min_score=settings.search_min_chunk_score,
                max_chunks=settings.search_chunks_per_parent,
                fallback_chunks=settings.search_fallback_chunks,
            )

        final = [r for r in results.values() if r.chunks]
        final.sort(key=lambda r: r.score, reverse=True)
        return final

    async def answer_query(self, workspace_id: str, query: str) -> AnswerResult:
        """
        基于检索结果回答问题

        Raises:
            EmbeddingError / SearchError: 检索失败
            LLMError: LLM 调用失败或返回空回答
        """
        results = await self.search_workspace(workspace_id, query)
        if not results:
            return AnswerResult(answer=NO_RESULTS_ANSWER, sources=[])

        try:
            titles = await resolve_source_titles(self.session, results)
            # LLM 调用可能很慢，先结束读事务，避免连接空闲占用
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"来源标题解析失败 workspace={workspace_id}: {e}")
            raise SearchError(f"来源标题解析失败: {e}") from e

        sources = present_sources(results, titles)
        context = build_context(results, sources, self.settings.answer_chunks_per_source)

        raw_answer = await chat_completion(
            prompt=f"Context:\n{context}\n\nQuestion: {query}",
            system_prompt=ANSWER_SYSTEM_PROMPT,
            max_tokens=self.settings.answer_max_tokens,
        )
        if not raw_answer or not raw_answer.strip():
            raise LLMError("LLM 返回空回答")

        answer, used = parse_sources_line(raw_answer)
        cited = [s for s in sources if s.index in used]
        logger.info(f"问答完成: 来源 {len(sources)} 个，引用 {len(cited)} 个")
        return AnswerResult(answer=answer, sources=cited)
