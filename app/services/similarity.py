"""
父文档相似度检索策略

- RemoteSimilaritySearch: 调用数据库函数 match_unstructured_parents（pgvector）
- LocalSimilaritySearch : 读取工作区全部父文档，在进程内计算余弦相似度
- ParentGate            : 统一的重试策略
      远端(阈值) → 远端(放宽) → 本地(阈值) → 本地(放宽)
  远端不可用（非 PostgreSQL、函数未部署或调用出错）时跳过远端；
  返回第一个非空结果。

两种策略结果等价，本地策略仅在数据量大时较慢。
threshold=None 表示不过滤分数，只取最相似的 limit 个。
"""

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import SimilaritySearchUnavailable
from app.infra.vectors import cosine_similarity, normalize_embedding, parse_embedding
from app.models.parent import Parent

logger = logging.getLogger(__name__)

# 余弦相似度下界，远端函数用它表示“不过滤”
_NO_THRESHOLD = -1.0


@dataclass
class ParentMatch:
    """门控命中的父文档"""
    id: str
    source_type: str
    source_id: str
    summary: str | None
    similarity: float


class SimilarityStrategy(Protocol):
    name: str

    async def match_parents(
        self,
        session: AsyncSession,
        workspace_id: str,
        query_embedding: Sequence[float],
        *,
        threshold: float | None,
        limit: int,
    ) -> list[ParentMatch]:
        ...


class RemoteSimilaritySearch:
    """数据库端相似度检索（match_unstructured_parents）"""
    name = "remote"

    async def match_parents(
        self,
        session: AsyncSession,
        workspace_id: str,
        query_embedding: Sequence[float],
        *,
        threshold: float | None,
        limit: int,
    ) -> list[ParentMatch]:
        dialect = session.get_bind().dialect.name
        if dialect != "postgresql":
            raise SimilaritySearchUnavailable(f"{dialect} 不支持 match_unstructured_parents")

        params = {
            "match_embedding": [float(v) for v in query_embedding],
            "match_threshold": _NO_THRESHOLD if threshold is None else threshold,
            "match_count": limit,
            "filter_workspace_id": workspace_id,
        }
        try:
            # 保存点：函数调用失败不影响外层事务
            async with session.begin_nested():
                result = await session.execute(
                    text(
                        "SELECT id, source_type, source_id, summary, similarity "
                        "FROM match_unstructured_parents("
                        ":match_embedding, :match_threshold, :match_count, :filter_workspace_id)"
                    ),
                    params,
                )
                rows = result.fetchall()
        except DBAPIError as e:
            raise SimilaritySearchUnavailable(f"match_unstructured_parents 调用失败: {e}") from e

        return [
            ParentMatch(
                id=str(row.id),
                source_type=row.source_type,
                source_id=str(row.source_id),
                summary=row.summary,
                similarity=float(row.similarity),
            )
            for row in rows
        ]


class LocalSimilaritySearch:
    """进程内余弦相似度（读取工作区全部父文档的摘要向量）"""
    name = "local"

    async def match_parents(
        self,
        session: AsyncSession,
        workspace_id: str,
        query_embedding: Sequence[float],
        *,
        threshold: float | None,
        limit: int,
    ) -> list[ParentMatch]:
        result = await session.execute(
            select(
                Parent.id,
                Parent.source_type,
                Parent.source_id,
                Parent.summary,
                Parent.summary_embedding,
            ).where(Parent.workspace_id == workspace_id)
        )

        query = normalize_embedding(query_embedding)
        matches: list[ParentMatch] = []
        for row in result:
            embedding = parse_embedding(row.summary_embedding)
            if not embedding:
                continue
            score = cosine_similarity(query, normalize_embedding(embedding))
            if threshold is not None and score < threshold:
                continue
            matches.append(
                ParentMatch(
                    id=row.id,
                    source_type=row.source_type,
                    source_id=row.source_id,
                    summary=row.summary,
                    similarity=score,
                )
            )

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]


class ParentGate:
    """
    父文档门控

    使用示例：
        gate = ParentGate()
        parents = await gate.match(session, "ws-1", query_vec, min_score=0.15, limit=10)
    """

    def __init__(
        self,
        remote: SimilarityStrategy | None = None,
        local: SimilarityStrategy | None = None,
    ):
        self.remote = remote or RemoteSimilaritySearch()
        self.local = local or LocalSimilaritySearch()
        self.last_strategy: str | None = None

    async def match(
        self,
        session: AsyncSession,
        workspace_id: str,
        query_embedding: Sequence[float],
        *,
        min_score: float,
        limit: int,
    ) -> list[ParentMatch]:
        for strategy in (self.remote, self.local):
            for threshold in (min_score, None):
                try:
                    matches = await strategy.match_parents(
                        session,
                        workspace_id,
                        query_embedding,
                        threshold=threshold,
                        limit=limit,
                    )
                except SimilaritySearchUnavailable as e:
                    logger.warning(f"{strategy.name} 相似度检索不可用: {e}")
                    break

                if matches:
                    self.last_strategy = strategy.name
                    if threshold is None:
                        logger.info(f"阈值 {min_score} 下无父文档命中，放宽阈值后命中 {len(matches)} 个")
                    return matches

        self.last_strategy = None
        return []
