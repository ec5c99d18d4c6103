"""
回答引用处理

- resolve_source_titles: 按资源类型批量解析可读标题
- present_sources      : 检索结果 → 带编号、标题、片段预览的来源列表
- build_context        : 拼装给 LLM 的编号上下文
- parse_sources_line   : 解析并移除回答末尾的 SOURCES: [n], [m] 行
"""

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from app.pipeline.fetchers import get_fetcher
from app.pipeline.fetchers.block import format_block_chunk_preview

if TYPE_CHECKING:
    from app.services.search import SearchResult

logger = logging.getLogger(__name__)

SOURCES_LINE_RE = re.compile(r"SOURCES:\s*(\[[0-9]+\](?:,\s*\[[0-9]+\])*)", re.IGNORECASE)
_SOURCE_INDEX_RE = re.compile(r"\[([0-9]+)\]")

NOT_ENOUGH_INFORMATION = "don't have enough information"
# 未解析到 SOURCES 行时默认引用的来源编号
DEFAULT_SOURCE_INDICES = [1, 2, 3]


@dataclass
class AnswerSource:
    """回答中可被引用的来源（index 从 1 开始）"""
    index: int
    source_type: str
    source_id: str
    title: str
    chunk_content: str | None
    similarity: float


def default_title(source_type: str, source_id: str) -> str:
    return f"{source_type} ({source_id[:8]})"


async def resolve_source_titles(
    session: AsyncSession,
    results: list["SearchResult"],
) -> dict[tuple[str, str], str]:
    """按资源类型分组，调用各读取器的 resolve_titles"""
    by_type: dict[str, list[str]] = {}
    for result in results:
        by_type.setdefault(result.source_type, []).append(result.source_id)

    titles: dict[tuple[str, str], str] = {}
    for source_type, ids in by_type.items():
        try:
            fetcher = get_fetcher(source_type)
        except KeyError:
            logger.warning(f"未知的来源类型，使用默认标题: {source_type}")
            continue
        resolved = await fetcher.resolve_titles(session, ids)
        for source_id, title in resolved.items():
            titles[(source_type, source_id)] = title
    return titles


def present_sources(
    results: list["SearchResult"],
    titles: dict[tuple[str, str], str],
) -> list[AnswerSource]:
    """检索结果 → 来源列表（片段预览取得分最高的 chunk，没有 chunk 时用摘要）"""
    sources: list[AnswerSource] = []
    for index, result in enumerate(results, start=1):
        top = result.top_chunks(1)
        raw = top[0].content if top else result.summary
        preview = format_block_chunk_preview(raw) if result.source_type == "block" else raw
        sources.append(
            AnswerSource(
                index=index,
                source_type=result.source_type,
                source_id=result.source_id,
                title=titles.get((result.source_type, result.source_id))
                or default_title(result.source_type, result.source_id),
                chunk_content=preview,
                similarity=result.score,
            )
        )
    return sources


def build_context(
    results: list["SearchResult"],
    sources: list[AnswerSource],
    chunks_per_source: int = 3,
) -> str:
    """
    拼装编号上下文

    [1] Source: <title> (Score: 0.83)
    <chunk>
    ...
    <chunk>

    ---

    [2] Source: ...
    """
    entries = []
    for result, source in zip(results, sources):
        chunk_text = "\n...\n".join(c.content for c in result.top_chunks(chunks_per_source))
        entries.append(f"[{source.index}] Source: {source.title} (Score: {source.similarity:.2f})\n{chunk_text}")
    return "\n\n---\n\n".join(entries)


def parse_sources_line(raw_answer: str) -> tuple[str, list[int]]:
    """
    解析 SOURCES 行

    Returns:
        (移除 SOURCES 行后的回答, 引用的来源编号)
        没有 SOURCES 行时：回答声明信息不足则为空列表，否则默认 [1, 2, 3]
    """
    match = SOURCES_LINE_RE.search(raw_answer)
    if match:
        indices = [int(n) for n in _SOURCE_INDEX_RE.findall(match.group(1))]
        answer = (raw_answer[: match.start()] + raw_answer[match.end():]).strip()
        return answer, indices

    if NOT_ENOUGH_INFORMATION in raw_answer.lower():
        return raw_answer, []
    return raw_answer, list(DEFAULT_SOURCE_INDICES)
