"""
检索与问答服务测试

测试 app/services/search.py：
- chunk 取舍规则（阈值 / 每父文档上限 / 回退）
- 端到端：索引两个文档 → 检索 → 回答并引用来源
- 无结果、LLM 空回答、信息不足等边界
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.exceptions import LLMError, SearchError
from app.models import Chunk, Parent
from app.services.search import (
    NO_RESULTS_ANSWER,
    ScoredChunk,
    SearchEngine,
    select_chunks,
)
from app.services.job_queue import IndexingQueue
from app.workers.indexing_worker import run_worker_batch


def _doc_json(text: str) -> str:
    return json.dumps(
        {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}]}
    )


async def _index_workspace(session, seed):
    """两个文档：一个关于 Firefly 发布，一个无关"""
    await seed(session, "docs", id="doc-firefly", workspace_id="ws-1", title="Firefly launch",
               content=_doc_json("Project Firefly launches in September with the new mobile app."))
    await seed(session, "docs", id="doc-budget", workspace_id="ws-1", title="Budget",
               content=_doc_json("Quarterly spreadsheet totals for the finance team."))
    queue = IndexingQueue(session)
    await queue.enqueue("ws-1", "doc", "doc-firefly")
    await queue.enqueue("ws-1", "doc", "doc-budget")
    report = await run_worker_batch(session)
    assert len(report.processed) == 2


class TestSelectChunks:
    """测试每个父文档的 chunk 取舍"""

    def test_keeps_passing_chunks_up_to_limit(self):
        scored = [ScoredChunk(content=str(i), score=s) for i, s in enumerate([0.2, 0.9, 0.5, 0.1])]

        kept = select_chunks(scored, min_score=0.15, max_chunks=2, fallback_chunks=3)

        assert [c.score for c in kept] == [0.9, 0.5]

    def test_falls_back_to_top_chunks(self):
        scored = [ScoredChunk(content=str(i), score=s) for i, s in enumerate([0.01, 0.05, 0.03, 0.02])]

        kept = select_chunks(scored, min_score=0.15, max_chunks=6, fallback_chunks=3)

        assert [c.score for c in kept] == [0.05, 0.03, 0.02]

    def test_empty(self):
        assert select_chunks([], min_score=0.15, max_chunks=6, fallback_chunks=3) == []


class TestSearchWorkspace:
    @pytest.mark.asyncio
    async def test_relevant_document_ranks_first(self, session, seed):
        await _index_workspace(session, seed)

        results = await SearchEngine(session).search_workspace("ws-1", "When does Firefly launch?")

        assert results
        top = results[0]
        assert top.source_type == "doc"
        assert top.source_id == "doc-firefly"
        assert top.chunks
        assert "September" in top.chunks[0].content
        assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)

    @pytest.mark.asyncio
    async def test_other_workspace_is_isolated(self, session, seed):
        await _index_workspace(session, seed)

        assert await SearchEngine(session).search_workspace("ws-2", "When does Firefly launch?") == []

    @pytest.mark.asyncio
    async def test_parent_without_chunks_is_dropped(self, session):
        session.add(Parent(id="p-empty", workspace_id="ws-1", source_type="doc", source_id="d1",
                           summary="firefly", summary_embedding=[1.0, 0.0]))
        session.add(Parent(id="p-full", workspace_id="ws-1", source_type="doc", source_id="d2",
                           summary="firefly", summary_embedding=[1.0, 0.0]))
        await session.flush()
        session.add(Chunk(parent_id="p-full", chunk_index=0, content="firefly", embedding=[1.0, 0.0]))
        await session.commit()

        engine = SearchEngine(session)
        with patch("app.services.search.get_embedding", new=AsyncMock(return_value=[2.0, 0.0])):
            results = await engine.search_workspace("ws-1", "firefly")

        assert [r.parent_id for r in results] == ["p-full"]
        assert results[0].chunks[0].score == pytest.approx(1.0)


class TestAnswerQuery:
    @pytest.mark.asyncio
    async def test_no_results_skips_llm(self, session):
        mock_chat = AsyncMock()
        with patch("app.services.search.chat_completion", new=mock_chat):
            result = await SearchEngine(session).answer_query("ws-1", "anything")

        assert result.answer == NO_RESULTS_ANSWER
        assert result.sources == []
        mock_chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_answer_cites_used_sources(self, session, seed):
        await _index_workspace(session, seed)
        mock_chat = AsyncMock(return_value="Firefly launches in September [1].\n\nSOURCES: [1]")

        with patch("app.services.search.chat_completion", new=mock_chat):
            result = await SearchEngine(session).answer_query("ws-1", "When does Firefly launch?")

        assert result.answer == "Firefly launches in September [1]."
        assert len(result.sources) == 1
        source = result.sources[0]
        assert source.index == 1
        assert source.source_id == "doc-firefly"
        assert source.title == "Firefly launch"
        assert "September" in source.chunk_content

        prompt = mock_chat.call_args.kwargs["prompt"]
        assert prompt.startswith("Context:\n[1] Source: Firefly launch (Score: ")
        assert prompt.endswith("\n\nQuestion: When does Firefly launch?")
        assert "SOURCES:" in mock_chat.call_args.kwargs["system_prompt"]

    @pytest.mark.asyncio
    async def test_not_enough_information_has_no_sources(self, session, seed):
        await _index_workspace(session, seed)
        mock_chat = AsyncMock(return_value="I don't have enough information.")

        with patch("app.services.search.chat_completion", new=mock_chat):
            result = await SearchEngine(session).answer_query("ws-1", "Who is the CEO?")

        assert result.answer == "I don't have enough information."
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_empty_llm_answer_raises(self, session, seed):
        await _index_workspace(session, seed)

        with patch("app.services.search.chat_completion", new=AsyncMock(return_value="  ")):
            with pytest.raises(LLMError):
                await SearchEngine(session).answer_query("ws-1", "When does Firefly launch?")

    @pytest.mark.asyncio
    async def test_transaction_closed_during_llm_call(self, session, seed):
        await _index_workspace(session, seed)
        seen = []

        async def fake_chat(**kwargs):
            seen.append(session.in_transaction())
            return "Firefly launches in September [1].\n\nSOURCES: [1]"

        with patch("app.services.search.chat_completion", new=fake_chat):
            result = await SearchEngine(session).answer_query("ws-1", "When does Firefly launch?")

        assert seen == [False]
        assert result.sources[0].source_id == "doc-firefly"

    @pytest.mark.asyncio
    async def test_title_lookup_failure_raises_search_error(self, session, seed):
        await _index_workspace(session, seed)
        mock_chat = AsyncMock()

        with patch(
            "app.services.search.resolve_source_titles",
            new=AsyncMock(side_effect=OperationalError("SELECT title", {}, Exception("db down"))),
        ), patch("app.services.search.chat_completion", new=mock_chat):
            with pytest.raises(SearchError):
                await SearchEngine(session).answer_query("ws-1", "When does Firefly launch?")

        mock_chat.assert_not_called()
