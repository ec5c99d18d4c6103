"""
工作区检索与问答接口

- POST /v1/workspaces/{workspace_id}/search  父文档门控 + chunk 精排
- POST /v1/workspaces/{workspace_id}/answer  检索 + LLM 回答（附引用来源）
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db_session
from app.schemas import (
    AnswerResponse,
    AnswerSourceOut,
    ScoredChunkOut,
    SearchRequest,
    SearchResponse,
    SearchResultOut,
)
from app.services.search import SearchEngine

router = APIRouter(prefix="/v1/workspaces", tags=["search"])


@router.post("/{workspace_id}/search", response_model=SearchResponse)
async def search(
    workspace_id: str,
    payload: SearchRequest,
    db: AsyncSession = Depends(get_db_session),
):
    results = await SearchEngine(db).search_workspace(workspace_id, payload.query)
    return SearchResponse(
        results=[
            SearchResultOut(
                parent_id=r.parent_id,
                source_type=r.source_type,
                source_id=r.source_id,
                summary=r.summary,
                score=r.score,
                chunks=[ScoredChunkOut(content=c.content, score=c.score) for c in r.chunks],
            )
            for r in results
        ]
    )


@router.post("/{workspace_id}/answer", response_model=AnswerResponse)
async def answer(
    workspace_id: str,
    payload: SearchRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """
    基于工作区内容回答问题

    没有相关内容时返回固定回答且 sources 为空。
    """
    result = await SearchEngine(db).answer_query(workspace_id, payload.query)
    return AnswerResponse(
        answer=result.answer,
        sources=[
            AnswerSourceOut(
                index=s.index,
                source_type=s.source_type,
                source_id=s.source_id,
                title=s.title,
                chunk_content=s.chunk_content,
                similarity=s.similarity,
            )
            for s in result.sources
        ],
    )
