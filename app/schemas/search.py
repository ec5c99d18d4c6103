"""检索与问答相关的请求/响应模型"""

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    """检索请求

    示例:
    ```json
    {"query": "When does Project Firefly launch?"}
    ```
    """
    query: str = Field(..., min_length=1, max_length=4000, description="查询语句")


class ScoredChunkOut(BaseModel):
    content: str
    score: float


class SearchResultOut(BaseModel):
    parent_id: str
    source_type: str
    source_id: str
    summary: str | None = None
    score: float = Field(description="父文档摘要相似度")
    chunks: list[ScoredChunkOut] = Field(default_factory=list)


class SearchResponse(BaseModel):
    results: list[SearchResultOut] = Field(default_factory=list)


class AnswerSourceOut(BaseModel):
    """回答引用的来源"""
    index: int = Field(description="上下文中的编号 [n]")
    source_type: str
    source_id: str
    title: str = Field(description="可读标题（文件名、文档标题等）")
    chunk_content: str | None = Field(default=None, description="最相关片段预览")
    similarity: float


class AnswerResponse(BaseModel):
    answer: str
    sources: list[AnswerSourceOut] = Field(default_factory=list)
