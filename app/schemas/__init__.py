"""
数据模式层 (Schemas)

使用 Pydantic 定义 API 的请求和响应模型：
- 自动数据验证
- 自动生成 OpenAPI 文档
- 类型安全的序列化/反序列化
"""

from app.schemas.indexing import (
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
from app.schemas.search import (
    AnswerResponse,
    AnswerSourceOut,
    ScoredChunkOut,
    SearchRequest,
    SearchResponse,
    SearchResultOut,
)

__all__ = [
    "AnswerResponse",
    "AnswerSourceOut",
    "BackfillRequest",
    "BackfillResponse",
    "BulkEnqueueRequest",
    "BulkEnqueueResponse",
    "EnqueueRequest",
    "EnqueueResponse",
    "JobResponse",
    "ScoredChunkOut",
    "SearchRequest",
    "SearchResponse",
    "SearchResultOut",
    "WorkerRunRequest",
    "WorkerRunResponse",
]
