"""索引队列相关的请求/响应模型"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ResourceType = Literal["file", "block", "doc", "table"]
JobStatus = Literal["pending", "processing", "completed", "failed"]


class EnqueueRequest(BaseModel):
    """入队请求（也用作队列服务的参数对象）

    示例:
    ```json
    {"workspace_id": "ws-1", "resource_type": "doc", "resource_id": "doc-1"}
    ```
    """
    workspace_id: str = Field(..., min_length=1, max_length=64, description="工作区 ID")
    resource_type: ResourceType = Field(..., description="资源类型")
    resource_id: str = Field(..., min_length=1, max_length=64, description="资源 ID")


class EnqueueResponse(BaseModel):
    """入队结果，重复入队时 job_id 为 null"""
    job_id: str | None = Field(default=None, description="新建（或重置）的任务 ID")


class BulkEnqueueRequest(BaseModel):
    jobs: list[EnqueueRequest] = Field(..., max_length=5000, description="待入队资源列表")


class BulkEnqueueResponse(BaseModel):
    count: int = Field(description="实际新建或重置的任务数")


class WorkerRunRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=100, description="本次最多处理的任务数，默认使用配置")


class WorkerRunResponse(BaseModel):
    """worker 批处理报告"""
    message: str
    processed: list[str] = Field(default_factory=list, description="成功完成的任务 ID")
    failed: list[str] = Field(default_factory=list, description="失败的任务 ID")
    remaining: bool = Field(description="本批处理达到上限，可能还有待处理任务")
    reclaimed: int = Field(default=0, description="本批开始前回收的卡死任务数")


class BackfillRequest(BaseModel):
    workspace_id: str = Field(..., min_length=1, max_length=64)
    resource_types: list[ResourceType] | None = Field(
        default=None,
        description="要回填的资源类型，默认全部",
    )
    max_items: int | None = Field(default=None, ge=0, description="最多入队的资源数")


class BackfillResponse(BaseModel):
    workspace_id: str
    enqueued: int = Field(description="实际新建或重置的任务数")
    counts: dict[str, int] = Field(default_factory=dict, description="每种资源类型列出的资源数")


class JobResponse(BaseModel):
    """任务状态"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: str
    resource_type: str
    resource_id: str
    status: JobStatus
    attempts: int
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
