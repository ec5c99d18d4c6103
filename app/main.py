"""
FastAPI 应用实例

负责：
1. 创建 FastAPI 应用实例
2. 配置应用生命周期（开发环境建表、回收卡死的索引任务）
3. 注册所有 API 路由
4. 配置结构化日志、请求追踪和统一错误格式
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from app.api.routes import api_router
from app.config import get_settings
from app.db.session import SessionLocal, init_models
from app.exceptions import (
    EmbeddingError,
    JobQueueError,
    LLMError,
    SearchError,
)
from app.infra.logging import setup_logging
from app.middleware import RequestTraceMiddleware
from app.services.job_queue import IndexingQueue

# 配置结构化日志
setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()


async def _reclaim_stale_jobs() -> None:
    """
    回收卡死的索引任务

    服务重启时，长时间处于 processing 的任务可能是被中断的，重置为 pending 重新处理。
    """
    try:
        async with SessionLocal() as session:
            await IndexingQueue(session).reclaim_stale_jobs()
    except SQLAlchemyError as e:
        # 表还不存在（首次启动、尚未迁移）
        logger.warning(f"启动时回收卡死任务失败（可能尚未迁移）: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器

    注意：
        - 开发环境：使用 init_models() 自动创建表
        - 生产环境：使用 Alembic 迁移（包含 match_unstructured_parents 函数）
    """
    logger.info(f"应用启动中... 环境: {settings.environment}")

    if settings.environment in ("dev", "development", "test"):
        await init_models()
        logger.info("数据库表初始化完成（开发模式）")
    else:
        logger.info("跳过自动建表，请使用 Alembic 迁移")

    await _reclaim_stale_jobs()

    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(RequestTraceMiddleware)

app.include_router(api_router)


def _error_response(status_code: int, detail, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException):
    """
    统一错误响应格式：
    {
        "detail": "<错误信息>",
        "code": "<ERROR_CODE>"
    }
    """
    code = "UNKNOWN_ERROR"
    detail = exc.detail
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code") or code
        detail = exc.detail.get("detail") or exc.detail.get("message") or detail
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "code": code},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    # 将 Pydantic 校验错误统一映射为 VALIDATION_ERROR
    return _error_response(422, jsonable_encoder(exc.errors()), "VALIDATION_ERROR")


# 领域异常 → (HTTP 状态码, 错误码)
DOMAIN_ERRORS: dict[type[Exception], tuple[int, str]] = {
    EmbeddingError: (502, "EMBEDDING_ERROR"),
    LLMError: (502, "LLM_ERROR"),
    JobQueueError: (503, "JOB_QUEUE_ERROR"),
    SearchError: (500, "SEARCH_ERROR"),
}


async def domain_error_handler(request: Request, exc: Exception):
    status_code, code = next(
        mapping for exc_type, mapping in DOMAIN_ERRORS.items() if isinstance(exc, exc_type)
    )
    logger.error(f"{request.method} {request.url.path} 失败 [{code}]: {exc}")
    return _error_response(status_code, str(exc), code)


for _exc_type in DOMAIN_ERRORS:
    app.add_exception_handler(_exc_type, domain_error_handler)
