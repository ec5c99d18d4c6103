"""
请求追踪中间件

- 接收或生成 X-Request-ID
- 从 /v1/workspaces/{workspace_id}/... 提取工作区 ID，请求期间的日志都会带上
- 响应头返回 X-Request-ID 和 X-Response-Time
"""

import logging
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.infra.logging import StageTimer, log_context

logger = logging.getLogger(__name__)

WORKSPACE_PATH_PREFIX = "/v1/workspaces/"

# 成功时不记录的高频路径
SKIP_LOG_PATHS = ("/healthz", "/favicon.ico")


def workspace_from_path(path: str) -> str | None:
    if not path.startswith(WORKSPACE_PATH_PREFIX):
        return None
    return path[len(WORKSPACE_PATH_PREFIX):].split("/", 1)[0] or None


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """记录每个请求的方法、路径、状态码和耗时"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        path = request.url.path
        timer = StageTimer()

        with log_context(request_id=request_id, workspace_id=workspace_from_path(path)):
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"{request.method} {path} 未处理异常 ({timer.elapsed_ms():.0f}ms): {e}",
                    extra={"method": request.method, "path": path, "status_code": 500},
                )
                raise

            elapsed = timer.elapsed_ms()
            summary = f"{request.method} {path} - {response.status_code} - {elapsed:.0f}ms"
            extra = {
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": elapsed,
            }
            if response.status_code >= 500:
                logger.error(summary, extra=extra)
            elif response.status_code >= 400:
                logger.warning(summary, extra=extra)
            elif path not in SKIP_LOG_PATHS:
                logger.info(summary, extra=extra)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed:.0f}ms"
        return response
