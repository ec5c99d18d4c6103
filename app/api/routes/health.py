"""
健康检查接口

用于容器编排系统的存活探测，以及定时任务调用 worker 前的探活。
"""

from fastapi import APIRouter

router = APIRouter()


@router.get("/healthz")
async def healthcheck() -> dict:
    """返回 {"status": "ok"} 表示服务正常运行"""
    return {"status": "ok"}
