"""
API 路由汇总

将所有子路由注册到主路由器，统一对外暴露。

路由模块说明：
- health.py   : 健康检查接口
- indexing.py : 索引队列内部接口（入队、worker、回填、任务状态）
- search.py   : 工作区检索与问答
"""

from fastapi import APIRouter

from app.api.routes import health, indexing, search

# 主路由器，包含所有 API 端点
api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(indexing.router)  # indexing 路由自带 prefix 和 tags
api_router.include_router(search.router)
