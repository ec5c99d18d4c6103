"""
数据库会话管理

这个模块负责：
1. 创建数据库引擎（连接池）
2. 提供异步会话工厂（API 请求和后台 worker 共用）
3. 实现 FastAPI 依赖注入的数据库会话获取函数

使用方式（在 FastAPI 路由中）：
    from app.db.session import get_db

    @router.get("/internal/indexing/jobs/{job_id}")
    async def get_job(job_id: str, db: AsyncSession = Depends(get_db)):
        return await db.get(IndexingJob, job_id)
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings
from app.db.base import Base

settings = get_settings()


def _engine_kwargs(database_url: str) -> dict[str, Any]:
    """
    按数据库方言生成引擎参数

    SQLite（开发/测试）不使用连接池参数；PostgreSQL 使用连接池配置。
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"echo": False}
    return {
        "echo": False,
        "pool_pre_ping": True,  # 获取连接前先检测，避免使用已断开的连接
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,   # 防止数据库端超时断开
    }


# ==================== 创建数据库引擎 ====================
engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

# ==================== 创建会话工厂 ====================
# expire_on_commit=False：提交后仍可访问对象属性而不触发额外查询
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    获取数据库会话（FastAPI 依赖注入函数）

    每个请求使用独立会话，请求结束后自动关闭。

    Yields:
        AsyncSession: 异步数据库会话对象
    """
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    """
    初始化数据库表（仅开发环境使用）

    生产环境使用 Alembic 迁移（包含 match_unstructured_parents 函数）。
    此方法不会修改已存在的表结构。
    """
    from app import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
