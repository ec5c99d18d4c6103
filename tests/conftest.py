"""
测试公共夹具

- 环境变量在导入 app 模块之前设置：SQLite 内存库 + 确定性哈希向量，LLM 未配置 Key
- 每个测试使用独立的内存数据库（StaticPool 保证同一连接）
- 产品数据表（projects/tabs/blocks/docs/tables/files 等）用原生 DDL 创建
"""

import os

# 设置测试环境变量（必须在导入 app 模块之前）
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIM"] = "256"
os.environ["LLM_PROVIDER"] = "deepseek"
os.environ["DEEPSEEK_API_KEY"] = ""
os.environ["JOB_STALE_AFTER_SECONDS"] = "900"
os.environ.pop("INTERNAL_API_TOKEN", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.config import get_settings  # noqa: E402

get_settings.cache_clear()

from app import models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402

PRODUCT_TABLES_DDL = [
    "CREATE TABLE projects (id TEXT PRIMARY KEY, workspace_id TEXT NOT NULL, name TEXT)",
    "CREATE TABLE tabs (id TEXT PRIMARY KEY, project_id TEXT NOT NULL, name TEXT)",
    "CREATE TABLE blocks (id TEXT PRIMARY KEY, tab_id TEXT NOT NULL, type TEXT, content TEXT)",
    "CREATE TABLE docs (id TEXT PRIMARY KEY, workspace_id TEXT NOT NULL, title TEXT, content TEXT)",
    'CREATE TABLE "tables" (id TEXT PRIMARY KEY, workspace_id TEXT NOT NULL, project_id TEXT, '
    "title TEXT, description TEXT)",
    'CREATE TABLE table_fields (id TEXT PRIMARY KEY, table_id TEXT NOT NULL, name TEXT, "order" INTEGER)',
    'CREATE TABLE table_rows (id TEXT PRIMARY KEY, table_id TEXT NOT NULL, data TEXT, "order" INTEGER)',
    "CREATE TABLE files (id TEXT PRIMARY KEY, workspace_id TEXT NOT NULL, project_id TEXT, "
    "file_name TEXT, file_type TEXT, storage_path TEXT)",
    "CREATE TABLE file_attachments (id TEXT PRIMARY KEY, block_id TEXT NOT NULL, file_id TEXT NOT NULL)",
]


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        for ddl in PRODUCT_TABLES_DDL:
            await conn.execute(text(ddl))
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def insert_row(session, table: str, **values) -> None:
    """向产品数据表插入一行并提交"""
    columns = ", ".join(f'"{name}"' for name in values)
    params = ", ".join(f":{name}" for name in values)
    await session.execute(text(f'INSERT INTO "{table}" ({columns}) VALUES ({params})'), values)
    await session.commit()


@pytest.fixture
def seed():
    return insert_row
