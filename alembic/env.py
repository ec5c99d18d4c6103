"""
Alembic 迁移环境配置

注意事项：
- 导入 app.models 确保 indexing_jobs / unstructured_parents / unstructured_chunks 被注册
- 产品数据表（files、blocks、docs、tables 等）与本服务共库但不归本服务管理，
  autogenerate 时忽略它们
- 使用异步引擎（asyncpg）
- 数据库 URL 优先从 DATABASE_URL 环境变量读取
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from app.config import get_settings
from app.db.base import Base
from app import models  # noqa: F401 - 确保所有模型被导入和注册

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    return os.getenv("DATABASE_URL") or get_settings().database_url


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    """只比较本服务的表，数据库里已有的产品表不生成 drop"""
    if type_ == "table" and reflected and compare_to is None:
        return False
    return True


def run_migrations_offline() -> None:
    """离线模式：不连接数据库，仅生成 SQL 脚本"""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """在线模式：连接数据库执行迁移，NullPool 保证迁移完成后立即释放连接"""
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
