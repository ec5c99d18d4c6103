"""
资源内容读取器公共工具

产品数据表（files/blocks/docs/tables 等）不属于本服务的 ORM 模型，
读取器通过 sqlalchemy.text() 原生 SQL 只读访问它们。
"""

import json
import logging
from typing import Any, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def load_json(value: Any) -> Any:
    """
    解析 JSON 列

    asyncpg 读 jsonb 返回字符串，SQLite 的 TEXT 列也是字符串；
    不是合法 JSON 的字符串原样返回。
    """
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def dump_json(value: Any) -> str:
    """紧凑 JSON 序列化"""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def extract_prosemirror_text(node: Any) -> str:
    """
    提取 ProseMirror 文档中的纯文本

    text 节点返回其文本；有 content 子节点时递归提取并以换行连接。
    """
    if not node or not isinstance(node, dict):
        return ""
    if node.get("type") == "text" and node.get("text"):
        return node["text"]
    children = node.get("content")
    if isinstance(children, list):
        return "\n".join(extract_prosemirror_text(child) for child in children)
    return ""


class SqlFetcher:
    """
    基于原生 SQL 的读取器基类

    子类设置：
    - table: 资源所在表
    - title_column: 展示标题列（None 表示需要自定义 resolve_titles）
    - list_ids_sql: 按工作区分页列出 id 的 SQL（参数 workspace_id/limit/offset）
    """
    name: str = ""
    kind: str = "fetcher"
    table: str = ""
    title_column: str | None = None
    list_ids_sql: str = ""

    async def _fetch_one(self, session: AsyncSession, sql: str, **params: Any):
        result = await session.execute(text(sql), params)
        return result.first()

    async def _fetch_all(self, session: AsyncSession, sql: str, **params: Any) -> Sequence:
        result = await session.execute(text(sql), params)
        return result.fetchall()

    async def _fetch_in(
        self,
        session: AsyncSession,
        sql: str,
        ids: Sequence[str],
    ) -> Sequence:
        """执行带 IN :ids 的查询"""
        if not ids:
            return []
        stmt = text(sql).bindparams(bindparam("ids", expanding=True))
        result = await session.execute(stmt, {"ids": list(ids)})
        return result.fetchall()

    async def resolve_titles(self, session: AsyncSession, resource_ids: list[str]) -> dict[str, str]:
        rows = await self._fetch_in(
            session,
            f"SELECT id, {self.title_column} FROM {self.table} WHERE id IN :ids",
            resource_ids,
        )
        return {str(row[0]): row[1] for row in rows if row[1]}

    async def list_ids(
        self,
        session: AsyncSession,
        workspace_id: str,
        *,
        limit: int,
        offset: int,
    ) -> list[str]:
        rows = await self._fetch_all(
            session,
            self.list_ids_sql,
            workspace_id=workspace_id,
            limit=limit,
            offset=offset,
        )
        return [str(row[0]) for row in rows]
