"""
结构化表格（tables）读取器

输出格式：
    Table: <title>
    Description: <description>

    Row 1:
    - <field>: <value>
    ...
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.pipeline.base import BaseFetcherOperator, FetchedContent
from app.pipeline.fetchers.base import SqlFetcher, dump_json, load_json
from app.pipeline.registry import register_operator


def format_cell_value(value: Any) -> str:
    """
    单元格值格式化

    - None → 空串
    - 布尔 → true/false，整数值的浮点数去掉 .0
    - 列表 → 逐项格式化（带 name 的对象取 name），逗号连接
    - 对象 → 优先 name，其次 label，否则 JSON
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _format_number(value)
    if isinstance(value, list):
        return ", ".join(_format_list_item(v) for v in value)
    if isinstance(value, dict):
        if "name" in value:
            return _scalar_text(value["name"])
        if "label" in value:
            return _scalar_text(value["label"])
        return dump_json(value)
    return str(value)


def _format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _scalar_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _format_number(value)
    return str(value)


def _format_list_item(item: Any) -> str:
    if isinstance(item, dict) and "name" in item:
        return _scalar_text(item["name"])
    if isinstance(item, (dict, list)):
        return dump_json(item)
    return _scalar_text(item)


@register_operator("fetcher", "table")
class TableFetcher(SqlFetcher, BaseFetcherOperator):
    name = "table"
    table = "tables"
    title_column = "title"
    list_ids_sql = (
        "SELECT id FROM tables WHERE workspace_id = :workspace_id "
        "ORDER BY id LIMIT :limit OFFSET :offset"
    )

    async def fetch(self, session: AsyncSession, resource_id: str) -> FetchedContent | None:
        table = await self._fetch_one(
            session,
            "SELECT id, title, description, project_id FROM tables WHERE id = :id",
            id=resource_id,
        )
        if table is None:
            return None

        fields = await self._fetch_all(
            session,
            'SELECT id, name FROM table_fields WHERE table_id = :table_id ORDER BY "order"',
            table_id=resource_id,
        )
        header = f"Table: {table.title}\nDescription: {table.description or ''}"
        if not fields:
            # 没有字段时只索引元数据
            return FetchedContent(text=header, project_id=table.project_id)

        rows = await self._fetch_all(
            session,
            'SELECT id, data FROM table_rows WHERE table_id = :table_id ORDER BY "order"',
            table_id=resource_id,
        )
        if not rows:
            return FetchedContent(text=f"{header}\n(No rows)", project_id=table.project_id)

        lines = [f"Table: {table.title}\n"]
        if table.description:
            lines.append(f"Description: {table.description}\n")
        lines.append("\n")

        for index, row in enumerate(rows, start=1):
            data = load_json(row.data)
            if not isinstance(data, dict):
                data = {}
            lines.append(f"Row {index}:\n")
            for field in fields:
                formatted = format_cell_value(data.get(str(field.id)))
                if formatted:
                    lines.append(f"- {field.name}: {formatted}\n")
            lines.append("\n")

        return FetchedContent(text="".join(lines), project_id=table.project_id)
