"""
块（blocks）读取器

- 内容可能是纯字符串、JSON 文本或 ProseMirror 文档
- 作用域为 tab_id
- 引用标题按块类型合成（文件类块附带文件名和类型标签）
"""

import json
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.pipeline.base import BaseFetcherOperator, FetchedContent
from app.pipeline.fetchers.base import (
    SqlFetcher,
    dump_json,
    extract_prosemirror_text,
    load_json,
)
from app.pipeline.registry import register_operator


# 引用预览最多展示的任务条数
MAX_PREVIEW_TASKS = 12


@dataclass
class FileMeta:
    """块关联文件的展示信息"""
    file_name: str
    file_type: str


def block_content_text(content: Any) -> str:
    """块内容转纯文本：字符串原样，对象优先 ProseMirror 文本，否则 JSON"""
    content = load_json(content)
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, (dict, list)):
        return extract_prosemirror_text(content) or dump_json(content)
    return str(content)


def format_file_type_label(file_type: str | None) -> str:
    """MIME 类型 → 可读标签"""
    if not file_type:
        return "file"
    mime = file_type.lower()
    if mime == "application/pdf":
        return "PDF"
    if "spreadsheet" in mime or "excel" in mime:
        return "spreadsheet"
    if mime == "text/csv":
        return "CSV"
    if "word" in mime or "document" in mime:
        return "document"
    for prefix in ("image", "video", "audio", "text"):
        if mime.startswith(f"{prefix}/"):
            return prefix
    return mime


def _describe_file(meta: FileMeta) -> str:
    return f"{meta.file_name} ({format_file_type_label(meta.file_type)})"


def _str_field(content: dict, key: str) -> str:
    value = content.get(key)
    return value.strip() if isinstance(value, str) else ""


# 仅取 title 字段的块类型 → 缺省标题
_TITLED_BLOCK_DEFAULTS = {
    "task": "Task block",
    "table": "Table block",
    "video": "Video block",
    "embed": "Embed block",
    "section": "Section block",
    "doc_reference": "Doc reference block",
}

# 固定标题的块类型
_STATIC_BLOCK_TITLES = {
    "text": "Text block",
    "timeline": "Timeline block",
    "divider": "Divider block",
}


def block_display_title(
    block_type: str | None,
    content: Any,
    file_meta: list[FileMeta] | None = None,
) -> str:
    """按块类型合成展示标题"""
    block_type = block_type if isinstance(block_type, str) else "block"
    content = load_json(content)
    if not isinstance(content, dict):
        content = {}

    if block_type in _STATIC_BLOCK_TITLES:
        return _STATIC_BLOCK_TITLES[block_type]
    if block_type in _TITLED_BLOCK_DEFAULTS:
        return _str_field(content, "title") or _TITLED_BLOCK_DEFAULTS[block_type]

    if block_type == "image":
        if file_meta:
            return _describe_file(file_meta[0])
        return _str_field(content, "alt") or _str_field(content, "filename") or "Image block"
    if block_type == "file":
        if file_meta:
            return ", ".join(_describe_file(m) for m in file_meta)
        return _str_field(content, "filename") or "File block"
    if block_type == "pdf":
        if file_meta:
            return _describe_file(file_meta[0])
        return _str_field(content, "filename") or "PDF block"
    if block_type == "link":
        return _str_field(content, "title") or _str_field(content, "url") or "Link block"

    return f"{block_type} block"


def _format_task_line(task: Any) -> str | None:
    if not isinstance(task, dict):
        return None
    task_text = task.get("text").strip() if isinstance(task.get("text"), str) else ""
    if not task_text:
        return None
    meta = []
    if task.get("status"):
        meta.append(str(task["status"]))
    if task.get("dueDate"):
        meta.append(f"due {task['dueDate']}")
    if task.get("priority"):
        meta.append(str(task["priority"]))
    suffix = f" ({', '.join(meta)})" if meta else ""
    return f"- {task_text}{suffix}"


def format_block_chunk_preview(raw: str | None) -> str | None:
    """
    块 chunk 的引用预览

    chunk 内容是 JSON 时尽量渲染为可读文本：
    字符串本身、text 字段、tasks 任务列表（最多 12 条）、content 字段。
    """
    if not raw:
        return raw
    trimmed = raw.strip()
    if not trimmed:
        return raw
    normalized = trimmed.replace("\\n", "\n")
    looks_json = (trimmed.startswith("{") and trimmed.endswith("}")) or (
        trimmed.startswith("[") and trimmed.endswith("]")
    )
    if not looks_json:
        return normalized

    try:
        data = json.loads(trimmed)
    except ValueError:
        return normalized
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("text"), str) and data["text"].strip():
            return data["text"]
        if isinstance(data.get("tasks"), list):
            lines = [line for line in map(_format_task_line, data["tasks"]) if line]
            if lines:
                return "\n".join(lines[:MAX_PREVIEW_TASKS])
        if isinstance(data.get("content"), str) and data["content"].strip():
            return data["content"]
    return normalized


@register_operator("fetcher", "block")
class BlockFetcher(SqlFetcher, BaseFetcherOperator):
    name = "block"
    table = "blocks"
    # 块没有独立的工作区字段，经 tabs → projects 关联
    list_ids_sql = (
        "SELECT b.id FROM blocks b "
        "JOIN tabs t ON t.id = b.tab_id "
        "JOIN projects p ON p.id = t.project_id "
        "WHERE p.workspace_id = :workspace_id "
        "ORDER BY b.id LIMIT :limit OFFSET :offset"
    )

    async def fetch(self, session: AsyncSession, resource_id: str) -> FetchedContent | None:
        row = await self._fetch_one(
            session,
            "SELECT id, tab_id, content FROM blocks WHERE id = :id",
            id=resource_id,
        )
        if row is None:
            return None
        return FetchedContent(text=block_content_text(row.content), tab_id=row.tab_id)

    async def resolve_titles(self, session: AsyncSession, resource_ids: list[str]) -> dict[str, str]:
        rows = await self._fetch_in(
            session,
            "SELECT id, type, content FROM blocks WHERE id IN :ids",
            resource_ids,
        )
        blocks = [(str(row.id), row.type, load_json(row.content)) for row in rows]
        file_meta = await self._file_meta(session, blocks)
        return {
            block_id: block_display_title(block_type, content, file_meta.get(block_id))
            for block_id, block_type, content in blocks
        }

    async def _file_meta(
        self,
        session: AsyncSession,
        blocks: list[tuple[str, str | None, Any]],
    ) -> dict[str, list[FileMeta]]:
        """查询 file / pdf / image 块关联的文件名和类型"""
        file_block_ids = [block_id for block_id, block_type, _ in blocks if block_type == "file"]
        referenced: dict[str, str] = {}
        for block_id, block_type, content in blocks:
            if block_type in ("pdf", "image") and isinstance(content, dict) and content.get("fileId"):
                referenced[block_id] = str(content["fileId"])

        out: dict[str, list[FileMeta]] = {}

        attachments = await self._fetch_in(
            session,
            "SELECT fa.block_id, f.file_name, f.file_type FROM file_attachments fa "
            "JOIN files f ON f.id = fa.file_id WHERE fa.block_id IN :ids",
            file_block_ids,
        )
        for row in attachments:
            out.setdefault(str(row.block_id), []).append(
                FileMeta(file_name=row.file_name or "file", file_type=row.file_type or "")
            )

        files = await self._fetch_in(
            session,
            "SELECT id, file_name, file_type FROM files WHERE id IN :ids",
            sorted(set(referenced.values())),
        )
        by_file_id = {
            str(row.id): FileMeta(file_name=row.file_name or "file", file_type=row.file_type or "")
            for row in files
        }
        for block_id, file_id in referenced.items():
            if file_id in by_file_id:
                out[block_id] = [by_file_id[file_id]]

        return out
