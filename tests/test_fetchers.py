"""
资源内容读取器测试

测试 app/pipeline/fetchers：
- doc / table / block / file 的文本输出格式与作用域
- 标题解析、工作区 id 列表
- 块引用预览格式化
"""

import json

import pytest

from app.pipeline.fetchers import get_fetcher
from app.pipeline.fetchers.base import extract_prosemirror_text, load_json
from app.pipeline.fetchers.block import (
    block_content_text,
    block_display_title,
    format_block_chunk_preview,
    format_file_type_label,
)
from app.pipeline.fetchers.file import FileFetcher, LocalStorageDownloader, extract_plain_text
from app.pipeline.fetchers.table import format_cell_value


def _prosemirror(*paragraphs: str) -> str:
    return json.dumps(
        {
            "type": "doc",
            "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": p}]}
                for p in paragraphs
            ],
        }
    )


class TestHelpers:
    """测试公共工具函数"""

    def test_load_json(self):
        assert load_json('{"a": 1}') == {"a": 1}
        assert load_json("plain text") == "plain text"
        assert load_json(None) is None
        assert load_json({"a": 1}) == {"a": 1}

    def test_extract_prosemirror_text(self):
        doc = json.loads(_prosemirror("Line one", "Line two"))
        assert extract_prosemirror_text(doc) == "Line one\nLine two"
        assert extract_prosemirror_text(None) == ""
        assert extract_prosemirror_text({"type": "image"}) == ""

    def test_format_cell_value(self):
        assert format_cell_value(None) == ""
        assert format_cell_value("Firefly") == "Firefly"
        assert format_cell_value(True) == "true"
        assert format_cell_value(False) == "false"
        assert format_cell_value(3.0) == "3"
        assert format_cell_value(2.5) == "2.5"
        assert format_cell_value([{"name": "Alpha"}, {"name": "Beta"}]) == "Alpha, Beta"
        assert format_cell_value(["a", 1]) == "a, 1"
        assert format_cell_value({"name": "Done"}) == "Done"
        assert format_cell_value({"label": "High"}) == "High"
        assert format_cell_value({"x": 1}) == '{"x":1}'

    def test_block_content_text(self):
        assert block_content_text("hello") == "hello"
        assert block_content_text(_prosemirror("Hi there")) == "Hi there"
        assert block_content_text('{"title":"Sprint"}') == '{"title":"Sprint"}'
        assert block_content_text(None) == ""

    def test_format_file_type_label(self):
        assert format_file_type_label("application/pdf") == "PDF"
        assert format_file_type_label(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        ) == "spreadsheet"
        assert format_file_type_label("image/png") == "image"
        assert format_file_type_label(None) == "file"

    def test_block_display_title(self):
        assert block_display_title("text", {}) == "Text block"
        assert block_display_title("task", {"title": "Sprint"}) == "Sprint"
        assert block_display_title("task", {}) == "Task block"
        assert block_display_title("link", {"url": "https://example.com"}) == "https://example.com"
        assert block_display_title("image", {"alt": "Logo"}) == "Logo"
        assert block_display_title("chart", {}) == "chart block"


class TestBlockChunkPreview:
    """测试块 chunk 的引用预览"""

    def test_none_and_plain_text(self):
        assert format_block_chunk_preview(None) is None
        assert format_block_chunk_preview("plain\\ntext") == "plain\ntext"

    def test_text_field(self):
        assert format_block_chunk_preview('{"text": "Hello"}') == "Hello"

    def test_task_list(self):
        raw = json.dumps(
            {
                "tasks": [
                    {"text": "Write docs", "status": "todo", "dueDate": "2026-01-01"},
                    {"text": ""},
                    {"text": "Ship", "priority": "high"},
                ]
            }
        )
        assert format_block_chunk_preview(raw) == "- Write docs (todo, due 2026-01-01)\n- Ship (high)"

    def test_task_list_is_capped(self):
        raw = json.dumps({"tasks": [{"text": f"task {i}"} for i in range(20)]})
        assert len(format_block_chunk_preview(raw).splitlines()) == 12

    def test_invalid_json_falls_back(self):
        assert format_block_chunk_preview("{not json}") == "{not json}"


class TestDocFetcher:
    @pytest.mark.asyncio
    async def test_fetch(self, session, seed):
        await seed(session, "docs", id="doc-1", workspace_id="ws-1", title="Launch plan",
                   content=_prosemirror("Firefly launches in Q3."))

        content = await get_fetcher("doc").fetch(session, "doc-1")

        assert content.text == "Title: Launch plan\n\nFirefly launches in Q3."
        assert content.project_id is None
        assert content.tab_id is None

    @pytest.mark.asyncio
    async def test_missing_doc(self, session):
        assert await get_fetcher("doc").fetch(session, "nope") is None

    @pytest.mark.asyncio
    async def test_titles_and_list_ids(self, session, seed):
        await seed(session, "docs", id="doc-1", workspace_id="ws-1", title="A", content=None)
        await seed(session, "docs", id="doc-2", workspace_id="ws-1", title=None, content=None)
        await seed(session, "docs", id="doc-3", workspace_id="ws-2", title="C", content=None)
        fetcher = get_fetcher("doc")

        titles = await fetcher.resolve_titles(session, ["doc-1", "doc-2", "missing"])
        assert titles == {"doc-1": "A"}

        assert await fetcher.list_ids(session, "ws-1", limit=10, offset=0) == ["doc-1", "doc-2"]
        assert await fetcher.list_ids(session, "ws-1", limit=1, offset=1) == ["doc-2"]


class TestTableFetcher:
    @pytest.mark.asyncio
    async def test_fetch_rows(self, session, seed):
        await seed(session, "tables", id="t-1", workspace_id="ws-1", project_id="p-1",
                   title="Roadmap", description="Q3 items")
        await seed(session, "table_fields", id="f-1", table_id="t-1", name="Name", order=1)
        await seed(session, "table_fields", id="f-2", table_id="t-1", name="Status", order=2)
        await seed(session, "table_rows", id="r-2", table_id="t-1", order=2,
                   data=json.dumps({"f-1": "Beacon"}))
        await seed(session, "table_rows", id="r-1", table_id="t-1", order=1,
                   data=json.dumps({"f-1": "Firefly", "f-2": {"name": "Done"}}))

        content = await get_fetcher("table").fetch(session, "t-1")

        assert content.text == (
            "Table: Roadmap\nDescription: Q3 items\n\n"
            "Row 1:\n- Name: Firefly\n- Status: Done\n\n"
            "Row 2:\n- Name: Beacon\n\n"
        )
        assert content.project_id == "p-1"

    @pytest.mark.asyncio
    async def test_no_fields_indexes_metadata(self, session, seed):
        await seed(session, "tables", id="t-1", workspace_id="ws-1", project_id="p-1",
                   title="Roadmap", description=None)

        content = await get_fetcher("table").fetch(session, "t-1")

        assert content.text == "Table: Roadmap\nDescription: "

    @pytest.mark.asyncio
    async def test_no_rows(self, session, seed):
        await seed(session, "tables", id="t-1", workspace_id="ws-1", project_id="p-1",
                   title="Roadmap", description="Q3 items")
        await seed(session, "table_fields", id="f-1", table_id="t-1", name="Name", order=1)

        content = await get_fetcher("table").fetch(session, "t-1")

        assert content.text == "Table: Roadmap\nDescription: Q3 items\n(No rows)"


class TestBlockFetcher:
    @pytest.fixture
    def tree(self, session, seed):
        async def _tree():
            await seed(session, "projects", id="p-1", workspace_id="ws-1", name="P")
            await seed(session, "projects", id="p-2", workspace_id="ws-2", name="Q")
            await seed(session, "tabs", id="tab-1", project_id="p-1", name="T")
            await seed(session, "tabs", id="tab-2", project_id="p-2", name="U")
        return _tree

    @pytest.mark.asyncio
    async def test_fetch_scoped_to_tab(self, session, seed, tree):
        await tree()
        await seed(session, "blocks", id="b-1", tab_id="tab-1", type="text",
                   content=_prosemirror("Firefly kickoff notes"))

        content = await get_fetcher("block").fetch(session, "b-1")

        assert content.text == "Firefly kickoff notes"
        assert content.tab_id == "tab-1"
        assert content.project_id is None

    @pytest.mark.asyncio
    async def test_list_ids_joins_through_projects(self, session, seed, tree):
        await tree()
        await seed(session, "blocks", id="b-1", tab_id="tab-1", type="text", content="a")
        await seed(session, "blocks", id="b-2", tab_id="tab-1", type="text", content="b")
        await seed(session, "blocks", id="b-9", tab_id="tab-2", type="text", content="c")

        ids = await get_fetcher("block").list_ids(session, "ws-1", limit=100, offset=0)

        assert ids == ["b-1", "b-2"]

    @pytest.mark.asyncio
    async def test_resolve_titles_with_files(self, session, seed, tree):
        await tree()
        await seed(session, "files", id="f-1", workspace_id="ws-1", project_id="p-1",
                   file_name="brief.pdf", file_type="application/pdf", storage_path="brief.pdf")
        await seed(session, "blocks", id="b-1", tab_id="tab-1", type="text", content="x")
        await seed(session, "blocks", id="b-2", tab_id="tab-1", type="task",
                   content=json.dumps({"title": "Sprint"}))
        await seed(session, "blocks", id="b-3", tab_id="tab-1", type="file", content="{}")
        await seed(session, "blocks", id="b-4", tab_id="tab-1", type="pdf",
                   content=json.dumps({"fileId": "f-1"}))
        await seed(session, "file_attachments", id="a-1", block_id="b-3", file_id="f-1")

        titles = await get_fetcher("block").resolve_titles(session, ["b-1", "b-2", "b-3", "b-4"])

        assert titles == {
            "b-1": "Text block",
            "b-2": "Sprint",
            "b-3": "brief.pdf (PDF)",
            "b-4": "brief.pdf (PDF)",
        }


class TestFileFetcher:
    @pytest.mark.asyncio
    async def test_fetch_text_file(self, session, seed, tmp_path):
        (tmp_path / "notes").mkdir()
        (tmp_path / "notes" / "a.txt").write_text("Firefly notes", encoding="utf-8")
        await seed(session, "files", id="f-1", workspace_id="ws-1", project_id="p-1",
                   file_name="a.txt", file_type="text/plain", storage_path="notes/a.txt")

        fetcher = FileFetcher(downloader=LocalStorageDownloader(tmp_path))
        content = await fetcher.fetch(session, "f-1")

        assert content.text == "Firefly notes"
        assert content.project_id == "p-1"

    @pytest.mark.asyncio
    async def test_missing_object_returns_none(self, session, seed, tmp_path):
        await seed(session, "files", id="f-1", workspace_id="ws-1", project_id="p-1",
                   file_name="a.txt", file_type="text/plain", storage_path="gone.txt")

        fetcher = FileFetcher(downloader=LocalStorageDownloader(tmp_path))
        assert await fetcher.fetch(session, "f-1") is None

    @pytest.mark.asyncio
    async def test_missing_storage_path_returns_none(self, session, seed, tmp_path):
        await seed(session, "files", id="f-1", workspace_id="ws-1", project_id="p-1",
                   file_name="a.txt", file_type="text/plain", storage_path=None)

        fetcher = FileFetcher(downloader=LocalStorageDownloader(tmp_path))
        assert await fetcher.fetch(session, "f-1") is None

    @pytest.mark.asyncio
    async def test_binary_without_extractor_is_empty(self, session, seed, tmp_path):
        (tmp_path / "x.pdf").write_bytes(b"%PDF-1.4 ...")
        await seed(session, "files", id="f-1", workspace_id="ws-1", project_id="p-1",
                   file_name="x.pdf", file_type="application/pdf", storage_path="x.pdf")

        fetcher = FileFetcher(downloader=LocalStorageDownloader(tmp_path))
        content = await fetcher.fetch(session, "f-1")

        assert content.is_empty

    @pytest.mark.asyncio
    async def test_pluggable_downloader_and_extractor(self, session, seed):
        await seed(session, "files", id="f-1", workspace_id="ws-1", project_id="p-1",
                   file_name="x.pdf", file_type="application/pdf", storage_path="x.pdf")

        async def downloader(path):
            return b"raw"

        def extractor(data, name, file_type):
            return f"extracted {name} {len(data)}"

        fetcher = FileFetcher(downloader=downloader, extractor=extractor)
        content = await fetcher.fetch(session, "f-1")

        assert content.text == "extracted x.pdf 3"

    @pytest.mark.asyncio
    async def test_downloader_rejects_path_outside_root(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("nope")

        assert await LocalStorageDownloader(root)("../secret.txt") is None

    def test_extract_plain_text(self):
        assert extract_plain_text(b"hi", "a.md", None) == "hi"
        assert extract_plain_text(b"{}", "a.bin", "application/json") == "{}"
        assert extract_plain_text(b"\x00", "a.docx", "application/msword") == ""
