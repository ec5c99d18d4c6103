"""
上传文件（files）读取器

读取文件记录 → 通过下载器获取字节 → 通过提取器转成文本。
下载器和提取器可替换：默认从本地存储目录读取，只提取文本类文件；
PDF、表格、Word 等二进制格式的解析由外部提取器负责。
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import ContentFetchError
from app.pipeline.base import BaseFetcherOperator, FetchedContent
from app.pipeline.fetchers.base import SqlFetcher
from app.pipeline.registry import register_operator

logger = logging.getLogger(__name__)

# (storage_path) -> bytes | None
Downloader = Callable[[str], Awaitable[bytes | None]]
# (data, file_name, file_type) -> text
Extractor = Callable[[bytes, str, str | None], str]

TEXT_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/x-yaml",
    "application/yaml",
}
TEXT_EXTENSIONS = {".txt", ".md", ".markdown", ".csv", ".tsv", ".json", ".xml", ".yaml", ".yml", ".log"}


class LocalStorageDownloader:
    """从本地存储根目录读取文件，不存在或越出根目录时返回 None"""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or get_settings().file_storage_root).resolve()

    async def __call__(self, storage_path: str) -> bytes | None:
        path = (self.root / storage_path).resolve()
        if self.root not in path.parents and path != self.root:
            logger.error(f"文件路径越出存储目录: {storage_path}")
            return None
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            logger.error(f"文件下载失败，存储中不存在: {storage_path}")
            return None
        except OSError as e:
            raise ContentFetchError(f"文件读取失败 {storage_path}: {e}") from e


def extract_plain_text(data: bytes, file_name: str, file_type: str | None) -> str:
    """文本类文件按 UTF-8 解码，其他格式返回空串"""
    mime = (file_type or "").lower()
    suffix = Path(file_name or "").suffix.lower()
    if mime.startswith("text/") or mime in TEXT_MIME_TYPES or suffix in TEXT_EXTENSIONS:
        return data.decode("utf-8", errors="replace")
    logger.info(f"不支持的文件类型，跳过文本提取: {file_name} ({file_type})")
    return ""


@register_operator("fetcher", "file")
class FileFetcher(SqlFetcher, BaseFetcherOperator):
    name = "file"
    table = "files"
    title_column = "file_name"
    list_ids_sql = (
        "SELECT id FROM files WHERE workspace_id = :workspace_id "
        "ORDER BY id LIMIT :limit OFFSET :offset"
    )

    def __init__(
        self,
        downloader: Downloader | None = None,
        extractor: Extractor | None = None,
    ):
        self.downloader = downloader or LocalStorageDownloader()
        self.extractor = extractor or extract_plain_text

    async def fetch(self, session: AsyncSession, resource_id: str) -> FetchedContent | None:
        row = await self._fetch_one(
            session,
            "SELECT id, project_id, file_name, file_type, storage_path FROM files WHERE id = :id",
            id=resource_id,
        )
        if row is None:
            return None
        if not row.storage_path:
            logger.warning(f"文件 {resource_id} 没有存储路径，跳过")
            return None

        data = await self.downloader(row.storage_path)
        if data is None:
            return None

        text = self.extractor(data, row.file_name, row.file_type)
        return FetchedContent(text=text or "", project_id=row.project_id)
