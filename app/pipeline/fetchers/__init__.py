"""
资源内容读取器模块

每种资源类型一个实现，通过 operator_registry 的 "fetcher" 类别按名称获取：
- BlockFetcher : 页面中的内容块
- DocFetcher   : 富文本文档
- TableFetcher : 结构化表格
- FileFetcher  : 上传文件

使用示例：
    from app.pipeline.fetchers import get_fetcher

    content = await get_fetcher("doc").fetch(session, doc_id)
"""

from app.pipeline.base import BaseFetcherOperator
from app.pipeline.fetchers.block import BlockFetcher  # noqa: F401
from app.pipeline.fetchers.doc import DocFetcher  # noqa: F401
from app.pipeline.fetchers.file import FileFetcher  # noqa: F401
from app.pipeline.fetchers.table import TableFetcher  # noqa: F401
from app.pipeline.registry import operator_registry


def get_fetcher(resource_type: str) -> BaseFetcherOperator:
    """按资源类型创建读取器实例，未知类型抛出 KeyError"""
    return operator_registry.require("fetcher", resource_type)()


__all__ = [
    "BlockFetcher",
    "DocFetcher",
    "FileFetcher",
    "TableFetcher",
    "get_fetcher",
]
