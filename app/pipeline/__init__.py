"""
Pipeline 可插拔算法模块

- chunkers/  : 文本切分器
- fetchers/  : 资源内容读取器（每种资源类型一个）
- enrichers/ : 父文档摘要生成
- registry.py: 算法注册表，支持按名称动态获取算法实例

使用示例：
    from app.pipeline import operator_registry

    chunker = operator_registry.require("chunker", "paragraph")(target_tokens=1000)
    pieces = chunker.chunk("长文本...")

    fetcher = operator_registry.require("fetcher", "table")()
    content = await fetcher.fetch(session, table_id)
"""

from app.pipeline import chunkers, fetchers  # noqa: F401
from app.pipeline.registry import operator_registry

__all__ = ["operator_registry"]
