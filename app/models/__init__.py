"""
数据模型层 (ORM Models)

数据模型关系图：
    IndexingJob (索引任务，按资源去重)

    Parent (父文档：摘要 + 摘要向量 + 内容哈希)
       │
       └── Chunk (文本块 + 向量)

核心概念：
- IndexingJob: 持久化的索引队列条目
- Parent: 一个工作区资源（file/block/doc/table）的索引结果
- Chunk: 父文档原文切分后的文本块，用于精排和回答上下文
"""

from app.models.chunk import Chunk
from app.models.indexing_job import IndexingJob
from app.models.parent import Parent

__all__ = [
    "Chunk",
    "IndexingJob",
    "Parent",
]
