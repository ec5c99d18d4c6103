"""
文本切分器模块

- ParagraphChunker : 按段落累积到目标 token 数，相邻片段保持重叠
"""

from app.pipeline.chunkers.paragraph import ParagraphChunker  # noqa: F401

__all__ = [
    "ParagraphChunker",
]
