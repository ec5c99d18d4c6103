"""
文档增强模块

- DocumentSummarizer: 父文档摘要生成（失败时回退为原文截断）
"""

from app.pipeline.enrichers.summarizer import (
    DocumentSummarizer,
    SummaryResult,
    is_fallback_summary,
)

__all__ = [
    "DocumentSummarizer",
    "SummaryResult",
    "is_fallback_summary",
]
