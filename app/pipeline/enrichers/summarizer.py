"""
父文档摘要生成器 (Document Summarizer)

为每个被索引的资源生成 1-2 句英文摘要，摘要向量用于检索时的父文档门控。

- 输入截取前 summary_input_chars 个字符
- LLM 未配置、调用失败或返回空内容时返回固定的回退标记
- 识别到回退标记时使用原文前 summary_fallback_chars 个字符作为摘要
"""

import logging
from dataclasses import dataclass

from app.config import get_settings
from app.exceptions import LLMError
from app.infra.llm import chat_completion

logger = logging.getLogger(__name__)


SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant. Summarize the following document in 1-2 sentences, "
    "focusing on its main topic and key entities."
)

# 回退标记（比较时忽略大小写和首尾空白）
SUMMARY_UNAVAILABLE = "No summary available."
SUMMARY_FAILED = "Summary creation failed."
SUMMARY_ERROR = "Summary generation error."
SUMMARY_EMPTY = "No summary generated."

_FALLBACK_SENTINELS = {
    s.lower() for s in (SUMMARY_UNAVAILABLE, SUMMARY_FAILED, SUMMARY_ERROR, SUMMARY_EMPTY)
}


def is_fallback_summary(summary: str | None) -> bool:
    """判断摘要是否为回退标记（或为空）"""
    if summary is None:
        return True
    normalized = summary.strip().lower()
    return not normalized or normalized in _FALLBACK_SENTINELS


@dataclass
class SummaryResult:
    """摘要结果，used_fallback 表示使用了原文截断"""
    summary: str
    used_fallback: bool


class DocumentSummarizer:
    """
    文档摘要生成器

    使用示例：
    ```python
    summarizer = DocumentSummarizer()
    result = await summarizer.summarize("Project Firefly launches in Q3...")
    # result.summary -> "Project Firefly is ..."
    ```
    """

    def __init__(
        self,
        input_chars: int | None = None,
        max_tokens: int | None = None,
        fallback_chars: int | None = None,
    ):
        settings = get_settings()
        self.input_chars = input_chars or settings.summary_input_chars
        self.max_tokens = max_tokens or settings.summary_max_tokens
        self.fallback_chars = fallback_chars or settings.summary_fallback_chars

    async def generate(self, content: str) -> str:
        """
        调用 LLM 生成摘要

        不抛异常：失败时返回回退标记，由 summarize 决定回退内容。
        """
        try:
            summary = await chat_completion(
                prompt=content[: self.input_chars],
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                max_tokens=self.max_tokens,
            )
        except LLMError as e:
            logger.warning(f"摘要生成失败，使用原文截断: {e}")
            return SUMMARY_FAILED

        summary = (summary or "").strip()
        return summary or SUMMARY_EMPTY

    def fallback(self, content: str) -> str:
        """原文前 fallback_chars 个字符"""
        return content[: self.fallback_chars].strip()

    async def summarize(self, content: str) -> SummaryResult:
        raw = await self.generate(content)
        if is_fallback_summary(raw):
            return SummaryResult(summary=self.fallback(content), used_fallback=True)
        logger.debug(f"摘要生成成功，长度: {len(raw)}")
        return SummaryResult(summary=raw, used_fallback=False)
