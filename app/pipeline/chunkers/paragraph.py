"""
段落切分器

按空行分段，把相邻段落累积到目标 token 数，再给每个片段加上前一片段的尾部作为重叠上下文。
token 数按 4 字符 ≈ 1 token 估算。
"""

import math
import re

from app.pipeline.base import BaseChunkerOperator, ChunkPiece
from app.pipeline.registry import register_operator

CHARS_PER_TOKEN = 4

_PARAGRAPH_SPLIT_RE = re.compile(r"\n{2,}")


def estimate_tokens(text: str) -> int:
    """估算 token 数（约 4 字符 / token）"""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@register_operator("chunker", "paragraph")
class ParagraphChunker(BaseChunkerOperator):
    """
    段落切分器

    切分策略：
    1. 按两个及以上换行拆分段落，去除首尾空白并丢弃空段落
    2. 超过目标大小的段落按 target*4 字符的窗口切片，
       步长 = max(1, target*4 - overlap*4)
    3. 其余段落以 "\\n\\n" 连接累积，加入下一段会超过目标时先输出当前片段
    4. overlap > 0 且片段多于一个时，第 i 个片段（i > 0）前面拼上
       前一片段末尾 overlap*4 个字符和 "\\n\\n"
    """
    name = "paragraph"
    kind = "chunker"

    def __init__(self, target_tokens: int = 1000, overlap_tokens: int = 100):
        """
        Args:
            target_tokens: 每个片段的目标 token 数
            overlap_tokens: 相邻片段的重叠 token 数
        """
        self.target_tokens = target_tokens
        self.overlap_tokens = overlap_tokens

    def chunk(self, text: str, metadata: dict | None = None) -> list[ChunkPiece]:
        if not text or not text.strip():
            return []

        paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text)]
        paragraphs = [p for p in paragraphs if p]

        contents: list[str] = []
        current: list[str] = []
        current_tokens = 0

        def flush() -> None:
            nonlocal current, current_tokens
            if current:
                content = "\n\n".join(current).strip()
                if content:
                    contents.append(content)
            current = []
            current_tokens = 0

        max_chars = self.target_tokens * CHARS_PER_TOKEN
        overlap_chars = self.overlap_tokens * CHARS_PER_TOKEN

        for paragraph in paragraphs:
            tokens = estimate_tokens(paragraph)
            if tokens > self.target_tokens:
                # 超长段落直接切片输出，不参与累积
                step = max(1, max_chars - overlap_chars)
                for start in range(0, len(paragraph), step):
                    piece = paragraph[start:start + max_chars].strip()
                    if piece:
                        contents.append(piece)
                continue

            if current and current_tokens + tokens > self.target_tokens:
                flush()

            current.append(paragraph)
            current_tokens += tokens

        flush()

        if self.overlap_tokens > 0 and len(contents) > 1:
            overlapped = [contents[0]]
            for prev, content in zip(contents, contents[1:]):
                tail = prev[max(0, len(prev) - overlap_chars):]
                overlapped.append(f"{tail}\n\n{content}".strip())
            contents = overlapped

        base_meta = metadata or {}
        return [
            ChunkPiece(text=content, metadata={**base_meta, "chunk_index": i})
            for i, content in enumerate(contents)
        ]
