"""
向量工具函数

- normalize_embedding: L2 归一化
- cosine_similarity: 余弦相似度
- parse_embedding: 解析数据库读出的向量（list / "[..]" 字符串 / JSON 文本）
"""

import json
import math
from typing import Any, Sequence


def normalize_embedding(vec: Sequence[float]) -> list[float]:
    """L2 归一化，零向量原样返回"""
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        return [float(v) for v in vec]
    return [v / norm for v in vec]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    余弦相似度

    维度不一致、空向量或零向量均返回 0.0。
    """
    if not a or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def parse_embedding(value: Any) -> list[float] | None:
    """
    解析存储中的向量

    PostgreSQL float8[] 经 asyncpg 读出为 list；pgvector 文本格式为 "[0.1,0.2]"；
    SQLite 的 JSON 列读出为 list。无法解析时返回 None。
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        try:
            return [float(v) for v in value]
        except (TypeError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return None
        return parse_embedding(parsed) if isinstance(parsed, list) else None
    return None
