"""
文本向量化 (Embeddings)

父文档摘要、chunk 和查询使用同一个 Embedding 模型，否则相似度没有意义。

提供商由 EMBEDDING_PROVIDER 决定：
- openai / deepseek : OpenAI SDK（兼容协议）
- ollama            : 本地 /api/embeddings（bge-m3、nomic-embed-text 等）
- gemini            : embedContent REST 接口
- hash              : 确定性哈希向量，无语义，开发和测试用

使用示例：
    from app.infra.embeddings import get_embedding, get_embeddings

    vec = await get_embedding("Project Firefly launch plan")
    vecs = await get_embeddings(["chunk 1", "chunk 2"], concurrency=5)
"""

import asyncio
import hashlib
import logging
import math
import re
from functools import lru_cache
from typing import Any, Awaitable, Callable

import httpx
from openai import AsyncOpenAI

from app.config import OPENAI_COMPATIBLE_PROVIDERS, get_settings
from app.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

EMBEDDING_TIMEOUT_SECONDS = 60.0

_WORD_RE = re.compile(r"\w+")


def deterministic_hash_embed(text: str, dim: int = 1536) -> list[float]:
    """
    确定性哈希向量

    小写后按单词做 MD5 分桶计数，再 L2 归一化。共享单词越多余弦相似度越高，
    足以在测试里模拟检索排序。空文本返回零向量。
    """
    vec = [0.0] * dim
    for word in _WORD_RE.findall(text.lower()):
        vec[int(hashlib.md5(word.encode()).hexdigest(), 16) % dim] += 1.0

    norm = math.sqrt(sum(v * v for v in vec)) or 1.0
    return [v / norm for v in vec]


@lru_cache(maxsize=8)
def _openai_client(api_key: str, base_url: str | None) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=EMBEDDING_TIMEOUT_SECONDS)


async def _openai_compatible_embedding(text: str, config: dict[str, Any]) -> list[float]:
    client = _openai_client(config["api_key"], config.get("base_url"))
    response = await client.embeddings.create(model=config["model"], input=text)
    return response.data[0].embedding


async def _ollama_embedding(text: str, config: dict[str, Any]) -> list[float]:
    async with httpx.AsyncClient(timeout=EMBEDDING_TIMEOUT_SECONDS) as client:
        response = await client.post(
            f"{config['base_url']}/api/embeddings",
            json={"model": config["model"], "prompt": text},
        )
        response.raise_for_status()
        return response.json()["embedding"]


async def _gemini_embedding(text: str, config: dict[str, Any]) -> list[float]:
    async with httpx.AsyncClient(timeout=EMBEDDING_TIMEOUT_SECONDS) as client:
        response = await client.post(
            f"{config['base_url']}/models/{config['model']}:embedContent",
            params={"key": config["api_key"]},
            json={
                "model": f"models/{config['model']}",
                "content": {"parts": [{"text": text}]},
            },
        )
        response.raise_for_status()
        return response.json()["embedding"]["values"]


async def _hash_embedding(text: str, config: dict[str, Any]) -> list[float]:
    return deterministic_hash_embed(text, dim=config["dim"])


EmbeddingBackend = Callable[[str, dict[str, Any]], Awaitable[list[float]]]

EMBEDDING_BACKENDS: dict[str, EmbeddingBackend] = {
    "openai": _openai_compatible_embedding,
    "deepseek": _openai_compatible_embedding,
    "ollama": _ollama_embedding,
    "gemini": _gemini_embedding,
    "hash": _hash_embedding,
}

KEYED_PROVIDERS = (*OPENAI_COMPATIBLE_PROVIDERS, "gemini")


async def get_embedding(text: str) -> list[float]:
    """
    获取单个文本的向量

    输入先截断到 EMBEDDING_MAX_INPUT_CHARS。

    Raises:
        EmbeddingError: 提供商未配置、调用失败或返回空向量
    """
    settings = get_settings()
    config = settings.get_embedding_config()
    provider = config["provider"]

    backend = EMBEDDING_BACKENDS.get(provider)
    if backend is None:
        raise EmbeddingError(f"未知的 Embedding 提供商: {provider}")
    if provider in KEYED_PROVIDERS and not config.get("api_key"):
        raise EmbeddingError(f"{provider.upper()}_API_KEY 未配置，无法生成 Embedding")

    try:
        vector = await backend(text[: settings.embedding_max_input_chars], config)
    except Exception as e:
        logger.error(f"Embedding 生成失败 ({provider}/{config['model']}): {e}")
        raise EmbeddingError(f"Embedding 生成失败 ({provider}): {e}") from e

    if not vector:
        raise EmbeddingError(f"Embedding 提供商返回空向量 ({provider})")
    return vector


async def get_embeddings(texts: list[str], concurrency: int | None = None) -> list[list[float]]:
    """
    批量获取向量，顺序与输入一致

    每批最多 concurrency 个请求并发（默认 EMBEDDING_CONCURRENCY），
    批与批之间顺序执行，避免对提供商瞬时压力过大。任一失败整体失败。
    """
    if not texts:
        return []

    size = max(1, concurrency or get_settings().embedding_concurrency)
    vectors: list[list[float]] = []
    for start in range(0, len(texts), size):
        batch = texts[start:start + size]
        vectors.extend(await asyncio.gather(*(get_embedding(t) for t in batch)))
        logger.debug(f"Embedding 进度 {len(vectors)}/{len(texts)}")
    return vectors
