"""
Embedding / LLM / 向量工具单元测试

测试 app/infra/embeddings.py、app/infra/llm.py、app/infra/vectors.py：
- deterministic_hash_embed
- get_embedding / get_embeddings（输入截断、并发分批、错误包装）
- chat_completion（未配置 Key、异常包装）
- 余弦相似度与向量解析
"""

import math
from unittest.mock import AsyncMock, patch

import pytest

from app.config import get_settings
from app.exceptions import EmbeddingError, LLMError
from app.infra.embeddings import (
    EMBEDDING_BACKENDS,
    deterministic_hash_embed,
    get_embedding,
    get_embeddings,
)
from app.infra.llm import CHAT_BACKENDS, chat_completion
from app.infra.vectors import cosine_similarity, normalize_embedding, parse_embedding


class TestDeterministicHashEmbed:
    """测试确定性哈希向量生成"""

    def test_returns_correct_dimension(self):
        assert len(deterministic_hash_embed("测试文本", dim=1024)) == 1024
        assert len(deterministic_hash_embed("测试文本", dim=8)) == 8

    def test_deterministic(self):
        text = "Project Firefly launches in Q3"
        assert deterministic_hash_embed(text, dim=256) == deterministic_hash_embed(text, dim=256)

    def test_unit_norm(self):
        vec = deterministic_hash_embed("Project Firefly launches in Q3", dim=256)
        assert math.isclose(math.sqrt(sum(v * v for v in vec)), 1.0, rel_tol=1e-9)

    def test_empty_text_is_zero_vector(self):
        assert deterministic_hash_embed("", dim=16) == [0.0] * 16

    def test_case_and_punctuation_insensitive(self):
        assert deterministic_hash_embed("Firefly, launch!", dim=64) == deterministic_hash_embed(
            "firefly launch", dim=64
        )

    def test_shared_words_are_more_similar(self):
        query = deterministic_hash_embed("when does firefly launch", dim=256)
        related = deterministic_hash_embed("firefly will launch in september", dim=256)
        unrelated = deterministic_hash_embed("quarterly budget spreadsheet totals", dim=256)
        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)


class TestGetEmbedding:
    """测试 Embedding 调用入口"""

    @pytest.mark.asyncio
    async def test_hash_provider(self):
        vec = await get_embedding("hello world")
        assert len(vec) == get_settings().embedding_dim

    @pytest.mark.asyncio
    async def test_input_is_truncated(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "embedding_max_input_chars", 5)
        assert await get_embedding("hello world") == await get_embedding("hello")

    @pytest.mark.asyncio
    async def test_batches_preserve_order(self):
        texts = [f"text {i}" for i in range(7)]
        vecs = await get_embeddings(texts, concurrency=3)
        assert vecs == [await get_embedding(t) for t in texts]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        assert await get_embeddings([]) == []

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        settings = get_settings()
        monkeypatch.setattr(settings, "embedding_provider", "openai")
        monkeypatch.setattr(settings, "openai_api_key", None)

        with pytest.raises(EmbeddingError):
            await get_embedding("hello")

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self, monkeypatch):
        settings = get_settings()
        monkeypatch.setattr(settings, "embedding_provider", "ollama")

        failing = AsyncMock(side_effect=RuntimeError("connection refused"))
        with patch.dict(EMBEDDING_BACKENDS, {"ollama": failing}):
            with pytest.raises(EmbeddingError) as exc_info:
                await get_embedding("hello")

        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestChatCompletion:
    """测试 LLM 调用入口"""

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with pytest.raises(LLMError):
            await chat_completion("hi")

    @pytest.mark.asyncio
    async def test_openai_compatible_call(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "deepseek_api_key", "sk-test")

        mock_chat = AsyncMock(return_value="answer")
        with patch.dict(CHAT_BACKENDS, {"deepseek": mock_chat}):
            result = await chat_completion("hi", system_prompt="sys", max_tokens=50)

        assert result == "answer"
        request, config = mock_chat.call_args.args
        assert request.messages() == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]
        assert request.max_tokens == 50
        assert config["api_key"] == "sk-test"

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "llm_provider", "ollama")

        failing = AsyncMock(side_effect=RuntimeError("timeout"))
        with patch.dict(CHAT_BACKENDS, {"ollama": failing}):
            with pytest.raises(LLMError):
                await chat_completion("hi")


class TestVectors:
    """测试向量工具"""

    def test_cosine_similarity(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_cosine_similarity_degenerate(self):
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_normalize(self):
        assert normalize_embedding([3.0, 4.0]) == pytest.approx([0.6, 0.8])
        assert normalize_embedding([0.0, 0.0]) == [0.0, 0.0]

    def test_parse_embedding(self):
        assert parse_embedding([1, 2]) == [1.0, 2.0]
        assert parse_embedding("[0.5, 0.25]") == [0.5, 0.25]
        assert parse_embedding('{"a": 1}') is None
        assert parse_embedding("not a vector") is None
        assert parse_embedding(None) is None
        assert parse_embedding(42) is None
