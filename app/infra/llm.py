"""
LLM 客户端

两个用途：父文档摘要（索引时）和基于检索上下文的回答（问答时）。

提供商由 LLM_PROVIDER 决定：
- openai / deepseek : OpenAI SDK（兼容协议）
- ollama            : 本地 /api/chat
- gemini            : generateContent REST 接口

所有提供商错误统一包装为 LLMError，调用方只需处理一种异常。
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Awaitable, Callable

import httpx
from openai import AsyncOpenAI

from app.config import OPENAI_COMPATIBLE_PROVIDERS, get_settings
from app.exceptions import LLMError

logger = logging.getLogger(__name__)

LLM_TIMEOUT_SECONDS = 120.0


@dataclass
class ChatRequest:
    prompt: str
    system_prompt: str | None
    temperature: float
    max_tokens: int

    def messages(self) -> list[dict[str, str]]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.prompt})
        return messages


@lru_cache(maxsize=8)
def _openai_client(api_key: str, base_url: str | None) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=LLM_TIMEOUT_SECONDS)


async def _openai_compatible_chat(request: ChatRequest, config: dict[str, Any]) -> str:
    client = _openai_client(config["api_key"], config.get("base_url"))
    response = await client.chat.completions.create(
        model=config["model"],
        messages=request.messages(),
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    )
    return response.choices[0].message.content or ""


async def _ollama_chat(request: ChatRequest, config: dict[str, Any]) -> str:
    async with httpx.AsyncClient(timeout=LLM_TIMEOUT_SECONDS) as client:
        response = await client.post(
            f"{config['base_url']}/api/chat",
            json={
                "model": config["model"],
                "messages": request.messages(),
                "stream": False,
                "options": {"temperature": request.temperature, "num_predict": request.max_tokens},
            },
        )
        response.raise_for_status()
        return response.json()["message"]["content"]


async def _gemini_chat(request: ChatRequest, config: dict[str, Any]) -> str:
    payload: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
        "generationConfig": {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        },
    }
    if request.system_prompt:
        payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}

    async with httpx.AsyncClient(timeout=LLM_TIMEOUT_SECONDS) as client:
        response = await client.post(
            f"{config['base_url']}/models/{config['model']}:generateContent",
            params={"key": config["api_key"]},
            json=payload,
        )
        response.raise_for_status()
        candidates = response.json().get("candidates") or []
        if not candidates:
            return ""
        return "".join(part.get("text", "") for part in candidates[0]["content"]["parts"])


ChatBackend = Callable[[ChatRequest, dict[str, Any]], Awaitable[str]]

CHAT_BACKENDS: dict[str, ChatBackend] = {
    "openai": _openai_compatible_chat,
    "deepseek": _openai_compatible_chat,
    "ollama": _ollama_chat,
    "gemini": _gemini_chat,
}

# 需要 API Key 的提供商
KEYED_PROVIDERS = (*OPENAI_COMPATIBLE_PROVIDERS, "gemini")


async def chat_completion(
    prompt: str,
    system_prompt: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> str:
    """
    调用配置的 LLM 生成一次回复

    Args:
        prompt: 用户消息
        system_prompt: 系统提示词
        temperature: 默认 LLM_TEMPERATURE
        max_tokens: 默认 LLM_MAX_TOKENS

    Raises:
        LLMError: 提供商未配置或调用失败
    """
    settings = get_settings()
    config = settings.get_llm_config()
    provider = config["provider"]

    backend = CHAT_BACKENDS.get(provider)
    if backend is None:
        raise LLMError(f"未知的 LLM 提供商: {provider}")
    if provider in KEYED_PROVIDERS and not config.get("api_key"):
        raise LLMError(f"{provider.upper()}_API_KEY 未配置")

    request = ChatRequest(
        prompt=prompt,
        system_prompt=system_prompt,
        temperature=settings.llm_temperature if temperature is None else temperature,
        max_tokens=max_tokens or settings.llm_max_tokens,
    )
    try:
        return await backend(request, config)
    except Exception as e:
        logger.error(f"LLM 调用失败 ({provider}/{config['model']}): {e}")
        raise LLMError(f"LLM 调用失败 ({provider}): {e}") from e
