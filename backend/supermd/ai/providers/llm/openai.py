"""OpenAI-compatible chat completions provider (httpx)."""

import logging
import time
from typing import Any

import httpx

from supermd.ai.providers.base import LLMMessage, LLMProvider, LLMResponse
from supermd.ai.providers.registry import register_llm_provider

logger = logging.getLogger("llm")


@register_llm_provider
class OpenAIProvider(LLMProvider):
    """Any endpoint speaking the ``/chat/completions`` dialect."""

    name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = (base_url or "").rstrip("/")
        self._model = type(self).resolve_model(model)
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def generate(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs: Any,
    ) -> LLMResponse:
        start_time = time.time()
        effective_model = (model or "").strip() or self._model or self.DEFAULT_MODEL

        payload: dict[str, Any] = {
            "model": effective_model,
            "messages": [message.to_dict() for message in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if kwargs:
            payload.update(kwargs)

        logger.info(
            "Chat completion started",
            extra={
                "service": "llm",
                "provider": self.name,
                "model_id": effective_model,
                "max_tokens": max_tokens,
                "metadata": {"message_count": len(messages)},
            },
        )

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

        response = await self._client.post(
            f"{self._base_url}/chat/completions",
            headers=self._get_headers(),
            json=payload,
        )
        response.raise_for_status()

        data = response.json()
        choices = data.get("choices") or []
        first_choice = choices[0] if choices else {}
        message = first_choice.get("message") or {}
        content = message.get("content") or ""
        usage = data.get("usage") or {}

        tokens_in = int(usage.get("prompt_tokens") or 0)
        tokens_out = int(usage.get("completion_tokens") or 0)
        duration_ms = int((time.time() - start_time) * 1000)

        logger.info(
            "Chat completion finished",
            extra={
                "service": "llm",
                "provider": self.name,
                "model_id": effective_model,
                "tokens_in": tokens_in,
                "tokens_out": tokens_out,
                "duration_ms": duration_ms,
            },
        )

        return LLMResponse(
            content=content,
            model=str(data.get("model") or effective_model),
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            finish_reason=first_choice.get("finish_reason"),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
