"""Groq chat completions provider."""

import logging
import time
from typing import Any

from groq import AsyncGroq

from supermd.ai.providers.base import LLMMessage, LLMProvider, LLMResponse
from supermd.ai.providers.registry import register_llm_provider

logger = logging.getLogger("llm")


@register_llm_provider
class GroqProvider(LLMProvider):
    """Llama models on Groq; fast enough to summarize inline with a trim."""

    name = "groq"
    DEFAULT_MODEL = "llama-3.1-8b-instant"

    @classmethod
    def resolve_model(cls, model: str | None) -> str | None:
        resolved = (model or "").strip()
        # LLM_MODEL is shared with the openai provider; its ids mean nothing here
        if not resolved or resolved.startswith("gpt-"):
            return cls.DEFAULT_MODEL
        return resolved

    def __init__(self, api_key: str, model: str | None = None, timeout: float = 60.0):
        self._client = AsyncGroq(api_key=api_key, timeout=timeout)
        self._model = type(self).resolve_model(model)

    async def generate(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs: Any,
    ) -> LLMResponse:
        model_id = type(self).resolve_model(model) if model else self._model
        log_extra: dict[str, Any] = {"service": "llm", "provider": self.name, "model_id": model_id}
        start_time = time.time()

        try:
            completion = await self._client.chat.completions.create(
                model=model_id,
                messages=[message.to_dict() for message in messages],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except Exception as e:
            logger.error(
                "Groq completion failed",
                extra={
                    **log_extra,
                    "error": str(e),
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
            )
            raise

        choice = completion.choices[0]
        usage = completion.usage
        result = LLMResponse(
            content=choice.message.content or "",
            model=completion.model or model_id or "",
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason,
        )

        logger.info(
            "Groq completion finished",
            extra={
                **log_extra,
                "tokens_in": result.tokens_in,
                "tokens_out": result.tokens_out,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return result

    async def aclose(self) -> None:
        await self._client.close()
