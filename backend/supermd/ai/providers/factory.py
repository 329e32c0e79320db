"""Factory functions for creating provider instances.

Providers self-register at import time, so this factory only maps a
provider name to its credentials and constructor arguments.
"""

import logging
from functools import lru_cache
from typing import Any

from supermd.ai.providers.base import LLMProvider
from supermd.ai.providers.llm.stub import StubLLMProvider
from supermd.ai.providers.registry import get_llm_provider_class
from supermd.config import get_settings

logger = logging.getLogger("providers")


def _normalize(provider: str | None) -> str:
    if provider is None:
        provider = get_settings().llm_provider
    return (provider or "").lower().strip() or "openai"


def is_llm_provider_configured(provider: str | None = None) -> bool:
    """Whether ``provider`` has the credentials it needs to make real calls.

    The stub provider never counts as configured: it cannot summarize.
    """
    name = _normalize(provider)
    if name == "stub":
        return False
    return bool(_get_api_key_for_provider(name))


@lru_cache
def get_llm_provider(provider: str | None = None) -> LLMProvider:
    """Get an LLM provider instance.

    Falls back to the stub provider when the requested provider has no
    API key or fails to initialize.

    Raises:
        ProviderNotFoundError: If provider is not registered
    """
    provider = _normalize(provider)
    provider_class = get_llm_provider_class(provider)

    if provider == "stub":
        logger.warning(
            "Using stub LLM provider (explicitly requested)",
            extra={"service": "providers", "provider": "stub"},
        )
        return provider_class()

    api_key = _get_api_key_for_provider(provider)
    if not api_key:
        env_var = _get_env_var_for_provider(provider)
        logger.warning(
            f"Using stub LLM provider - {env_var} not configured",
            extra={
                "service": "providers",
                "provider": "stub",
                "metadata": {"requested_provider": provider, "expected_env_var": env_var},
            },
        )
        return StubLLMProvider()

    try:
        instance = provider_class(api_key=api_key, **_get_provider_kwargs(provider))
    except Exception as e:
        logger.warning(
            f"Using stub LLM provider - failed to initialize {provider}: {e}",
            extra={
                "service": "providers",
                "provider": "stub",
                "error": str(e),
                "metadata": {"requested_provider": provider},
            },
        )
        return StubLLMProvider()

    logger.info(
        "LLM provider initialized",
        extra={"service": "providers", "provider": provider},
    )
    return instance


def _get_api_key_for_provider(provider: str) -> str | None:
    settings = get_settings()
    provider_key_mapping = {
        "openai": settings.llm_api_key,
        "groq": settings.groq_api_key,
    }
    return provider_key_mapping.get(provider) or None


def _get_provider_kwargs(provider: str) -> dict[str, Any]:
    settings = get_settings()
    if provider == "openai":
        return {
            "base_url": settings.llm_base_url,
            "model": settings.llm_model,
            "timeout": float(settings.provider_timeout_llm_seconds),
        }
    if provider == "groq":
        return {
            "model": settings.llm_model,
            "timeout": float(settings.provider_timeout_llm_seconds),
        }
    return {}


def _get_env_var_for_provider(provider: str) -> str:
    provider_env_mapping = {
        "openai": "LLM_API_KEY",
        "groq": "GROQ_API_KEY",
    }
    return provider_env_mapping.get(provider, f"{provider.upper()}_API_KEY")
