"""Provider registry for self-registration of LLM providers.

Providers register themselves at import time, so the factory never needs
a hard-coded list of implementations.

Usage:
    from supermd.ai.providers.registry import register_llm_provider

    @register_llm_provider
    class GroqProvider(LLMProvider):
        name = "groq"
        ...
"""

from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from supermd.ai.providers.base import LLMProvider

LLM = TypeVar("LLM", bound="LLMProvider")

# Populated by the decorator at import time
_llm_registry: dict[str, type["LLMProvider"]] = {}


class ProviderRegistryError(Exception):
    """Base error for provider registry issues."""


class ProviderNotFoundError(ProviderRegistryError):
    """Raised when a requested provider is not registered."""


class DuplicateProviderError(ProviderRegistryError):
    """Raised when two providers claim the same name."""


def register_llm_provider(provider_class: type[LLM]) -> type[LLM]:
    """Register an LLM provider class under its ``name``.

    Raises:
        ProviderRegistryError: If the class has no string ``name``.
        DuplicateProviderError: If a provider with this name is already registered.
    """
    name = getattr(provider_class, "name", None)
    if not isinstance(name, str) or not name:
        raise ProviderRegistryError(
            f"Provider {provider_class.__name__} must define a non-empty string 'name'"
        )
    if name in _llm_registry:
        raise DuplicateProviderError(f"LLM provider '{name}' is already registered")
    _llm_registry[name] = provider_class
    return provider_class


def get_llm_provider_class(name: str) -> type["LLMProvider"]:
    """Look up a registered provider class.

    Raises:
        ProviderNotFoundError: If nothing is registered under ``name``.
    """
    try:
        return _llm_registry[name]
    except KeyError:
        registered = ", ".join(sorted(_llm_registry)) or "(none)"
        raise ProviderNotFoundError(
            f"Unknown LLM provider: '{name}'. Registered providers: {registered}"
        ) from None


def get_registered_llm_providers() -> dict[str, type["LLMProvider"]]:
    """Get a copy of the registered LLM providers."""
    return _llm_registry.copy()


def is_llm_provider_registered(name: str) -> bool:
    return name in _llm_registry
