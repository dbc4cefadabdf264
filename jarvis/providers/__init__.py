"""Provider factory for the supported completion backends."""

from typing import Dict

from jarvis.models import ProviderId
from jarvis.providers.base_provider import BaseProvider


def create_provider(provider_id, **kwargs) -> BaseProvider:
    """Factory function to create a provider instance.

    Args:
        provider_id: ProviderId or its string value ("gemini", "openai", "deepseek")
        **kwargs: Passed through to the provider constructor

    Returns:
        BaseProvider instance

    Raises:
        ValueError: If provider_id is not supported
    """
    if not isinstance(provider_id, ProviderId):
        provider_id = ProviderId.parse(provider_id)

    if provider_id is ProviderId.GEMINI:
        from jarvis.providers.gemini import GeminiProvider
        return GeminiProvider(**kwargs)
    elif provider_id is ProviderId.OPENAI:
        from jarvis.providers.openai import OpenAIProvider
        return OpenAIProvider(**kwargs)
    else:
        from jarvis.providers.deepseek import DeepSeekProvider
        return DeepSeekProvider(**kwargs)


def create_all(**kwargs) -> Dict[ProviderId, BaseProvider]:
    """One provider per backend, sharing the same constructor arguments."""
    return {p: create_provider(p, **kwargs) for p in ProviderId}


__all__ = ["create_provider", "create_all", "BaseProvider"]
