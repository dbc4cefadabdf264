"""DeepSeek completion provider (OpenAI-compatible)."""

from jarvis.models import ProviderId
from jarvis.providers.openai import OpenAIProvider


class DeepSeekProvider(OpenAIProvider):
    """DeepSeek /chat/completions."""

    provider_id = ProviderId.DEEPSEEK
    label = "DeepSeek"
    url = "https://api.deepseek.com/chat/completions"

    def default_model(self) -> str:
        from jarvis.config import Config
        return Config.DEEPSEEK_MODEL
