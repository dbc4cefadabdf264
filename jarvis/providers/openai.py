"""OpenAI chat-completions provider.

DeepSeek speaks the same wire format, so its provider subclasses this one.
"""

from typing import Any, Dict

from jarvis.errors import MalformedResponse
from jarvis.models import ProviderId
from jarvis.prompt import build_messages
from jarvis.providers.base_provider import BaseProvider, first_text


class OpenAIProvider(BaseProvider):
    """OpenAI /v1/chat/completions."""

    provider_id = ProviderId.OPENAI
    label = "OpenAI"
    url = "https://api.openai.com/v1/chat/completions"

    def default_model(self) -> str:
        from jarvis.config import Config
        return Config.OPENAI_MODEL

    def endpoint(self) -> str:
        return self.url

    def build_headers(self, credential: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {credential}",
        }

    def build_payload(self, text: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": build_messages(text),
            "max_tokens": 200,
            "temperature": 0.7,
            "stream": False,
        }

    def extract_reply(self, data: Any) -> str:
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse(f"Invalid response format from {self.label} API") from exc
        return first_text(text, self.label)
