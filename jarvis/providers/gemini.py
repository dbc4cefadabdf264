"""Google Gemini completion provider."""

from typing import Any, Dict

from jarvis.errors import MalformedResponse
from jarvis.models import ProviderId
from jarvis.prompt import build_prompt
from jarvis.providers.base_provider import BaseProvider, first_text

# Gemini Developer API (AI Studio) REST base
DEFAULT_GEMINI_BASE = "https://generativelanguage.googleapis.com"


class GeminiProvider(BaseProvider):
    """Gemini generateContent over REST."""

    provider_id = ProviderId.GEMINI
    label = "Gemini"

    def default_model(self) -> str:
        from jarvis.config import Config
        return Config.GEMINI_MODEL

    def endpoint(self) -> str:
        # Gemini REST: POST /v1beta/models/{model}:generateContent
        return f"{DEFAULT_GEMINI_BASE}/v1beta/models/{self.model}:generateContent"

    def build_headers(self, credential: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": credential,
        }

    def build_payload(self, text: str) -> Dict[str, Any]:
        # No system role here: the instruction is prepended to the user text
        return {
            "contents": [
                {"parts": [{"text": build_prompt(text)}]}
            ],
            "generationConfig": {
                "temperature": 0.7,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": 1024,
            },
        }

    def extract_reply(self, data: Any) -> str:
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse("Invalid response format from Gemini API") from exc
        return first_text(text, self.label)
