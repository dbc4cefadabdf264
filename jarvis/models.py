"""Data models for the Jarvis voice assistant."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MicState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


class ProviderId(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    DEEPSEEK = "deepseek"

    @classmethod
    def parse(cls, value: str) -> "ProviderId":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise ValueError(
                f"Unsupported provider: '{value}'. "
                f"Supported providers are: {', '.join(p.value for p in cls)}"
            )


# Recognition/synthesis languages offered in the UI, by BCP-47 tag
LANGUAGES = {
    "en-US": "English",
    "tr-TR": "Türkçe",
}


def parse_language(tag: str) -> str:
    value = (tag or "").strip()
    if value not in LANGUAGES:
        raise ValueError(
            f"Unsupported language: '{tag}'. "
            f"Supported languages are: {', '.join(LANGUAGES)}"
        )
    return value


@dataclass(frozen=True)
class Message:
    """A single transcript entry."""
    sender: Sender
    body: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "sender": self.sender.value,
            "body": self.body,
            "timestamp": self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Message":
        return cls(
            sender=Sender(data["sender"]),
            body=str(data["body"]),
            timestamp=datetime.fromisoformat(data["timestamp"])
        )


@dataclass(frozen=True)
class ProviderConfig:
    """Endpoint and credential for one completion backend."""
    id: ProviderId
    endpoint: str
    model: str
    credential: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.credential)


@dataclass
class RateLimitWindow:
    """Client-side spacing between outbound requests (seconds)."""
    min_interval: float
    last_request: Optional[float] = None

    def remaining(self, now: float) -> float:
        if self.last_request is None:
            return 0.0
        return max(0.0, self.min_interval - (now - self.last_request))

    def reserve(self, now: float) -> float:
        """Claim the next send slot and return how long to wait for it.

        The slot is recorded before the caller sleeps, so overlapping
        callers queue up behind each other instead of waking together.
        """
        wait = self.remaining(now)
        self.last_request = now + wait
        return wait

    def stamp(self, now: float):
        """Record a send at now, never moving a reserved slot backwards."""
        if self.last_request is None or now > self.last_request:
            self.last_request = now


@dataclass(frozen=True)
class Session:
    """Immutable assistant configuration.

    Reselecting a provider or language produces a new Session; nothing
    holds a mutable reference to the active provider or language.
    """
    provider: ProviderId = ProviderId.GEMINI
    language: str = "en-US"
    credentials: Dict[ProviderId, Optional[str]] = field(default_factory=dict)

    def credential_for(self, provider: ProviderId) -> Optional[str]:
        return self.credentials.get(provider) or None

    @property
    def has_credential(self) -> bool:
        return self.credential_for(self.provider) is not None

    def available_providers(self):
        return [p for p in ProviderId if self.credential_for(p)]

    def with_provider(self, provider: ProviderId) -> "Session":
        return replace(self, provider=provider)

    def with_language(self, language: str) -> "Session":
        return replace(self, language=language)

    def with_credential(self, provider: ProviderId, credential: Optional[str]) -> "Session":
        credentials = dict(self.credentials)
        credentials[provider] = credential
        return replace(self, credentials=credentials)
