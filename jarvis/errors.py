"""Exception hierarchy for the assistant core.

Nothing here is fatal to the process: the orchestrator catches every
subclass at its boundary and turns it into a UI message.
"""

from typing import Optional


class AssistantError(Exception):
    """Base class for all assistant errors."""


class PermissionDenied(AssistantError):
    """Microphone access was refused."""


class RecognitionUnsupported(AssistantError):
    """No speech recognition engine is available."""


class RecognitionError(AssistantError):
    """The recognition engine failed to start or reported an error."""


class SynthesisError(AssistantError):
    """The synthesis engine failed to speak."""


class CompletionError(AssistantError):
    """Terminal failure of a completion request."""


class MissingCredential(CompletionError):
    def __init__(self, provider: str):
        super().__init__(f"No API key configured for {provider}")
        self.provider = provider


class RateLimited(CompletionError):
    def __init__(self, attempts: int):
        super().__init__(f"429 rate limit persisted after {attempts} attempts")
        self.attempts = attempts


class ProviderError(CompletionError):
    def __init__(self, status_code: int, reason: Optional[str] = None):
        message = f"API Error: {status_code}"
        if reason:
            message += f" {reason}"
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(CompletionError):
    """The response parsed but the reply field was missing."""


class TransportError(CompletionError):
    """No response was received."""
