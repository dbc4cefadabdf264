"""Locally produced replies used when no backend reply is available."""

import random
from typing import Iterable

from jarvis.errors import (
    CompletionError,
    MalformedResponse,
    MissingCredential,
    ProviderError,
    RateLimited,
    TransportError,
)

RATE_LIMIT_RESPONSES = [
    "I'm experiencing high API usage right now. Try asking me to 'open' a website or wait a moment for the AI to be available.",
    "API services are busy. I can still help you navigate to websites! Try saying 'open YouTube' or 'go to GitHub'.",
    "The AI service is temporarily overloaded. Please wait a moment and ask again.",
    "API rate limit reached. While we wait, you can use navigation commands like 'open [website name]'.",
]

NETWORK_RESPONSE = "I can't reach the AI service right now. Please check your internet connection and try again."
GENERIC_RESPONSE = "Sorry, I encountered an issue. Please try again in a moment."


def describe_error(error: CompletionError, provider: str, alternatives: Iterable[str] = ()) -> str:
    """Human-readable failure text for the transcript and error banner."""
    name = provider.upper()
    if isinstance(error, MissingCredential):
        return f"API key required for {provider} AI responses"
    if isinstance(error, RateLimited):
        message = (
            "API rate limit exceeded. Try switching to a different AI model "
            "or wait a few minutes before trying again."
        )
        others = [a.upper() for a in alternatives if a != provider]
        if others:
            message += f" Available alternatives: {', '.join(others)}"
        return message
    if isinstance(error, TransportError):
        return "Network error. Please check your internet connection."
    if isinstance(error, ProviderError):
        if error.status_code == 401:
            return f"{name} API key is invalid. Please check your configuration."
        if error.status_code == 403:
            return f"{name} API access forbidden. Check your API key permissions."
        if error.status_code == 400:
            return f"{name} API request error. Check API key and request format."
        return f"{name} {error}"
    if isinstance(error, MalformedResponse):
        return str(error)
    return str(error) or GENERIC_RESPONSE


def fallback_reply(error: CompletionError, user_text: str) -> str:
    """What to say aloud instead of the failed reply."""
    if isinstance(error, MissingCredential):
        return f"I heard you say: {user_text}. However, I need an API key to provide AI responses."
    if isinstance(error, RateLimited):
        return random.choice(RATE_LIMIT_RESPONSES)
    if isinstance(error, TransportError):
        return NETWORK_RESPONSE
    return GENERIC_RESPONSE
