"""Abstract base class for completion providers."""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from jarvis.errors import (
    MalformedResponse,
    MissingCredential,
    ProviderError,
    RateLimited,
    TransportError,
)
from jarvis.models import ProviderConfig, ProviderId, RateLimitWindow

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_BACKOFF_MS = 2000
MAX_BACKOFF_MS = 8000

NoticeFn = Callable[[str], None]
SleepFn = Callable[[float], Awaitable[Any]]


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before retry number ``attempt`` (0-based): 2, 4, 8."""
    return min(2 ** attempt * BASE_BACKOFF_MS, MAX_BACKOFF_MS) / 1000


class BaseProvider(ABC):
    """Shared dispatch path for all completion backends.

    Subclasses only shape the request and pick the reply out of the
    response body. Throttling, rate-limit retries and error mapping
    happen here so every provider behaves the same way.
    """

    provider_id: ProviderId
    label: str

    def __init__(
        self,
        model: Optional[str] = None,
        min_interval_ms: Optional[float] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the provider.

        Args:
            model: Model name (defaults to the Config value for this provider)
            min_interval_ms: Minimum spacing between requests
                (defaults to Config.MIN_REQUEST_INTERVAL_MS)
            timeout: Request timeout in seconds
            client: Shared httpx client; a short-lived one is opened per
                request when omitted
            sleep: Awaitable used for throttle and backoff waits
            clock: Monotonic time source in seconds
        """
        from jarvis.config import Config

        if min_interval_ms is None:
            min_interval_ms = Config.MIN_REQUEST_INTERVAL_MS
        self.model = model or self.default_model()
        self.timeout = timeout or Config.REQUEST_TIMEOUT_SECONDS
        self.window = RateLimitWindow(min_interval=min_interval_ms / 1000)
        self._client = client
        self._sleep = sleep
        self._clock = clock

    @abstractmethod
    def default_model(self) -> str:
        pass

    @abstractmethod
    def endpoint(self) -> str:
        pass

    @abstractmethod
    def build_headers(self, credential: str) -> Dict[str, str]:
        """Auth and content-type headers for one request."""
        pass

    @abstractmethod
    def build_payload(self, text: str) -> Dict[str, Any]:
        """JSON body carrying the system instruction and the user text."""
        pass

    @abstractmethod
    def extract_reply(self, data: Any) -> str:
        """Pull the reply text out of a parsed response body.

        Raises:
            MalformedResponse: The expected reply field is missing
        """
        pass

    def config(self, credential: Optional[str]) -> ProviderConfig:
        return ProviderConfig(
            id=self.provider_id,
            endpoint=self.endpoint(),
            model=self.model,
            credential=credential,
        )

    async def complete(self, text: str, config: ProviderConfig, notify: Optional[NoticeFn] = None) -> str:
        """Send text to the provider and return the reply.

        Args:
            text: User text
            config: Active provider configuration, including the credential
            notify: Receives user-visible throttle and retry notices

        Returns:
            Reply text, whitespace-trimmed

        Raises:
            MissingCredential, RateLimited, ProviderError,
            MalformedResponse, TransportError
        """
        if not config.credential:
            raise MissingCredential(self.label)

        await self._throttle(notify)

        attempt = 0
        while True:
            response = await self._send(text, config)

            if response.status_code == 429:
                if attempt < MAX_RETRIES:
                    delay = backoff_delay(attempt)
                    logger.warning(
                        "%s rate limited, retrying in %ss (attempt %d/%d)",
                        self.label, delay, attempt + 1, MAX_RETRIES,
                    )
                    _notify(notify, f"API rate limit reached. Retrying in {delay:.0f} seconds...")
                    await self._sleep(delay)
                    attempt += 1
                    continue
                raise RateLimited(attempts=attempt + 1)

            if not response.is_success:
                logger.error("%s API error: %s %s", self.label, response.status_code, response.reason_phrase)
                raise ProviderError(response.status_code, response.reason_phrase)

            try:
                data = response.json()
            except ValueError as exc:
                raise MalformedResponse(f"{self.label} returned a non-JSON body") from exc

            reply = self.extract_reply(data)
            logger.debug("%s reply: %s", self.label, reply[:80])
            return reply

    async def _throttle(self, notify: Optional[NoticeFn]):
        wait = self.window.reserve(self._clock())
        if wait <= 0:
            return
        logger.info("Throttling %s: waiting %.0fms before request", self.label, wait * 1000)
        _notify(
            notify,
            f"Throttling requests to prevent rate limits. Waiting {math.ceil(wait)} seconds...",
        )
        await self._sleep(wait)

    async def _send(self, text: str, config: ProviderConfig) -> httpx.Response:
        headers = self.build_headers(config.credential)
        payload = self.build_payload(text)
        self.window.stamp(self._clock())
        logger.debug("%s request starting (%s)", self.label, config.endpoint)

        try:
            if self._client is not None:
                return await self._client.post(config.endpoint, json=payload, headers=headers)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(config.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("%s connection failed: %s", self.label, exc)
            raise TransportError(f"Network error contacting {self.label}: {exc}") from exc


def _notify(notify: Optional[NoticeFn], text: str):
    if notify is not None:
        notify(text)


def first_text(value: Any, label: str) -> str:
    """Trimmed reply text, or MalformedResponse when it is absent."""
    if not isinstance(value, str) or not value.strip():
        raise MalformedResponse(f"Invalid response format from {label} API")
    return value.strip()
