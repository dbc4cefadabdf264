import asyncio
import json
import time

import httpx
import pytest

from fakes import FakeClock, chat_reply, gemini_reply, make_provider, run
from jarvis.errors import (
    MalformedResponse,
    MissingCredential,
    ProviderError,
    RateLimited,
    TransportError,
)
from jarvis.models import ProviderId, RateLimitWindow
from jarvis.prompt import SYSTEM_PROMPT
from jarvis.providers import create_all, create_provider
from jarvis.providers.base_provider import backoff_delay
from jarvis.providers.deepseek import DeepSeekProvider
from jarvis.providers.gemini import GeminiProvider
from jarvis.providers.openai import OpenAIProvider


class Recorder:
    """MockTransport handler that replays canned responses."""

    def __init__(self, clock, *responses):
        self.clock = clock
        self.responses = list(responses)
        self.requests = []
        self.sent_at = []

    def __call__(self, request):
        self.requests.append(request)
        self.sent_at.append(self.clock())
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def complete(provider, text="hello", credential="key-123", notices=None):
    notify = notices.append if notices is not None else None
    return run(provider.complete(text, provider.config(credential), notify=notify))


# --- factory ---

def test_factory_builds_each_backend():
    assert isinstance(create_provider("gemini", min_interval_ms=0), GeminiProvider)
    assert isinstance(create_provider(ProviderId.OPENAI, min_interval_ms=0), OpenAIProvider)
    assert isinstance(create_provider("DeepSeek", min_interval_ms=0), DeepSeekProvider)


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError, match="Unsupported provider"):
        create_provider("claude")


def test_create_all_gives_each_backend_its_own_window():
    providers = create_all(min_interval_ms=3000)
    assert set(providers) == set(ProviderId)
    windows = {id(p.window) for p in providers.values()}
    assert len(windows) == 3


# --- wire contracts ---

def test_gemini_request_shape():
    clock = FakeClock()
    handler = Recorder(clock, gemini_reply("  Hi!  "))
    provider = make_provider(ProviderId.GEMINI, handler, clock)

    assert complete(provider, "what's up") == "Hi!"

    request = handler.requests[0]
    assert request.method == "POST"
    assert str(request.url) == (
        "https://generativelanguage.googleapis.com/v1beta/models/"
        f"{provider.model}:generateContent"
    )
    assert request.headers["x-goog-api-key"] == "key-123"
    assert "authorization" not in request.headers

    body = json.loads(request.content)
    assert body["contents"][0]["parts"][0]["text"] == SYSTEM_PROMPT + "\n\nUser: what's up"
    assert body["generationConfig"] == {
        "temperature": 0.7,
        "topK": 40,
        "topP": 0.95,
        "maxOutputTokens": 1024,
    }


@pytest.mark.parametrize("provider_id,url", [
    (ProviderId.OPENAI, "https://api.openai.com/v1/chat/completions"),
    (ProviderId.DEEPSEEK, "https://api.deepseek.com/chat/completions"),
])
def test_chat_completions_request_shape(provider_id, url):
    clock = FakeClock()
    handler = Recorder(clock, chat_reply("Sure thing."))
    provider = make_provider(provider_id, handler, clock)

    assert complete(provider, "open GitHub") == "Sure thing."

    request = handler.requests[0]
    assert str(request.url) == url
    assert request.headers["authorization"] == "Bearer key-123"

    body = json.loads(request.content)
    assert body["model"] == provider.model
    assert body["messages"] == [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "open GitHub"},
    ]
    assert body["max_tokens"] == 200
    assert body["temperature"] == 0.7
    assert body["stream"] is False


def test_model_override_changes_endpoint():
    provider = create_provider(ProviderId.GEMINI, model="gemini-pro", min_interval_ms=0)
    assert provider.config("k").endpoint.endswith("/models/gemini-pro:generateContent")


# --- throttling ---

def test_second_dispatch_waits_out_the_interval():
    clock = FakeClock()
    handler = Recorder(clock, gemini_reply("one"))
    provider = make_provider(ProviderId.GEMINI, handler, clock, min_interval_ms=3000)
    notices = []

    complete(provider, notices=notices)
    clock.now += 0.5
    complete(provider, notices=notices)

    first, second = handler.sent_at
    assert second >= first + 3.0
    assert clock.sleeps == [pytest.approx(2.5)]
    assert notices == ["Throttling requests to prevent rate limits. Waiting 3 seconds..."]


def test_overlapping_dispatches_are_spaced_out():
    sent_at = []

    def handler(request):
        sent_at.append(time.monotonic())
        return gemini_reply("ok")

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = create_provider(ProviderId.GEMINI, client=client, min_interval_ms=200)
        config = provider.config("key-123")

        await provider.complete("first", config)
        second = asyncio.ensure_future(provider.complete("second", config))
        await asyncio.sleep(0.05)
        third = asyncio.ensure_future(provider.complete("third", config))
        await asyncio.gather(second, third)
        await client.aclose()

    run(scenario())
    assert len(sent_at) == 3
    gaps = [later - earlier for earlier, later in zip(sent_at, sent_at[1:])]
    assert all(gap >= 0.19 for gap in gaps), gaps


def test_waiting_callers_each_get_their_own_slot():
    clock = FakeClock()
    window = RateLimitWindow(min_interval=3.0, last_request=clock())

    assert window.reserve(clock()) == 3.0
    assert window.reserve(clock()) == 6.0
    assert window.last_request == clock() + 6.0

    # a retry sent now must not pull the reserved slot back
    window.stamp(clock())
    assert window.last_request == clock() + 6.0


def test_no_wait_once_interval_has_passed():
    clock = FakeClock()
    handler = Recorder(clock, gemini_reply("one"))
    provider = make_provider(ProviderId.GEMINI, handler, clock, min_interval_ms=3000)
    notices = []

    complete(provider, notices=notices)
    clock.now += 3.0
    complete(provider, notices=notices)

    assert clock.sleeps == []
    assert notices == []


def test_failed_dispatch_still_counts_for_throttling():
    clock = FakeClock()
    handler = Recorder(clock, httpx.Response(500), gemini_reply("ok"))
    provider = make_provider(ProviderId.GEMINI, handler, clock, min_interval_ms=1000)

    with pytest.raises(ProviderError):
        complete(provider)
    complete(provider)

    assert handler.sent_at[1] >= handler.sent_at[0] + 1.0


# --- retries ---

def test_backoff_schedule():
    assert [backoff_delay(n) for n in range(4)] == [2, 4, 8, 8]


def test_rate_limited_three_times_then_success():
    clock = FakeClock()
    handler = Recorder(
        clock,
        httpx.Response(429), httpx.Response(429), httpx.Response(429),
        gemini_reply("Finally."),
    )
    provider = make_provider(ProviderId.GEMINI, handler, clock)
    notices = []

    assert complete(provider, notices=notices) == "Finally."
    assert len(handler.requests) == 4
    assert clock.sleeps == [2, 4, 8]
    assert notices == [
        "API rate limit reached. Retrying in 2 seconds...",
        "API rate limit reached. Retrying in 4 seconds...",
        "API rate limit reached. Retrying in 8 seconds...",
    ]


def test_fourth_rate_limit_is_terminal():
    clock = FakeClock()
    handler = Recorder(clock, httpx.Response(429))
    provider = make_provider(ProviderId.OPENAI, handler, clock)

    with pytest.raises(RateLimited) as exc_info:
        complete(provider)

    assert exc_info.value.attempts == 4
    assert len(handler.requests) == 4
    assert clock.sleeps == [2, 4, 8]


def test_retry_does_not_rethrottle():
    clock = FakeClock()
    handler = Recorder(clock, httpx.Response(429), gemini_reply("ok"))
    provider = make_provider(ProviderId.GEMINI, handler, clock, min_interval_ms=3000)
    notices = []

    complete(provider, notices=notices)

    assert clock.sleeps == [2]
    assert not any(n.startswith("Throttling") for n in notices)


# --- error mapping ---

@pytest.mark.parametrize("status", [400, 401, 403, 500, 503])
def test_other_statuses_are_provider_errors(status):
    clock = FakeClock()
    handler = Recorder(clock, httpx.Response(status))
    provider = make_provider(ProviderId.DEEPSEEK, handler, clock)

    with pytest.raises(ProviderError) as exc_info:
        complete(provider)

    assert exc_info.value.status_code == status
    assert str(exc_info.value).startswith(f"API Error: {status}")
    assert len(handler.requests) == 1


def test_non_json_body_is_malformed():
    clock = FakeClock()
    handler = Recorder(clock, httpx.Response(200, text="<html>oops</html>"))
    provider = make_provider(ProviderId.GEMINI, handler, clock)

    with pytest.raises(MalformedResponse):
        complete(provider)


@pytest.mark.parametrize("provider_id,body", [
    (ProviderId.GEMINI, {"candidates": []}),
    (ProviderId.GEMINI, {"candidates": [{"content": {"parts": [{"text": "   "}]}}]}),
    (ProviderId.OPENAI, {"choices": [{"message": {}}]}),
    (ProviderId.DEEPSEEK, {"error": "nope"}),
])
def test_missing_reply_field_is_malformed(provider_id, body):
    clock = FakeClock()
    handler = Recorder(clock, httpx.Response(200, json=body))
    provider = make_provider(provider_id, handler, clock)

    with pytest.raises(MalformedResponse, match="Invalid response format"):
        complete(provider)


def test_connection_failure_is_transport_error():
    clock = FakeClock()
    handler = Recorder(clock, httpx.ConnectError("connection refused"))
    provider = make_provider(ProviderId.OPENAI, handler, clock)

    with pytest.raises(TransportError):
        complete(provider)


def test_missing_credential_sends_nothing():
    clock = FakeClock()
    handler = Recorder(clock, gemini_reply("unused"))
    provider = make_provider(ProviderId.GEMINI, handler, clock)

    with pytest.raises(MissingCredential):
        complete(provider, credential=None)
    with pytest.raises(MissingCredential):
        complete(provider, credential="")

    assert handler.requests == []
    assert provider.window.last_request is None
