"""Assistant orchestrator: sequences listening, requesting and speaking.

State machine:
    IDLE → (start) → LISTENING → (utterance) → PROCESSING →
    (reply or fallback) → SPEAKING → (speech done) → IDLE

A stop action returns to IDLE from any state. Only one mode is ever active:
every transition tears down the previous mode before entering the next,
and every asynchronous step re-checks its turn token after resuming so a
late network reply can never act on a turn the user already left.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Optional, Set

from jarvis.errors import (
    AssistantError,
    CompletionError,
    PermissionDenied,
    RecognitionUnsupported,
    SynthesisError,
)
from jarvis.events import UiSink
from jarvis.fallback import describe_error, fallback_reply
from jarvis.models import Message, MicState, ProviderId, Sender, Session, parse_language
from jarvis.postprocess import is_noise, process_reply
from jarvis.providers.base_provider import BaseProvider
from jarvis.speech_input import SpeechInputSession
from jarvis.speech_output import SpeechEvent, SpeechOutputSession
from jarvis.storage import StorageError
from jarvis.transcript import TranscriptStore

logger = logging.getLogger(__name__)

PROVIDER_KEY = "selected_model"
LANGUAGE_KEY = "jarvis_language"

PROVIDER_NAMES = {
    ProviderId.GEMINI: "Google Gemini",
    ProviderId.OPENAI: "OpenAI GPT",
    ProviderId.DEEPSEEK: "DeepSeek",
}


class AssistantEvent(Enum):
    STOP = auto()
    AUTO_STOP = auto()
    RECOGNITION_ENDED = auto()
    RECOGNITION_FAILED = auto()
    COMPLETION_OK = auto()
    COMPLETION_FAILED = auto()
    SPEECH_STARTED = auto()
    SPEECH_ENDED = auto()
    SPEECH_FAILED = auto()


@dataclass(frozen=True)
class ListeningPolicy:
    """When to arm the auto-stop timer on entering LISTENING.

    The user-start path and the restart path (listening again after a
    reply) are configured separately; seconds <= 0 disables the timer.
    """
    auto_stop_seconds: float = 10.0
    arm_on_start: bool = True
    arm_on_restart: bool = True
    listen_after_reply: bool = False

    def arms(self, restart: bool) -> bool:
        if self.auto_stop_seconds <= 0:
            return False
        return self.arm_on_restart if restart else self.arm_on_start


class Orchestrator:
    """Owns MicState. No other component may change it."""

    def __init__(
        self,
        session: Session,
        speech_in: SpeechInputSession,
        speech_out: SpeechOutputSession,
        transcript: TranscriptStore,
        providers: Dict[ProviderId, BaseProvider],
        ui: Optional[UiSink] = None,
        policy: Optional[ListeningPolicy] = None,
        preferences=None,
        ready_timeout: float = 5.0,
    ):
        self._session = session
        self._speech_in = speech_in
        self._speech_out = speech_out
        self._transcript = transcript
        self._providers = providers
        self._ui = ui or UiSink()
        self._policy = policy or ListeningPolicy()
        self._preferences = preferences
        self._ready_timeout = ready_timeout

        self._state = MicState.IDLE
        self._turn = 0
        self._starting = False
        self._requesting: Optional[int] = None
        self._enabled = True
        self._disabled_reason = ""
        self._tasks: Set[asyncio.Task] = set()

        speech_in.on_utterance = self._on_utterance
        speech_in.on_stopped = self._on_recognition_stopped
        speech_out.on_event = self._on_speech_event

    # --- read-only views ---

    @property
    def state(self) -> MicState:
        return self._state

    @property
    def session(self) -> Session:
        return self._session

    @property
    def transcript(self) -> TranscriptStore:
        return self._transcript

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def request_in_flight(self) -> bool:
        """True while the current turn awaits its completion."""
        return self._requesting is not None and self._requesting == self._turn

    def status(self) -> dict:
        return {
            "state": self._state.value,
            "provider": self._session.provider.value,
            "language": self._session.language,
            "enabled": self._enabled,
            "has_credential": self._session.has_credential,
        }

    # --- lifecycle ---

    async def start_up(self):
        """Wait for the speech engines, then restore history and preferences."""
        await self._check_engines()
        self._load_preferences()
        for message in self._transcript.load():
            self._safe_ui("render_message", message)
        self._announce_provider()
        self._safe_ui("render_state", self._state)

    async def refresh_engines(self):
        """Re-check the speech engines after the page (re)connects.

        A page that loads after start-up gave up waiting re-enables the mic;
        a reloaded page starts idle because its engines are new.
        """
        was_enabled = self._enabled
        self.stop()
        await self._check_engines()
        if self._enabled and not was_enabled:
            logger.info("Voice recognition available again")
            self._announce_provider()
        self._safe_ui("render_state", self._state)

    async def _check_engines(self):
        try:
            await self._speech_in.wait_ready(self._ready_timeout)
        except RecognitionUnsupported as exc:
            logger.error("Voice recognition unavailable: %s", exc)
            self._enabled = False
            self._disabled_reason = "Voice recognition not available. Please refresh the page."
            self._safe_ui("render_error", self._disabled_reason)
        else:
            self._enabled = True
            self._disabled_reason = ""

        try:
            await self._speech_out.wait_ready(self._ready_timeout)
        except SynthesisError as exc:
            logger.warning("Speech output unavailable: %s", exc)
            self._safe_ui("render_notice", "Speech output is not available; replies will be shown only.")

    async def close(self):
        self._dispatch(AssistantEvent.STOP)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def join(self):
        """Wait for background turns started by recognized speech."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- user actions ---

    async def mic_pressed(self):
        if not self._enabled:
            self._safe_ui("render_error", self._disabled_reason)
            return
        if self._state is MicState.IDLE and not self._starting:
            await self.start()
        else:
            logger.info("Mic pressed while %s: stopping", self._state.value)
            self.stop()

    async def start(self, restart: bool = False):
        """IDLE → LISTENING. A no-op in any other state."""
        if self._state is not MicState.IDLE or self._starting or not self._enabled:
            return

        self._starting = True
        turn = self._turn
        try:
            await self._speech_in.begin(self._session.language)
        except PermissionDenied as exc:
            logger.warning("Microphone permission denied")
            self._safe_ui("render_error", str(exc))
            return
        except AssistantError as exc:
            logger.error("Failed to start listening: %s", exc)
            self._safe_ui("render_error", str(exc))
            return
        finally:
            self._starting = False

        if turn != self._turn or self._state is not MicState.IDLE:
            # superseded while waiting for permission
            self._speech_in.end()
            return

        self._set_state(MicState.LISTENING)
        if self._policy.arms(restart):
            self._speech_in.arm_auto_stop(
                self._policy.auto_stop_seconds,
                lambda: self._dispatch(AssistantEvent.AUTO_STOP),
            )

    def stop(self):
        self._dispatch(AssistantEvent.STOP)

    async def submit(self, text: str, typed: bool = True, expected_turn: Optional[int] = None):
        """Run one turn for an utterance or typed submission.

        Noise never changes state. Anything else supersedes the active mode
        (barge-in), is recorded, sent to the active provider and answered
        aloud, with a fallback reply when the provider fails.
        """
        if is_noise(text):
            logger.info("Filtered noise input: %r", text)
            return
        if not typed and (expected_turn != self._turn or self._state is not MicState.LISTENING):
            logger.debug("Dropping utterance from a finished listening run")
            return

        text = text.strip()
        self._teardown()
        turn = self._turn

        self._append(Sender.USER, text)
        self._set_state(MicState.PROCESSING)

        session = self._session
        provider = self._providers[session.provider]
        config = provider.config(session.credential_for(session.provider))

        self._requesting = turn
        try:
            reply = await provider.complete(text, config, notify=self._notice_for(turn))
        except CompletionError as exc:
            logger.warning("Completion failed (%s): %s", type(exc).__name__, exc)
            self._finish_request(turn)
            self._dispatch(AssistantEvent.COMPLETION_FAILED, (turn, text, exc))
        else:
            self._finish_request(turn)
            self._dispatch(AssistantEvent.COMPLETION_OK, (turn, reply))

    async def select_provider(self, provider_id):
        provider = provider_id if isinstance(provider_id, ProviderId) else ProviderId.parse(provider_id)
        self._session = self._session.with_provider(provider)
        logger.info("Provider changed to: %s", provider.value)
        self._save_preference(PROVIDER_KEY, provider.value)
        self._announce_provider()

    async def select_language(self, language: str):
        language = parse_language(language)
        self._session = self._session.with_language(language)
        logger.info("Language changed to: %s", language)
        self._save_preference(LANGUAGE_KEY, language)
        if self._state is MicState.LISTENING:
            # restart recognition with the new language tag
            self.stop()
            await self.start()

    def clear_transcript(self):
        self.stop()
        self._transcript.clear()
        self._safe_ui("render_cleared")
        self._safe_ui("render_notice", "Chat history cleared")

    # --- transition function ---

    def _dispatch(self, event: AssistantEvent, payload=None):
        state = self._state
        logger.debug("Event %s in %s", event.name, state.value)

        if event is AssistantEvent.STOP:
            self._teardown()
            self._set_state(MicState.IDLE)

        elif event is AssistantEvent.AUTO_STOP:
            if state is MicState.LISTENING:
                self._teardown()
                self._set_state(MicState.IDLE)

        elif event is AssistantEvent.RECOGNITION_ENDED:
            if state is MicState.LISTENING:
                self._teardown()
                self._set_state(MicState.IDLE)

        elif event is AssistantEvent.RECOGNITION_FAILED:
            if state is MicState.LISTENING:
                self._teardown()
                self._set_state(MicState.IDLE)
                self._safe_ui("render_error", f"Voice recognition error: {payload}")

        elif event is AssistantEvent.COMPLETION_OK:
            turn, reply = payload
            if turn != self._turn or state is not MicState.PROCESSING:
                logger.info("Ignoring reply for abandoned turn %d", turn)
                return
            self._deliver_reply(reply)

        elif event is AssistantEvent.COMPLETION_FAILED:
            turn, text, error = payload
            if turn != self._turn or state is not MicState.PROCESSING:
                logger.info("Ignoring failure for abandoned turn %d", turn)
                return
            self._deliver_failure(text, error)

        elif event is AssistantEvent.SPEECH_STARTED:
            logger.debug("Speech started")

        elif event in (AssistantEvent.SPEECH_ENDED, AssistantEvent.SPEECH_FAILED):
            if state is not MicState.SPEAKING:
                return
            self._teardown()
            self._set_state(MicState.IDLE)
            if event is AssistantEvent.SPEECH_FAILED:
                self._safe_ui("render_error", f"Speech synthesis error: {payload}")
            elif self._policy.listen_after_reply and self._enabled:
                self._spawn(self.start(restart=True))

    # --- helpers ---

    def _teardown(self):
        """Release every resource of the current mode and invalidate its turn."""
        self._speech_out.stop()
        self._speech_in.end()
        self._turn += 1

    def _set_state(self, state: MicState):
        old = self._state
        self._state = state
        if old is not state:
            logger.info("Mic: %s → %s", old.value, state.value)
        self._safe_ui("render_state", state)

    def _finish_request(self, turn: int):
        if self._requesting == turn:
            self._requesting = None

    def _deliver_reply(self, text: str):
        reply = process_reply(text)
        self._append(Sender.ASSISTANT, reply.display)

        if reply.link:
            logger.info("Attempting to open URL: %s", reply.link)
            if not self._safe_ui("open_link", reply.link):
                self._safe_ui(
                    "render_notice",
                    f"Please allow popups for this site or manually visit: {reply.link}",
                )

        self._speak(reply.spoken)

    def _deliver_failure(self, text: str, error: CompletionError):
        provider = self._session.provider.value
        alternatives = [p.value for p in self._session.available_providers()]
        description = describe_error(error, provider, alternatives)
        self._append(Sender.SYSTEM, f"Error: {description}")
        self._safe_ui("render_error", description)
        self._speak(fallback_reply(error, text))

    def _speak(self, text: str):
        if not text:
            self._set_state(MicState.IDLE)
            return
        self._set_state(MicState.SPEAKING)
        try:
            self._speech_out.speak(text, self._session.language)
        except SynthesisError as exc:
            logger.error("Speech synthesis failed: %s", exc)
            if self._state is MicState.SPEAKING:
                self._set_state(MicState.IDLE)
            self._safe_ui("render_error", str(exc))

    def _append(self, sender: Sender, body: str):
        message = Message(sender=sender, body=body)
        self._transcript.append(message)
        self._safe_ui("render_message", message)

    def _notice_for(self, turn: int):
        def notify(text: str):
            if turn == self._turn:
                self._safe_ui("render_notice", text)
        return notify

    def _announce_provider(self):
        name = PROVIDER_NAMES[self._session.provider]
        if self._session.has_credential:
            self._safe_ui("render_notice", f"Ready with {name} - click microphone to start")
        else:
            logger.info("%s API key missing", self._session.provider.value)
            self._safe_ui("render_notice", f"API key required for {name}. Voice recognition available, AI responses disabled")

    def _load_preferences(self):
        if self._preferences is None:
            return
        try:
            provider = self._preferences.get(PROVIDER_KEY)
            language = self._preferences.get(LANGUAGE_KEY)
        except StorageError as exc:
            logger.warning("Preferences unavailable: %s", exc)
            return
        if provider:
            try:
                self._session = self._session.with_provider(ProviderId.parse(provider))
            except ValueError:
                logger.warning("Ignoring stored provider %r", provider)
        if language:
            try:
                self._session = self._session.with_language(parse_language(language))
            except ValueError:
                logger.warning("Ignoring stored language %r", language)

    def _save_preference(self, key: str, value: str):
        if self._preferences is None:
            return
        try:
            self._preferences.set(key, value)
        except StorageError as exc:
            logger.warning("Preference %s not persisted: %s", key, exc)

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _safe_ui(self, method: str, *args):
        try:
            return getattr(self._ui, method)(*args)
        except Exception as exc:
            logger.error("UI %s failed: %s", method, exc)
            return None

    # --- engine callbacks ---

    def _on_utterance(self, text: str):
        if is_noise(text):
            logger.info("Filtered noise input: %r", text)
            return
        self._spawn(self.submit(text, typed=False, expected_turn=self._turn))

    def _on_recognition_stopped(self, error: Optional[str]):
        if error is None:
            self._dispatch(AssistantEvent.RECOGNITION_ENDED)
        else:
            self._dispatch(AssistantEvent.RECOGNITION_FAILED, error)

    def _on_speech_event(self, event: SpeechEvent, detail: Optional[str]):
        if event is SpeechEvent.START:
            self._dispatch(AssistantEvent.SPEECH_STARTED)
        elif event is SpeechEvent.END:
            self._dispatch(AssistantEvent.SPEECH_ENDED)
        else:
            self._dispatch(AssistantEvent.SPEECH_FAILED, detail)
