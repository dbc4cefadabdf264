"""Speech synthesis session: one voice at a time."""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from jarvis.errors import AssistantError, SynthesisError

logger = logging.getLogger(__name__)

SPEECH_RATE = 0.8
SPEECH_PITCH = 1.0


class SpeechEvent(Enum):
    START = "start"
    END = "end"
    ERROR = "error"


EngineEmit = Callable[[str, Optional[str]], None]


class SynthesisEngine(ABC):
    """Abstract interface for synthesis engines."""

    @abstractmethod
    async def ready(self) -> bool:
        pass

    @abstractmethod
    def speak(self, text: str, language: str, rate: float, pitch: float, emit: EngineEmit):
        """Start speaking one utterance.

        Args:
            emit: Callback(kind, detail) with kind "start", "end" or "error"
        """
        pass

    @abstractmethod
    def cancel(self):
        pass


class SpeechOutputSession:
    """Serial speech: speak() always cancels the current utterance first.

    Lifecycle events are forwarded only for the current utterance, so a
    cancelled utterance's late "end" never reaches the listener.
    """

    def __init__(self, engine: SynthesisEngine, rate: float = SPEECH_RATE, pitch: float = SPEECH_PITCH):
        self._engine = engine
        self._rate = rate
        self._pitch = pitch
        self._next_id = 0
        self._current: Optional[int] = None
        self.on_event: Optional[Callable[[SpeechEvent, Optional[str]], None]] = None

    async def wait_ready(self, timeout: float):
        try:
            supported = await asyncio.wait_for(self._engine.ready(), timeout)
        except asyncio.TimeoutError:
            raise SynthesisError(f"Speech synthesis did not load within {timeout:g}s")
        if not supported:
            raise SynthesisError("Speech synthesis is not supported by this browser")

    def is_active(self) -> bool:
        return self._current is not None

    def speak(self, text: str, language: str) -> int:
        """Cancel any current utterance and speak text.

        Raises:
            SynthesisError: The engine refused the utterance
        """
        self.stop()
        self._next_id += 1
        utterance_id = self._next_id
        self._current = utterance_id
        try:
            self._engine.speak(
                text, language, self._rate, self._pitch,
                lambda kind, detail=None: self._on_engine(utterance_id, kind, detail),
            )
        except AssistantError:
            if self._current == utterance_id:
                self._current = None
            raise
        except Exception as exc:
            if self._current == utterance_id:
                self._current = None
            raise SynthesisError(f"Speech synthesis failed: {exc}") from exc
        return utterance_id

    def stop(self):
        """Cancel immediately. Idempotent."""
        if self._current is None:
            return
        self._current = None
        self._engine.cancel()
        logger.info("Speech cancelled")

    def _on_engine(self, utterance_id: int, kind: str, detail: Optional[str]):
        if utterance_id != self._current:
            return
        try:
            event = SpeechEvent(kind)
        except ValueError:
            logger.debug("Ignoring synthesis event %r", kind)
            return
        if event is not SpeechEvent.START:
            self._current = None
        if event is SpeechEvent.ERROR:
            logger.warning("Speech synthesis error: %s", detail)
        if self.on_event is not None:
            self.on_event(event, detail)
