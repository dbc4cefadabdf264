"""Speech recognition session.

Wraps a recognition engine (a black box living in the browser or any other
host) behind begin/is_active/end, and owns the auto-stop timer.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from jarvis.errors import (
    AssistantError,
    PermissionDenied,
    RecognitionError,
    RecognitionUnsupported,
)

logger = logging.getLogger(__name__)

# Engine event kinds
RESULT = "result"
END = "end"
ERROR = "error"

EngineEmit = Callable[[str, Optional[str]], None]


class RecognitionEngine(ABC):
    """Abstract interface for recognition engines."""

    @abstractmethod
    async def ready(self) -> bool:
        """Resolve once the engine finished loading; False if unsupported."""
        pass

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for microphone access. Never cached by callers."""
        pass

    @abstractmethod
    def start(self, language: str, emit: EngineEmit):
        """Start recognizing until stop() is called.

        Args:
            language: BCP-47 tag, e.g. "en-US"
            emit: Callback(kind, payload) with kind "result" (payload is the
                utterance text), "end" or "error" (payload is the message)
        """
        pass

    @abstractmethod
    def stop(self):
        pass


class SpeechInputSession:
    """One recognition engine, one utterance callback, one auto-stop timer."""

    def __init__(self, engine: RecognitionEngine):
        self._engine = engine
        self._active = False
        self._generation = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self.on_utterance: Optional[Callable[[str], None]] = None
        self.on_stopped: Optional[Callable[[Optional[str]], None]] = None

    async def wait_ready(self, timeout: float):
        """Block until the engine is loaded.

        Raises:
            RecognitionUnsupported: Engine missing or not ready within timeout
        """
        try:
            supported = await asyncio.wait_for(self._engine.ready(), timeout)
        except asyncio.TimeoutError:
            raise RecognitionUnsupported(f"Speech recognition did not load within {timeout:g}s")
        if not supported:
            raise RecognitionUnsupported("Speech recognition is not supported by this browser")

    async def begin(self, language: str):
        """Obtain microphone permission, then start recognition.

        Raises:
            PermissionDenied: Microphone access refused
            RecognitionError: Engine failed to start
        """
        if self._active:
            return

        granted = await self._engine.request_permission()
        if not granted:
            raise PermissionDenied("Microphone access required. Please allow microphone access.")

        self._generation += 1
        generation = self._generation
        try:
            self._engine.start(language, lambda kind, payload=None: self._on_engine(generation, kind, payload))
        except AssistantError:
            raise
        except Exception as exc:
            raise RecognitionError(f"Failed to start voice recognition: {exc}") from exc
        self._active = True
        logger.info("Recognition started (%s)", language)

    def is_active(self) -> bool:
        return self._active

    def end(self):
        """Stop recognition and the auto-stop timer. Idempotent."""
        self.cancel_auto_stop()
        if not self._active:
            return
        self._active = False
        self._generation += 1
        self._engine.stop()
        logger.info("Recognition stopped")

    def arm_auto_stop(self, seconds: float, callback: Callable[[], None]):
        self.cancel_auto_stop()
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self._auto_stop, generation, callback)
        logger.debug("Auto-stop armed for %gs", seconds)

    def cancel_auto_stop(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _auto_stop(self, generation: int, callback: Callable[[], None]):
        self._timer = None
        if generation != self._generation or not self._active:
            return
        logger.info("Auto-stopping voice recognition")
        callback()

    def _on_engine(self, generation: int, kind: str, payload: Optional[str]):
        if generation != self._generation:
            return  # from a recognition run that was already ended

        if kind == RESULT:
            if self.on_utterance is not None:
                self.on_utterance(payload or "")
        elif kind in (END, ERROR):
            self._active = False
            self._generation += 1
            self.cancel_auto_stop()
            if kind == ERROR:
                logger.warning("Recognition error: %s", payload)
            if self.on_stopped is not None:
                self.on_stopped(payload if kind == ERROR else None)
        else:
            logger.debug("Ignoring recognition event %r", kind)
