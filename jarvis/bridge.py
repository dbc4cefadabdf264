"""Browser-hosted speech engines.

The page owns the real recognition and synthesis engines. The core drives
them with "command" events on the SSE stream and the page reports back
through the /engine/* endpoints, which land in BrowserBridge.report_*.
"""

import asyncio
import logging
import uuid
from typing import Dict, Optional

from jarvis.events import EventBus
from jarvis.speech_input import EngineEmit as RecognitionEmit, RecognitionEngine
from jarvis.speech_output import EngineEmit as SynthesisEmit, SynthesisEngine

logger = logging.getLogger(__name__)


class BrowserBridge:
    """Routes page reports to whichever engine call is waiting for them."""

    def __init__(self, bus: EventBus, permission_timeout: float = 30.0):
        self.bus = bus
        self.permission_timeout = permission_timeout
        self.capabilities = {"recognition": False, "synthesis": False}
        self._ready: Optional[asyncio.Event] = None
        self._permissions: Dict[str, asyncio.Future] = {}
        self._recognition_emit: Optional[RecognitionEmit] = None
        self._utterances: Dict[str, SynthesisEmit] = {}

    def _ready_event(self) -> asyncio.Event:
        if self._ready is None:
            self._ready = asyncio.Event()
        return self._ready

    async def wait_ready(self):
        await self._ready_event().wait()

    # --- page reports ---

    def report_ready(self, recognition: bool, synthesis: bool):
        self.capabilities = {"recognition": bool(recognition), "synthesis": bool(synthesis)}
        logger.info("Page engines ready: %s", self.capabilities)
        self._ready_event().set()

    def report_permission(self, request_id: str, granted: bool):
        fut = self._permissions.get(request_id)
        if fut is None or fut.done():
            logger.debug("Unknown or expired permission request %s", request_id)
            return
        fut.set_result(bool(granted))

    def report_recognition(self, kind: str, text: Optional[str] = None):
        emit = self._recognition_emit
        if emit is None:
            logger.debug("Recognition %s with no active run", kind)
            return
        if kind != "result":
            self._recognition_emit = None
        emit(kind, text)

    def report_synthesis(self, utterance_id: str, kind: str, detail: Optional[str] = None):
        emit = self._utterances.get(utterance_id)
        if emit is None:
            return
        if kind != "start":
            self._utterances.pop(utterance_id, None)
        emit(kind, detail)

    # --- engine side ---

    async def request_permission(self) -> bool:
        request_id = uuid.uuid4().hex
        fut = asyncio.get_running_loop().create_future()
        self._permissions[request_id] = fut
        self.bus.command("permission.request", id=request_id)
        try:
            return await asyncio.wait_for(fut, self.permission_timeout)
        except asyncio.TimeoutError:
            logger.warning("Microphone permission request timed out")
            return False
        finally:
            self._permissions.pop(request_id, None)


class BridgeRecognitionEngine(RecognitionEngine):
    def __init__(self, bridge: BrowserBridge):
        self._bridge = bridge

    async def ready(self) -> bool:
        await self._bridge.wait_ready()
        return self._bridge.capabilities["recognition"]

    async def request_permission(self) -> bool:
        return await self._bridge.request_permission()

    def start(self, language: str, emit: RecognitionEmit):
        self._bridge._recognition_emit = emit
        self._bridge.bus.command("recognition.start", language=language, continuous=True)

    def stop(self):
        self._bridge._recognition_emit = None
        self._bridge.bus.command("recognition.stop")


class BridgeSynthesisEngine(SynthesisEngine):
    def __init__(self, bridge: BrowserBridge):
        self._bridge = bridge

    async def ready(self) -> bool:
        await self._bridge.wait_ready()
        return self._bridge.capabilities["synthesis"]

    def speak(self, text: str, language: str, rate: float, pitch: float, emit: SynthesisEmit):
        utterance_id = uuid.uuid4().hex
        self._bridge._utterances[utterance_id] = emit
        self._bridge.bus.command(
            "synthesis.speak", id=utterance_id, text=text, language=language, rate=rate, pitch=pitch,
        )

    def cancel(self):
        self._bridge._utterances.clear()
        self._bridge.bus.command("synthesis.cancel")
