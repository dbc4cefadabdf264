"""UI event bus.

The orchestrator renders through the UiSink methods; EventBus fans each
call out to every connected SSE client as a (topic, payload) pair.
Slow clients whose queue fills up are dropped.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from jarvis.models import Message, MicState

logger = logging.getLogger(__name__)


class UiSink:
    """Render surface consumed by the orchestrator. Methods are no-ops here."""

    def render_state(self, state: MicState):
        pass

    def render_message(self, message: Message):
        pass

    def render_error(self, text: str):
        pass

    def render_notice(self, text: str):
        pass

    def render_cleared(self):
        pass

    def open_link(self, url: str) -> bool:
        """Ask the UI to open url in a new browsing context."""
        return False


class EventBus(UiSink):
    """UiSink that publishes to SSE subscribers."""

    def __init__(self, max_queue: int = 100):
        self._clients: List[asyncio.Queue] = []
        self._latest: Dict[str, Any] = {}
        self._max_queue = max_queue

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def publish(self, topic: str, payload: Any):
        self._latest[topic] = payload

        dead = []
        for q in self._clients:
            try:
                q.put_nowait((topic, payload))
            except asyncio.QueueFull:
                dead.append(q)
        for q in dead:
            logger.warning("Dropping slow event client")
            self.unsubscribe(q)

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._clients.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        try:
            self._clients.remove(q)
        except ValueError:
            pass

    def get_latest(self, topic: Optional[str] = None) -> Any:
        if topic:
            return self._latest.get(topic)
        return dict(self._latest)

    async def stream(self, heartbeat: float = 15.0):
        """Async generator of (topic, payload); ("heartbeat", None) when idle."""
        q = self.subscribe()
        try:
            while True:
                try:
                    item: Tuple[str, Any] = await asyncio.wait_for(q.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield "heartbeat", None
                    continue
                yield item
        finally:
            self.unsubscribe(q)

    # --- UiSink ---

    def render_state(self, state: MicState):
        self.publish("state", {"state": state.value})

    def render_message(self, message: Message):
        self.publish("message", message.to_dict())

    def render_error(self, text: str):
        self.publish("error", {"text": text})

    def render_notice(self, text: str):
        self.publish("notice", {"text": text})

    def render_cleared(self):
        self.publish("cleared", {})

    def open_link(self, url: str) -> bool:
        if not self._clients:
            return False
        self.publish("open_link", {"url": url})
        return True

    def command(self, name: str, **params):
        """Engine command for the page (recognition/synthesis/permission)."""
        self.publish("command", {"name": name, **params})
