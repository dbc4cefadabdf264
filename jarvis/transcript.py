"""Append-only transcript with write-through persistence."""

import json
import logging
from typing import List, Tuple

from jarvis.models import Message
from jarvis.storage import StorageError

logger = logging.getLogger(__name__)

TRANSCRIPT_KEY = "jarvis_chat_history"


class TranscriptStore:
    """Ordered message log persisted after every append.

    Storage failures are logged and the store keeps working in memory.
    """

    def __init__(self, storage, key: str = TRANSCRIPT_KEY):
        self._storage = storage
        self._key = key
        self._messages: List[Message] = []

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self):
        return len(self._messages)

    def append(self, message: Message):
        self._messages.append(message)
        self._persist()

    def load(self) -> List[Message]:
        """Restore the log from storage. Malformed data yields an empty history."""
        try:
            raw = self._storage.get(self._key)
        except StorageError as exc:
            logger.warning("Transcript load failed, starting empty: %s", exc)
            raw = None

        messages: List[Message] = []
        if raw:
            try:
                data = json.loads(raw)
                if not isinstance(data, list):
                    raise ValueError("transcript is not a list")
                messages = [Message.from_dict(item) for item in data]
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Ignoring malformed transcript: %s", exc)
                messages = []

        self._messages = messages
        return list(messages)

    def clear(self):
        self._messages = []
        try:
            self._storage.remove(self._key)
        except StorageError as exc:
            logger.warning("Transcript clear not persisted: %s", exc)

    def _persist(self):
        payload = json.dumps([m.to_dict() for m in self._messages])
        try:
            self._storage.set(self._key, payload)
        except StorageError as exc:
            logger.warning("Transcript append not persisted: %s", exc)
