"""API key lookup: stored keys first, then the environment."""

import logging
from typing import Optional

from jarvis.config import Config
from jarvis.models import ProviderId, Session
from jarvis.storage import StorageError

logger = logging.getLogger(__name__)


def _key_name(provider: ProviderId) -> str:
    return f"{provider.value}_api_key"


class CredentialStore:
    """Resolve provider credentials. Absence is never an error."""

    def __init__(self, storage):
        self._storage = storage

    def credential_for(self, provider: ProviderId) -> Optional[str]:
        try:
            stored = self._storage.get(_key_name(provider))
        except StorageError as exc:
            logger.warning("Credential lookup failed for %s: %s", provider.value, exc)
            stored = None
        if stored and stored.strip():
            return stored.strip()
        return Config.credential_for(provider)

    def session(self, provider: ProviderId, language: str) -> Session:
        return Session(
            provider=provider,
            language=language,
            credentials={p: self.credential_for(p) for p in ProviderId},
        )
