"""Random-chat session persistence.

A single ``random_chat_session`` record holds the transcript and state of an
in-progress random chat so a reload mid-conversation does not lose it. The
record is overwritten wholesale on every mutation and removed when the
session ends (leave, partner departure, terminal protocol error, logout).

Nothing here restores state on its own; callers decide whether to rehydrate.
"""
import logging
from typing import List, Optional

from pydantic import ValidationError

from whirl.random_chat.schemas import ChatEvent, RandomSessionSnapshot, RandomState
from whirl.storage.local_store import RANDOM_SESSION_KEY, LocalStore

logger = logging.getLogger(__name__)


class SessionPersistence:
    """Reads and writes the random-chat snapshot in a LocalStore."""

    def __init__(self, store: LocalStore, key: str = RANDOM_SESSION_KEY) -> None:
        self._store = store
        self._key = key

    def save(self, messages: List[ChatEvent], state: RandomState) -> None:
        """Overwrite the snapshot with the current transcript and state."""
        snapshot = RandomSessionSnapshot(messages=list(messages), randomState=state, hadChat=True)
        self._store.set(self._key, snapshot.model_dump(mode="json"))

    def load(self) -> Optional[RandomSessionSnapshot]:
        """Return the stored snapshot, or None if absent or corrupt."""
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            return RandomSessionSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"[Persistence] Dropping invalid random session snapshot: {e}")
            self.clear()
            return None

    def clear(self) -> None:
        self._store.remove(self._key)

    def exists(self) -> bool:
        return self._store.has(self._key)
