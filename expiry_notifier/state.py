"""Persisted record of the last day a notification went out."""

import logging
from datetime import date
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

LAST_FIRED_DAY_KEY = "last_fired_day"


class KeyValueStore(Protocol):
    """Persisted string store provided by the host (one per device/profile)."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class NotificationStateStore:
    """
    Reads and writes ``lastFiredDay`` for daily deduplication.

    Not a lock: two processes sharing the same store can both read an old
    value and fire. Message tags let channels collapse such duplicates.
    """

    def __init__(self, store: KeyValueStore, key: str = LAST_FIRED_DAY_KEY):
        self.store = store
        self.key = key

    def get_last_fired_day(self) -> Optional[date]:
        raw = self.store.get(self.key)
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            logger.warning(f"Ignoring unparsable {self.key} value {raw!r}")
            return None

    def set_last_fired_day(self, day: date) -> None:
        self.store.set(self.key, day.isoformat())
        logger.debug(f"{self.key} set to {day.isoformat()}")

    def clear(self) -> None:
        self.store.delete(self.key)
