# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
TTL Cache - expiring key/value cache over a pluggable backing store
"""
import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple

import pytz

import config

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(pytz.UTC)


class MemoryCacheStore:
    """Process-local store; entries live as long as the store object"""

    def __init__(self):
        self._entries: Dict[str, Tuple[Any, datetime]] = {}
        self._lock = Lock()

    def load(self, key: str) -> Optional[Tuple[Any, datetime]]:
        with self._lock:
            return self._entries.get(key)

    def save(self, key: str, value: Any, stored_at: datetime):
        with self._lock:
            self._entries[key] = (value, stored_at)

    def remove(self, key: str):
        with self._lock:
            self._entries.pop(key, None)


class TTLCache:
    """
    Expiring cache injected into the components that need one

    The backing store only needs ``load``, ``save`` and ``remove``; expiry is
    decided here so every store behaves the same.
    """

    def __init__(self, store=None, ttl_hours: Optional[float] = None,
                 clock: Callable[[], datetime] = _utc_now):
        self.store = store if store is not None else MemoryCacheStore()
        self.ttl = timedelta(hours=config.CACHE_TTL_HOURS if ttl_hours is None else ttl_hours)
        self.clock = clock

    def get(self, key: str) -> Optional[Any]:
        entry = self.store.load(key)
        if entry is None:
            return None

        value, stored_at = entry
        if self.clock() - stored_at > self.ttl:
            logger.debug(f"Cache entry expired: {key}")
            self.store.remove(key)
            return None
        return value

    def set(self, key: str, value: Any):
        self.store.save(key, value, self.clock())

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        """Return the cached value or call ``loader`` and cache a non-None result"""
        value = self.get(key)
        if value is not None:
            return value

        value = loader()
        if value is not None:
            self.set(key, value)
        return value
