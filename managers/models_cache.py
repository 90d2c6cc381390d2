"""Time-bounded cache of live provider model listings"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from models.requests import Provider

logger = logging.getLogger("ImageStudio")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class ModelsCache:
    """Per-provider model list cache.

    Entries are idempotent snapshots, so a refresh race simply keeps the last
    write. Reads may return a value another thread is about to replace.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Provider, Tuple[float, List[str]]] = {}
        self._lock = threading.Lock()

    def get(self, provider: Provider) -> Optional[List[str]]:
        provider = Provider.coerce(provider)
        entry = self._entries.get(provider)
        if entry is None:
            return None
        expires_at, models = entry
        if self._clock() >= expires_at:
            logger.debug(f"Model list cache for {provider.value} expired")
            with self._lock:
                if self._entries.get(provider) is entry:
                    del self._entries[provider]
            return None
        return list(models)

    def set(self, provider: Provider, models: List[str]):
        provider = Provider.coerce(provider)
        with self._lock:
            self._entries[provider] = (self._clock() + self.ttl_seconds, list(models))

    def invalidate(self, provider: Provider) -> bool:
        """Clear one provider's entry; other providers are untouched"""
        provider = Provider.coerce(provider)
        with self._lock:
            return self._entries.pop(provider, None) is not None
