# Kurzlebiger Cache für die komplette Türchen-Liste

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict

RESPONSE_CACHE_TTL = 10  # Sekunden


@dataclass(frozen=True)
class CachedListing:
    snapshot: Dict[Any, Any]
    created_at: float


class ResponseCache:
    """Hält die zuletzt berechnete Türchen-Liste für ``ttl`` Sekunden.

    Admin-Änderungen rufen ``invalidate`` erst auf, nachdem die Änderung
    gespeichert ist.
    """

    def __init__(self, ttl=RESPONSE_CACHE_TTL, clock=time.time):
        self.ttl = ttl
        self.clock = clock
        self._entry = None
        self._generation = 0
        self._lock = threading.Lock()

    def get(self):
        with self._lock:
            entry = self._entry
        if entry is None:
            return None
        if self.clock() - entry.created_at >= self.ttl:
            return None
        return entry

    @property
    def generation(self):
        return self._generation

    def put(self, snapshot, generation=None):
        """Speichert eine neue Liste.

        Wurde seit ``generation`` invalidiert, ist die Liste bereits veraltet
        und wird verworfen.
        """
        entry = CachedListing(snapshot=snapshot, created_at=self.clock())
        with self._lock:
            if generation is not None and generation != self._generation:
                return None
            self._entry = entry
        return entry

    def invalidate(self):
        with self._lock:
            self._entry = None
            self._generation += 1
