from __future__ import annotations

import threading
import time
from typing import Any, Callable, Hashable, Optional


class RecordCache:
    """
    Small TTL cache for slow-changing lookups (POS locations, terminals).

    Pass an instance explicitly to whatever needs it; call `invalidate()` after
    writes to the underlying records. `None` results and loader errors are not cached.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._items: dict[Hashable, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, loader: Callable[[], Optional[Any]]) -> Optional[Any]:
        if key is None:
            return None
        now = self._clock()
        with self._lock:
            hit = self._items.get(key)
            if hit and hit[0] > now:
                return hit[1]
        value = loader()
        if value is not None:
            with self._lock:
                self._items[key] = (now + self._ttl, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._items.clear()
            else:
                self._items.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
