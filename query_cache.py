"""
Client-side cache of query results.

Results are stored under tuple keys such as ("products",) or
("user_profiles", user_id). Invalidating a key prefix marks every matching
entry stale; the next fetch_query call for a stale key re-runs its fetcher.
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

QueryKey = Tuple[Any, ...]


@dataclass
class QueryState:
    data: Any
    updated_at: float
    stale: bool = False


def _as_key(key) -> QueryKey:
    if isinstance(key, tuple):
        return key
    if isinstance(key, list):
        return tuple(key)
    return (key,)


class QueryClient:
    def __init__(self, stale_time: Optional[float] = None):
        # stale_time=None keeps results fresh until invalidated
        self.stale_time = stale_time
        self._lock = threading.RLock()
        self._queries: Dict[QueryKey, QueryState] = {}
        # bumped on every invalidation so a fetch running at the time can tell
        self._generations: Dict[QueryKey, int] = {}

    def _is_fresh(self, state: QueryState) -> bool:
        if state.stale:
            return False
        if self.stale_time is None:
            return True
        return time.monotonic() - state.updated_at < self.stale_time

    def fetch_query(self, key, fn: Callable[[], Any]):
        key = _as_key(key)
        with self._lock:
            state = self._queries.get(key)
            if state is not None and self._is_fresh(state):
                return state.data
            generation = self._generations.setdefault(key, 0)
        data = fn()
        with self._lock:
            self._queries[key] = QueryState(
                data=data,
                updated_at=time.monotonic(),
                stale=self._generations.get(key) != generation,
            )
        return data

    def get_query_data(self, key):
        with self._lock:
            state = self._queries.get(_as_key(key))
            return state.data if state else None

    def set_query_data(self, key, data):
        with self._lock:
            self._queries[_as_key(key)] = QueryState(data=data, updated_at=time.monotonic())

    def is_stale(self, key) -> bool:
        with self._lock:
            state = self._queries.get(_as_key(key))
            return state is None or not self._is_fresh(state)

    def invalidate_queries(self, prefix=()) -> int:
        prefix = _as_key(prefix)
        count = 0
        with self._lock:
            for key in self._generations:
                if key[: len(prefix)] == prefix:
                    self._generations[key] += 1
            for key, state in self._queries.items():
                if key[: len(prefix)] == prefix:
                    state.stale = True
                    count += 1
        return count

    def remove_queries(self, prefix=()):
        prefix = _as_key(prefix)
        with self._lock:
            for key in [k for k in self._queries if k[: len(prefix)] == prefix]:
                del self._queries[key]
                self._generations.pop(key, None)

    def clear(self):
        with self._lock:
            self._queries.clear()
            self._generations.clear()
