"""Thread-safe tab-scoped storage: one key/value namespace per (account, browser tab)."""
import threading
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from portal_access.config.settings import settings

logger = logging.getLogger(__name__)

ENTRY_INTENT_KEY = "scope_entry_intent"
LAST_VALID_SCOPE_KEY = "last_valid_scope"
LAST_VALID_PATH_KEY = "last_valid_path"
PREVIOUS_PATH_KEY = "previous_path"

ANONYMOUS_OWNER = ""


class TabStorage(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def pop(self, key: str) -> Optional[Any]:
        """Read then clear in one step"""
        ...


class InMemoryTabStorage:
    def __init__(self, lock: Optional[threading.Lock] = None):
        self._lock = lock or threading.Lock()
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class TabStorageRegistry:
    """
    (user_id, tab_id) -> InMemoryTabStorage.

    A tab id is only unique within one account, so two users sending the same
    X-Tab-Id never see each other's intent or scope history. A namespace dies
    with sign-out (drop_user) or after idle_seconds without use.
    """

    def __init__(self, idle_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._tabs: Dict[Tuple[str, str], Tuple[InMemoryTabStorage, float]] = {}
        self._idle = settings.tab_storage_idle_seconds if idle_seconds is None else idle_seconds
        self._clock = clock

    @staticmethod
    def _key(user_id: Optional[str], tab_id: str) -> Tuple[str, str]:
        return (user_id or ANONYMOUS_OWNER, tab_id)

    def for_tab(self, user_id: Optional[str], tab_id: str) -> InMemoryTabStorage:
        key = self._key(user_id, tab_id)
        now = self._clock()
        with self._lock:
            self._prune(now)
            entry = self._tabs.get(key)
            if entry is None:
                storage = InMemoryTabStorage()
                logger.debug(f"Created tab storage for {key[0]} on {tab_id}")
            else:
                storage = entry[0]
            self._tabs[key] = (storage, now)
            return storage

    def drop(self, user_id: Optional[str], tab_id: str) -> None:
        with self._lock:
            self._tabs.pop(self._key(user_id, tab_id), None)

    def drop_user(self, user_id: str) -> int:
        """Forget every tab of user_id; returns how many were dropped"""
        with self._lock:
            keys = [k for k in self._tabs if k[0] == user_id]
            for key in keys:
                del self._tabs[key]
        return len(keys)

    def _prune(self, now: float) -> None:
        stale = [k for k, (_, last_used) in self._tabs.items() if now - last_used >= self._idle]
        for key in stale:
            del self._tabs[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} idle tab storages")

    def __len__(self) -> int:
        with self._lock:
            return len(self._tabs)

    def clear(self) -> None:
        with self._lock:
            self._tabs.clear()


tab_storage_registry = TabStorageRegistry()
