"""
Cross-tab broadcast channel.

Tabs of one account share a channel; a published message reaches every
other subscriber of that channel, never the publishing tab itself.
"""
import threading
import logging
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from portal_access.config.settings import settings
from portal_access.modules.continuity.schemas import BroadcastMessage

logger = logging.getLogger(__name__)

Handler = Callable[[BroadcastMessage], None]


class BroadcastChannel(Protocol):
    def publish(self, message: BroadcastMessage) -> None:
        ...

    def subscribe(self, handler: Handler, tab_id: Optional[str] = None) -> Callable[[], None]:
        ...


class InMemoryBroadcastChannel:
    def __init__(self, name: str = "session-sync"):
        self.name = name
        self._lock = threading.Lock()
        self._subscribers: List[Tuple[Optional[str], Handler]] = []

    def subscribe(self, handler: Handler, tab_id: Optional[str] = None) -> Callable[[], None]:
        entry = (tab_id, handler)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)
        return unsubscribe

    def publish(self, message: BroadcastMessage) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for tab_id, handler in subscribers:
            if message.sender is not None and tab_id == message.sender:
                continue
            try:
                handler(message)
            except Exception as e:
                logger.warning(f"Broadcast handler on {self.name} failed for {message.type.value}: {e}")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class ChannelHub:
    """One channel per account, created on first use and dropped once no tab listens."""

    def __init__(self, idle_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._channels: Dict[str, Tuple[InMemoryBroadcastChannel, float]] = {}
        self._idle = settings.expired_guard_retention_seconds if idle_seconds is None else idle_seconds
        self._clock = clock

    def channel_for(self, user_id: str) -> InMemoryBroadcastChannel:
        now = self._clock()
        with self._lock:
            self._prune(now)
            entry = self._channels.get(user_id)
            channel = entry[0] if entry else InMemoryBroadcastChannel(f"session-sync:{user_id}")
            self._channels[user_id] = (channel, now)
            return channel

    def release(self, user_id: str) -> bool:
        """Drop the account's channel if no tab is subscribed any more"""
        with self._lock:
            entry = self._channels.get(user_id)
            if entry is None or entry[0].subscriber_count:
                return False
            del self._channels[user_id]
            return True

    def _prune(self, now: float) -> None:
        for user_id in [
            uid for uid, (channel, last_used) in self._channels.items()
            if not channel.subscriber_count and now - last_used >= self._idle
        ]:
            del self._channels[user_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def clear(self) -> None:
        with self._lock:
            self._channels.clear()


channel_hub = ChannelHub()
