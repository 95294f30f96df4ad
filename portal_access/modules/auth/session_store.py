"""
Process-wide session store.

Holds one SessionSnapshot per access token with an explicit lifecycle:
refresh (sign-in, auth state change, profile or role mutation), invalidate
(profile edits, org switch), revoke (sign-out, idle or lifetime expiry),
subscribe (listeners are told about every transition, including the loading
state while a refresh is in flight).

A revoked token stays anonymous until it would have outlived the absolute
session lifetime; only a fresh sign-in (a new token) gets a session again.
Error snapshots are handed out but never cached.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from portal_access.config.settings import settings
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.auth.service import token_key

logger = logging.getLogger(__name__)

Listener = Callable[[str, SessionSnapshot], None]
Loader = Callable[[], SessionSnapshot]


class SessionStore:
    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        revocation_seconds: Optional[float] = None,
    ):
        self._lock = threading.Lock()
        self._entries: Dict[str, tuple] = {}
        self._refreshing: set = set()
        self._revoked: Dict[str, float] = {}
        self._preferred_org: Dict[str, str] = {}
        self._listeners: List[Listener] = []
        self._ttl = settings.session_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._revocation_ttl = (
            settings.absolute_session_hours * 3600 if revocation_seconds is None else revocation_seconds
        )
        self._clock = clock

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, key: str, snapshot: SessionSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key, snapshot)
            except Exception as e:
                logger.warning(f"Session listener failed: {e}")

    def _is_revoked(self, key: str, now: float) -> bool:
        expiry = self._revoked.get(key)
        if expiry is None:
            return False
        if now >= expiry:
            del self._revoked[key]
            return False
        return True

    def _prune(self, now: float) -> None:
        for key in [k for k, (_, expiry) in self._entries.items() if now >= expiry]:
            del self._entries[key]
        for key in [k for k, expiry in self._revoked.items() if now >= expiry]:
            del self._revoked[key]

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            return self._is_revoked(token_key(token), self._clock())

    def current(self, token: str) -> Optional[SessionSnapshot]:
        """Cached snapshot, a loading snapshot while refreshing, or None when absent/stale"""
        key = token_key(token)
        with self._lock:
            now = self._clock()
            if self._is_revoked(key, now):
                return SessionSnapshot.anonymous()
            if key in self._refreshing:
                return SessionSnapshot.loading()
            entry = self._entries.get(key)
            if entry is None:
                return None
            snapshot, expiry = entry
            if now >= expiry:
                del self._entries[key]
                return None
            return snapshot

    def refresh(self, token: str, loader: Loader) -> SessionSnapshot:
        key = token_key(token)
        with self._lock:
            if self._is_revoked(key, self._clock()):
                return SessionSnapshot.anonymous()
            self._refreshing.add(key)
        self._notify(key, SessionSnapshot.loading())
        try:
            snapshot = loader()
        finally:
            with self._lock:
                self._refreshing.discard(key)
        with self._lock:
            now = self._clock()
            self._prune(now)
            if snapshot.is_unavailable:
                self._entries.pop(key, None)
            elif len(self._entries) < settings.session_cache_max_size or key in self._entries:
                self._entries[key] = (snapshot, now + self._ttl)
        self._notify(key, snapshot)
        return snapshot

    def get_or_refresh(self, token: str, loader: Loader) -> SessionSnapshot:
        snapshot = self.current(token)
        if snapshot is not None:
            return snapshot
        return self.refresh(token, loader)

    def invalidate(self, token: str) -> None:
        key = token_key(token)
        with self._lock:
            self._entries.pop(key, None)
        self._notify(key, SessionSnapshot.anonymous())

    def invalidate_user(self, user_id: str) -> int:
        """Drop every snapshot belonging to user_id (profile edits, role grants)"""
        with self._lock:
            keys = [k for k, (snap, _) in self._entries.items() if snap.user_id == user_id]
            for k in keys:
                del self._entries[k]
        return len(keys)

    def revoke(self, token: str) -> None:
        """Sign the token out for good; it reads as anonymous from now on"""
        key = token_key(token)
        with self._lock:
            self._entries.pop(key, None)
            self._revoked[key] = self._clock() + self._revocation_ttl
        self._notify(key, SessionSnapshot.anonymous())

    def revoke_user(self, user_id: str, token: Optional[str] = None) -> int:
        """Revoke token and every cached token of user_id; returns how many were revoked"""
        with self._lock:
            keys = {k for k, (snap, _) in self._entries.items() if snap.user_id == user_id}
            if token:
                keys.add(token_key(token))
            expiry = self._clock() + self._revocation_ttl
            for key in keys:
                self._entries.pop(key, None)
                self._revoked[key] = expiry
            self._preferred_org.pop(user_id, None)
        for key in keys:
            self._notify(key, SessionSnapshot.anonymous())
        if keys:
            logger.info(f"Revoked {len(keys)} session token(s) for {user_id}")
        return len(keys)

    def preferred_org(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        with self._lock:
            return self._preferred_org.get(user_id)

    def set_preferred_org(self, user_id: str, org_id: str) -> None:
        with self._lock:
            self._preferred_org[user_id] = org_id
        self.invalidate_user(user_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._refreshing.clear()
            self._revoked.clear()
            self._preferred_org.clear()


session_store = SessionStore()
