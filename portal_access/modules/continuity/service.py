"""
Session continuity: idle warning, idle sign-out, absolute lifetime.

One SessionContinuityGuard runs per tab. Tabs of the same account share a
broadcast channel: activity in any tab keeps every tab alive, and a sign-out
in any tab signs every tab out without further user action.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from supabase import Client
from portal_access.config.route_policies import SIGN_IN_PATH
from portal_access.config.settings import settings
from portal_access.modules.audit.schemas import AuditAction, AuditLabel
from portal_access.modules.audit.service import AuditService
from portal_access.modules.continuity.broadcast import BroadcastChannel
from portal_access.modules.continuity.schemas import (
    BroadcastMessage,
    ContinuityState,
    ContinuityStatus,
    INACTIVITY_TIMEOUT_OPTIONS,
    LogoutReason,
    MessageType,
    SessionPreferences,
)
from portal_access.modules.scopes.schemas import NavigationCommand

logger = logging.getLogger(__name__)

POLICY_LABEL = "standard-8h-30m"

_SIGN_OUT_LABELS = {
    LogoutReason.IDLE: AuditLabel.SESSION_SIGNED_OUT_IDLE,
    LogoutReason.MAX_SESSION: AuditLabel.SESSION_SIGNED_OUT_MAX_DURATION,
    LogoutReason.SESSION_LIMIT: AuditLabel.SESSION_SIGNED_OUT_MAX_DURATION,
    LogoutReason.MANUAL: AuditLabel.SESSION_SIGNED_OUT_MANUAL,
}


def sign_in_redirect(reason: LogoutReason) -> str:
    # max-session is reported to the sign-in page as the session-limit reason
    param = LogoutReason.SESSION_LIMIT if reason == LogoutReason.MAX_SESSION else reason
    return f"{SIGN_IN_PATH}?reason={param.value}"


class PreferencesService:
    def __init__(self, supabase: Optional[Client]):
        self.supabase = supabase

    def get_preferences(self, user_id: str) -> SessionPreferences:
        """Read once at boot; any failure or out-of-range value falls back to defaults"""
        defaults = SessionPreferences(inactivity_timeout_minutes=settings.inactivity_timeout_minutes)
        if self.supabase is None:
            return defaults
        try:
            result = self.supabase.table("user_preferences")\
                .select("inactivity_timeout_minutes, session_guard_enabled, ui_density_mode")\
                .eq("user_id", user_id)\
                .maybe_single()\
                .execute()
        except Exception as e:
            logger.warning(f"Using default session preferences for {user_id}: {e}")
            return defaults
        if result is None or not result.data:
            return defaults
        row = result.data
        timeout = row.get("inactivity_timeout_minutes")
        if timeout not in INACTIVITY_TIMEOUT_OPTIONS:
            timeout = defaults.inactivity_timeout_minutes
        enabled = row.get("session_guard_enabled")
        density = row.get("ui_density_mode")
        return SessionPreferences(
            inactivity_timeout_minutes=timeout,
            session_guard_enabled=True if enabled is None else bool(enabled),
            ui_density_mode=density if density in ("comfortable", "compact") else "comfortable",
        )


class SessionContinuityGuard:
    def __init__(
        self,
        user_id: str,
        tab_id: str,
        channel: BroadcastChannel,
        preferences: Optional[SessionPreferences] = None,
        sign_out: Optional[Callable[[LogoutReason], None]] = None,
        audit: Optional[AuditService] = None,
        clock: Callable[[], float] = time.time,
        session_started_at: Optional[float] = None,
        signed_in_at: Optional[float] = None,
    ):
        preferences = preferences or SessionPreferences(
            inactivity_timeout_minutes=settings.inactivity_timeout_minutes
        )
        self.user_id = user_id
        self.tab_id = tab_id
        self.channel = channel
        self.preferences = preferences
        self.clock = clock
        self._sign_out = sign_out
        self.audit = audit
        self._lock = threading.RLock()

        now = clock()
        self.idle_timeout = preferences.inactivity_timeout_minutes * 60
        self.warning_lead = min(settings.warning_countdown_minutes * 60, self.idle_timeout)
        self.absolute_lifetime = settings.absolute_session_hours * 3600
        self.grace_period = settings.auth_grace_period_seconds
        self.session_started_at = session_started_at if session_started_at is not None else now
        self.signed_in_at = signed_in_at if signed_in_at is not None else self.session_started_at
        self.last_activity = now
        self.reason: Optional[LogoutReason] = None
        self.expired_at: Optional[float] = None
        self.state = ContinuityState.ACTIVE if preferences.session_guard_enabled else ContinuityState.DISABLED
        self._unsubscribe = channel.subscribe(self._on_message, tab_id)

    @property
    def show_warning(self) -> bool:
        return self.state == ContinuityState.WARNING

    def _monitoring(self) -> bool:
        return self.state in (ContinuityState.ACTIVE, ContinuityState.WARNING)

    def _publish(self, type_: MessageType, now: float, reason: Optional[LogoutReason] = None) -> None:
        self.channel.publish(BroadcastMessage(type=type_, timestamp=now, sender=self.tab_id, reason=reason))

    def mark_activity(self, now: Optional[float] = None) -> None:
        """Reset the idle clock; ignored while the warning is up (only extend_session clears it)."""
        now = self.clock() if now is None else now
        with self._lock:
            if self.state != ContinuityState.ACTIVE:
                return
            self.last_activity = max(self.last_activity, now)
        self._publish(MessageType.ACTIVITY, now)

    def extend_session(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        with self._lock:
            if not self._monitoring():
                return
            self.last_activity = now
            self.state = ContinuityState.ACTIVE
        self._publish(MessageType.EXTEND_SESSION, now)

    def tick(self, now: Optional[float] = None) -> Optional[NavigationCommand]:
        """Advance the state machine to wall-clock now; returns a redirect on expiry."""
        now = self.clock() if now is None else now
        with self._lock:
            if not self._monitoring():
                return None
            if now - self.session_started_at >= self.absolute_lifetime:
                reason = LogoutReason.MAX_SESSION
            elif now - self.signed_in_at < self.grace_period:
                return None
            elif now - self.last_activity >= self.idle_timeout:
                reason = LogoutReason.IDLE
            else:
                if now - self.last_activity >= self.idle_timeout - self.warning_lead and self.state == ContinuityState.ACTIVE:
                    self.state = ContinuityState.WARNING
                    logger.info(f"Idle warning shown to {self.user_id} on tab {self.tab_id}")
                    self._audit(AuditLabel.SESSION_WARNING_SHOWN, None)
                return None
        return self._expire(reason, now, broadcast=True)

    def sign_out(self, reason: LogoutReason = LogoutReason.MANUAL, now: Optional[float] = None) -> NavigationCommand:
        now = self.clock() if now is None else now
        command = self._expire(reason, now, broadcast=True)
        return command or NavigationCommand(path=sign_in_redirect(self.reason or reason), replace=True)

    def status(self, now: Optional[float] = None) -> ContinuityStatus:
        now = self.clock() if now is None else now
        with self._lock:
            remaining = None
            if self._monitoring():
                idle_left = self.idle_timeout - (now - self.last_activity)
                absolute_left = self.absolute_lifetime - (now - self.session_started_at)
                remaining = max(0, int(min(idle_left, absolute_left)))
            return ContinuityStatus(
                state=self.state,
                seconds_remaining=remaining,
                show_warning=self.show_warning,
                reason=self.reason,
                policy_label=POLICY_LABEL,
                redirect_to=sign_in_redirect(self.reason) if self.state == ContinuityState.EXPIRED else None,
            )

    def close(self) -> None:
        self._unsubscribe()

    def _expire(self, reason: LogoutReason, now: float, broadcast: bool) -> Optional[NavigationCommand]:
        with self._lock:
            if self.state in (ContinuityState.EXPIRED, ContinuityState.INACTIVE):
                return None
            self.state = ContinuityState.EXPIRED
            self.reason = reason
            self.expired_at = now
        logger.info(f"Signing out {self.user_id} on tab {self.tab_id}: {reason.value}")
        if broadcast:
            self._publish(MessageType.LOGOUT, now, reason)
            self._audit(_SIGN_OUT_LABELS[reason], reason)
        if self._sign_out is not None:
            try:
                self._sign_out(reason)
            except Exception as e:
                logger.error(f"Sign-out callback failed for {self.user_id}: {e}")
        self.close()
        return NavigationCommand(path=sign_in_redirect(reason), replace=True)

    def _on_message(self, message: BroadcastMessage) -> None:
        if message.type == MessageType.LOGOUT:
            self._expire(message.reason or LogoutReason.MANUAL, message.timestamp, broadcast=False)
            return
        with self._lock:
            if not self._monitoring():
                return
            if message.type == MessageType.ACTIVITY and self.state == ContinuityState.ACTIVE:
                self.last_activity = max(self.last_activity, message.timestamp)
            elif message.type == MessageType.EXTEND_SESSION:
                self.last_activity = max(self.last_activity, message.timestamp)
                self.state = ContinuityState.ACTIVE

    def _audit(self, label: AuditLabel, reason: Optional[LogoutReason]) -> None:
        if self.audit is None:
            return
        details = {"policy": POLICY_LABEL, "tab_id": self.tab_id}
        if reason is not None:
            details["reason"] = reason.value
        self.audit.record(
            AuditAction.LOGOUT,
            label.value,
            record_type="session",
            record_id=self.user_id,
            details=details,
        )


class ContinuityRegistry:
    """
    (user_id, tab_id) -> SessionContinuityGuard for the HTTP layer.

    An expired guard is kept for retention_seconds so the tab can still read
    why it was signed out; a guard idle for longer than the absolute lifetime
    belongs to an abandoned tab. Both are pruned whenever a guard is created.
    """

    def __init__(self, retention_seconds: Optional[float] = None):
        self._lock = threading.RLock()
        self._guards: Dict[Tuple[str, str], SessionContinuityGuard] = {}
        self._retention = settings.expired_guard_retention_seconds if retention_seconds is None else retention_seconds

    def get(self, user_id: str, tab_id: str) -> Optional[SessionContinuityGuard]:
        with self._lock:
            return self._guards.get((user_id, tab_id))

    def session_started_at(self, user_id: str) -> Optional[float]:
        """Start of the account session as seen by its oldest tab"""
        with self._lock:
            starts = [g.session_started_at for (uid, _), g in self._guards.items() if uid == user_id]
        return min(starts) if starts else None

    def get_or_create(self, user_id: str, tab_id: str, factory: Callable[[], SessionContinuityGuard]) -> SessionContinuityGuard:
        with self._lock:
            guard = self._guards.get((user_id, tab_id))
            if guard is None:
                self._prune()
                guard = factory()
                self._guards[(user_id, tab_id)] = guard
            return guard

    def _is_stale(self, guard: SessionContinuityGuard) -> bool:
        now = guard.clock()
        if guard.expired_at is not None:
            return now - guard.expired_at >= self._retention
        return now - guard.last_activity >= guard.absolute_lifetime

    def _prune(self) -> None:
        stale = [key for key, guard in self._guards.items() if self._is_stale(guard)]
        for key in stale:
            self._guards.pop(key).close()
        if stale:
            logger.debug(f"Pruned {len(stale)} continuity guards")

    def __len__(self) -> int:
        with self._lock:
            return len(self._guards)

    def drop_user(self, user_id: str) -> None:
        """Forget every tab of user_id; the next request starts a fresh guard"""
        with self._lock:
            for key in [k for k in self._guards if k[0] == user_id]:
                self._guards.pop(key).close()

    def clear(self) -> None:
        with self._lock:
            for guard in self._guards.values():
                guard.close()
            self._guards.clear()


continuity_registry = ContinuityRegistry()
