"""
Tests for Session Continuity
============================

Idle warning and sign-out, absolute lifetime, the post sign-in grace period,
per-user preferences and cross-tab synchronisation over the broadcast channel.
"""

from unittest.mock import MagicMock

import pytest

from portal_access.modules.audit.schemas import AuditAction, AuditLabel
from portal_access.modules.continuity.broadcast import ChannelHub, InMemoryBroadcastChannel
from portal_access.modules.continuity.schemas import (
    BroadcastMessage,
    ContinuityState,
    LogoutReason,
    MessageType,
    SessionPreferences,
)
from portal_access.modules.continuity.service import (
    ContinuityRegistry,
    PreferencesService,
    SessionContinuityGuard,
    sign_in_redirect,
)

IDLE = 30 * 60
WARNING_AT = IDLE - 120


@pytest.fixture
def channel():
    return InMemoryBroadcastChannel("session-sync:user-1")


def make_guard(channel, clock, tab_id="tab-a", **kwargs):
    kwargs.setdefault("sign_out", MagicMock())
    kwargs.setdefault("audit", MagicMock())
    # Tests start past the post sign-in grace period unless they say otherwise
    kwargs.setdefault("signed_in_at", clock() - 3600)
    return SessionContinuityGuard("user-1", tab_id, channel, clock=clock, **kwargs)


class TestSignInRedirect:
    def test_idle(self):
        assert sign_in_redirect(LogoutReason.IDLE) == "/auth/sign-in?reason=idle"

    def test_max_session_is_reported_as_session_limit(self):
        assert sign_in_redirect(LogoutReason.MAX_SESSION) == "/auth/sign-in?reason=session-limit"


class TestIdleTimeout:
    def test_warning_before_expiry(self, channel, clock):
        guard = make_guard(channel, clock)
        clock.advance(WARNING_AT - 1)
        assert guard.tick() is None
        assert guard.state == ContinuityState.ACTIVE

        clock.advance(1)
        assert guard.tick() is None
        assert guard.show_warning
        guard.audit.record.assert_called_once()
        args, kwargs = guard.audit.record.call_args
        assert args == (AuditAction.LOGOUT, AuditLabel.SESSION_WARNING_SHOWN.value)
        assert kwargs["record_type"] == "session"

    def test_expiry_signs_out_and_redirects(self, channel, clock):
        guard = make_guard(channel, clock)
        clock.advance(IDLE)
        command = guard.tick()
        assert command.path == "/auth/sign-in?reason=idle"
        assert command.replace
        assert guard.state == ContinuityState.EXPIRED
        guard._sign_out.assert_called_once_with(LogoutReason.IDLE)

    def test_activity_resets_idle_clock(self, channel, clock):
        guard = make_guard(channel, clock)
        clock.advance(1000)
        guard.mark_activity()
        clock.advance(WARNING_AT - 1)
        guard.tick()
        assert guard.state == ContinuityState.ACTIVE

    def test_activity_is_ignored_while_warning_is_shown(self, channel, clock):
        guard = make_guard(channel, clock)
        clock.advance(WARNING_AT)
        guard.tick()
        guard.mark_activity()
        clock.advance(120)
        assert guard.tick().path == "/auth/sign-in?reason=idle"

    def test_extend_session_clears_the_warning(self, channel, clock):
        guard = make_guard(channel, clock)
        clock.advance(WARNING_AT)
        guard.tick()
        guard.extend_session()
        assert guard.state == ContinuityState.ACTIVE
        clock.advance(WARNING_AT - 1)
        assert guard.tick() is None
        assert not guard.show_warning

    def test_custom_timeout_from_preferences(self, channel, clock):
        guard = make_guard(channel, clock, preferences=SessionPreferences(inactivity_timeout_minutes=15))
        clock.advance(15 * 60)
        assert guard.tick().path == "/auth/sign-in?reason=idle"


class TestAbsoluteLifetime:
    def test_expires_regardless_of_activity(self, channel, clock):
        guard = make_guard(channel, clock, session_started_at=clock() - 8 * 3600 + 10)
        guard.mark_activity()
        assert guard.tick() is None
        clock.advance(10)
        command = guard.tick()
        assert command.path == "/auth/sign-in?reason=session-limit"
        assert guard.reason == LogoutReason.MAX_SESSION

    def test_applies_during_grace_period(self, channel, clock):
        guard = make_guard(channel, clock, session_started_at=clock() - 8 * 3600, signed_in_at=clock())
        assert guard.tick().path == "/auth/sign-in?reason=session-limit"


class TestGracePeriod:
    def test_no_idle_expiry_right_after_sign_in(self, channel, clock):
        guard = make_guard(channel, clock, signed_in_at=clock())
        guard.last_activity = clock() - 2 * IDLE
        assert guard.tick() is None
        clock.advance(60)
        assert guard.tick().path == "/auth/sign-in?reason=idle"


class TestDisabledGuard:
    def test_disabled_never_expires(self, channel, clock):
        guard = make_guard(channel, clock, preferences=SessionPreferences(session_guard_enabled=False))
        assert guard.state == ContinuityState.DISABLED
        clock.advance(10 * IDLE)
        assert guard.tick() is None
        status = guard.status()
        assert status.seconds_remaining is None
        assert status.policy_label == "standard-8h-30m"


class TestStatus:
    def test_seconds_remaining(self, channel, clock):
        guard = make_guard(channel, clock)
        clock.advance(100)
        status = guard.status()
        assert status.state == ContinuityState.ACTIVE
        assert status.seconds_remaining == IDLE - 100
        assert status.redirect_to is None

    def test_expired_status_carries_redirect(self, channel, clock):
        guard = make_guard(channel, clock)
        guard.sign_out()
        status = guard.status()
        assert status.state == ContinuityState.EXPIRED
        assert status.redirect_to == "/auth/sign-in?reason=manual"


class TestCrossTab:
    def test_sign_out_in_one_tab_signs_out_the_other(self, channel, clock):
        tab_a = make_guard(channel, clock, tab_id="tab-a")
        tab_b = make_guard(channel, clock, tab_id="tab-b")

        tab_a.sign_out()

        assert tab_b.state == ContinuityState.EXPIRED
        tab_b._sign_out.assert_called_once_with(LogoutReason.MANUAL)
        # only the originating tab writes the audit row
        tab_a.audit.record.assert_called_once()
        tab_b.audit.record.assert_not_called()
        assert channel.subscriber_count == 0

    def test_idle_expiry_propagates_reason(self, channel, clock):
        tab_a = make_guard(channel, clock, tab_id="tab-a")
        tab_b = make_guard(channel, clock, tab_id="tab-b")
        clock.advance(IDLE)
        tab_a.tick()
        assert tab_b.reason == LogoutReason.IDLE
        assert tab_b.status().redirect_to == "/auth/sign-in?reason=idle"

    def test_activity_in_one_tab_keeps_the_other_alive(self, channel, clock):
        tab_a = make_guard(channel, clock, tab_id="tab-a")
        tab_b = make_guard(channel, clock, tab_id="tab-b")
        clock.advance(1500)
        tab_a.mark_activity()
        clock.advance(1500)
        assert tab_b.tick() is None
        assert tab_b.state == ContinuityState.ACTIVE

    def test_extend_in_one_tab_clears_warning_in_the_other(self, channel, clock):
        tab_a = make_guard(channel, clock, tab_id="tab-a")
        tab_b = make_guard(channel, clock, tab_id="tab-b")
        clock.advance(WARNING_AT)
        tab_a.tick()
        tab_b.tick()
        tab_a.extend_session()
        assert tab_b.state == ContinuityState.ACTIVE

    def test_sign_out_callback_failure_is_contained(self, channel, clock):
        guard = make_guard(channel, clock, sign_out=MagicMock(side_effect=RuntimeError("auth down")))
        command = guard.sign_out()
        assert command.path == "/auth/sign-in?reason=manual"
        assert guard.state == ContinuityState.EXPIRED


class TestBroadcastChannel:
    def test_sender_does_not_receive_its_own_message(self, channel):
        own, other = MagicMock(), MagicMock()
        channel.subscribe(own, "tab-a")
        channel.subscribe(other, "tab-b")
        message = BroadcastMessage(type=MessageType.ACTIVITY, timestamp=1.0, sender="tab-a")
        channel.publish(message)
        own.assert_not_called()
        other.assert_called_once_with(message)

    def test_failing_handler_does_not_stop_delivery(self, channel):
        broken = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        channel.subscribe(broken, "tab-b")
        channel.subscribe(healthy, "tab-c")
        channel.publish(BroadcastMessage(type=MessageType.LOGOUT, timestamp=1.0, sender="tab-a"))
        healthy.assert_called_once()

    def test_unsubscribe(self, channel):
        unsubscribe = channel.subscribe(MagicMock(), "tab-a")
        assert channel.subscriber_count == 1
        unsubscribe()
        unsubscribe()
        assert channel.subscriber_count == 0

    def test_hub_gives_one_channel_per_account(self):
        hub = ChannelHub()
        assert hub.channel_for("user-1") is hub.channel_for("user-1")
        assert hub.channel_for("user-1") is not hub.channel_for("user-2")

    def test_unused_channels_are_pruned(self, clock):
        hub = ChannelHub(idle_seconds=60, clock=clock)
        listened = hub.channel_for("user-1")
        listened.subscribe(MagicMock(), "tab-a")
        hub.channel_for("user-2")
        clock.advance(60)
        hub.channel_for("user-3")
        assert len(hub) == 2
        assert hub.channel_for("user-1") is listened

    def test_release_only_drops_silent_channels(self):
        hub = ChannelHub()
        unsubscribe = hub.channel_for("user-1").subscribe(MagicMock(), "tab-a")
        assert not hub.release("user-1")
        unsubscribe()
        assert hub.release("user-1")
        assert len(hub) == 0


class TestContinuityRegistry:
    def test_get_or_create_reuses_guard(self, channel, clock):
        registry = ContinuityRegistry()
        factory = MagicMock(side_effect=lambda: make_guard(channel, clock))
        first = registry.get_or_create("user-1", "tab-a", factory)
        second = registry.get_or_create("user-1", "tab-a", factory)
        assert first is second
        factory.assert_called_once()

    def test_expired_guard_stays_visible(self, channel, clock):
        registry = ContinuityRegistry()
        guard = registry.get_or_create("user-1", "tab-a", lambda: make_guard(channel, clock))
        guard.sign_out()
        assert registry.get_or_create("user-1", "tab-a", MagicMock()).state == ContinuityState.EXPIRED

    def test_session_started_at_is_oldest_tab(self, channel, clock):
        registry = ContinuityRegistry()
        registry.get_or_create("user-1", "tab-a", lambda: make_guard(channel, clock, session_started_at=100.0))
        registry.get_or_create("user-1", "tab-b", lambda: make_guard(channel, clock, tab_id="tab-b", session_started_at=50.0))
        assert registry.session_started_at("user-1") == 50.0
        assert registry.session_started_at("user-2") is None

    def test_drop_user_closes_guards(self, channel, clock):
        registry = ContinuityRegistry()
        registry.get_or_create("user-1", "tab-a", lambda: make_guard(channel, clock))
        registry.drop_user("user-1")
        assert registry.get("user-1", "tab-a") is None
        assert channel.subscriber_count == 0

    def test_expired_guards_are_pruned_after_retention(self, channel, clock):
        registry = ContinuityRegistry(retention_seconds=300)
        guard = registry.get_or_create("user-1", "tab-a", lambda: make_guard(channel, clock))
        guard.sign_out()
        clock.advance(299)
        registry.get_or_create("user-1", "tab-b", lambda: make_guard(channel, clock, tab_id="tab-b"))
        assert registry.get("user-1", "tab-a") is guard
        clock.advance(1)
        registry.get_or_create("user-2", "tab-a", lambda: make_guard(channel, clock))
        assert registry.get("user-1", "tab-a") is None
        assert len(registry) == 2

    def test_abandoned_guards_are_pruned(self, channel, clock):
        registry = ContinuityRegistry()
        guard = registry.get_or_create(
            "user-1", "tab-a",
            lambda: make_guard(channel, clock, preferences=SessionPreferences(session_guard_enabled=False)),
        )
        clock.advance(8 * 3600)
        registry.get_or_create("user-2", "tab-a", lambda: make_guard(channel, clock))
        assert registry.get("user-1", "tab-a") is None
        assert guard.state == ContinuityState.DISABLED


class TestPreferencesService:
    def test_reads_stored_preferences(self, fake_supabase):
        fake_supabase.tables["user_preferences"] = [{
            "user_id": "user-1",
            "inactivity_timeout_minutes": 60,
            "session_guard_enabled": False,
            "ui_density_mode": "compact",
        }]
        prefs = PreferencesService(fake_supabase).get_preferences("user-1")
        assert prefs.inactivity_timeout_minutes == 60
        assert prefs.session_guard_enabled is False
        assert prefs.ui_density_mode == "compact"

    def test_out_of_range_values_fall_back(self, fake_supabase):
        fake_supabase.tables["user_preferences"] = [{
            "user_id": "user-1",
            "inactivity_timeout_minutes": 45,
            "session_guard_enabled": None,
            "ui_density_mode": "cozy",
        }]
        prefs = PreferencesService(fake_supabase).get_preferences("user-1")
        assert prefs == SessionPreferences()

    def test_missing_row_uses_defaults(self, fake_supabase):
        assert PreferencesService(fake_supabase).get_preferences("user-1") == SessionPreferences()

    def test_read_failure_uses_defaults(self, fake_supabase):
        fake_supabase.failing_tables.add("user_preferences")
        assert PreferencesService(fake_supabase).get_preferences("user-1") == SessionPreferences()

    def test_no_client(self):
        assert PreferencesService(None).get_preferences("user-1").inactivity_timeout_minutes == 30
