"""
tests/test_repository.py — SqlRepository Tests
===============================================

Runs against the in-memory SQLite engine from conftest with a fake clock.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from quietwatch.constants import DEFAULT_INACTIVITY_THRESHOLD_DAYS, SETTINGS_ROW_ID
from quietwatch.database.models import ActivityKind, SettingsLog
from quietwatch.database.seed import seed_default_settings
from quietwatch.services.repository import (
    BLOCKED_COOLDOWN,
    BLOCKED_RATE_LIMIT,
    MemberExistsError,
    MemberNotFoundError,
    ReminderBlockedError,
    RepositoryError,
)

START = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)  # FakeClock start


class TestMembers:
    def test_create_and_get(self, repo):
        repo.create_member("1", "drew", "Drew")
        member = repo.get_member("1")
        assert member.handle == "drew"
        assert member.display_name == "Drew"
        assert member.joined_at == START
        assert member.last_activity is None
        assert member.status == "inactive"
        assert member.total_messages == 0

    def test_get_unknown_is_none(self, repo):
        assert repo.get_member("nobody") is None

    def test_duplicate_create_raises(self, repo):
        repo.create_member("1", "drew")
        with pytest.raises(MemberExistsError):
            repo.create_member("1", "drew")

    def test_update_unknown_raises(self, repo):
        with pytest.raises(MemberNotFoundError) as exc:
            repo.update_member("ghost", status="active")
        assert isinstance(exc.value, RepositoryError)
        assert exc.value.member_id == "ghost"

    def test_update_rejects_unknown_field(self, repo):
        repo.create_member("1", "drew")
        with pytest.raises(ValueError):
            repo.update_member("1", joined_at=START)

    def test_cumulative_counters_never_decrease(self, repo):
        repo.create_member("1", "drew")
        repo.update_member("1", total_messages=5)
        with pytest.raises(ValueError):
            repo.update_member("1", total_messages=4)
        assert repo.get_member("1").total_messages == 5

    def test_partial_update_keeps_other_fields(self, repo):
        repo.create_member("1", "drew", "Drew")
        repo.update_member("1", status="active")
        member = repo.get_member("1")
        assert member.status == "active"
        assert member.display_name == "Drew"


class TestModifyMember:
    def test_compute_sees_row_and_window(self, repo, clock):
        repo.create_member("1", "drew")
        repo.append_activity("1", ActivityKind.MESSAGE, "general")
        clock.advance(days=8)
        repo.append_activity("1", ActivityKind.VOICE_JOIN, "Lounge")
        seen = {}

        def changes(member, recent):
            seen["handle"] = member.handle
            seen["kinds"] = [a.kind for a in recent]
            return {"total_messages": member.total_messages + 1}

        member, applied = repo.modify_member("1", changes, since=clock() - timedelta(days=7))

        assert seen == {"handle": "drew", "kinds": ["voice_join"]}
        assert applied == {"total_messages": 1}
        assert member.total_messages == 1
        assert repo.get_member("1").total_messages == 1

    def test_empty_changes_write_nothing(self, repo):
        repo.create_member("1", "drew")
        member, applied = repo.modify_member("1", lambda m, recent: {})
        assert applied == {}
        assert member.status == "inactive"

    def test_unknown_member(self, repo):
        with pytest.raises(MemberNotFoundError):
            repo.modify_member("ghost", lambda m, recent: {"status": "active"})

    def test_same_validation_as_update(self, repo):
        repo.create_member("1", "drew")
        repo.update_member("1", total_messages=3)
        with pytest.raises(ValueError):
            repo.modify_member("1", lambda m, recent: {"total_messages": 2})
        assert repo.get_member("1").total_messages == 3


class TestInactiveMembers:
    def test_cutoff_is_inclusive_and_uses_join_fallback(self, repo, clock):
        repo.create_member("exact", "a", joined_at=START - timedelta(days=14))
        repo.create_member("fresh", "b", joined_at=START - timedelta(days=13, hours=23))
        repo.create_member(
            "quiet", "c",
            joined_at=START - timedelta(days=90),
            last_activity=START - timedelta(days=30),
        )
        repo.create_member(
            "talker", "d",
            joined_at=START - timedelta(days=90),
            last_activity=START - timedelta(days=1),
        )

        ids = [m.id for m in repo.list_inactive_members(14)]
        assert ids == ["quiet", "exact"]

    def test_ties_broken_by_id(self, repo):
        when = START - timedelta(days=20)
        repo.create_member("b", "b", joined_at=when)
        repo.create_member("a", "a", joined_at=when)
        assert [m.id for m in repo.list_inactive_members(14)] == ["a", "b"]


class TestActivities:
    def test_timestamp_assigned_from_clock(self, repo, clock):
        repo.create_member("1", "drew")
        clock.advance(minutes=5)
        activity = repo.append_activity("1", ActivityKind.MESSAGE, "general")
        assert activity.timestamp == START + timedelta(minutes=5)

    def test_payload_round_trips(self, repo):
        repo.create_member("1", "drew")
        repo.append_activity("1", ActivityKind.VOICE_JOIN, "Lounge", {"self_mute": True})
        [activity] = repo.list_activities_by_member("1")
        assert activity.payload == {"self_mute": True}
        assert activity.kind == "voice_join"

    def test_newest_first_with_limit_and_since(self, repo, clock):
        repo.create_member("1", "drew")
        for _ in range(3):
            repo.append_activity("1", ActivityKind.MESSAGE, "general")
            clock.advance(days=1)

        newest = repo.list_activities_by_member("1", limit=2)
        assert [a.timestamp for a in newest] == [
            START + timedelta(days=2), START + timedelta(days=1),
        ]
        since = repo.list_activities_by_member("1", since=START + timedelta(days=1))
        assert len(since) == 2

    def test_recent_across_members(self, repo, clock):
        repo.create_member("1", "a")
        repo.create_member("2", "b")
        repo.append_activity("1", ActivityKind.MESSAGE, "general")
        clock.advance(seconds=1)
        repo.append_activity("2", ActivityKind.MESSAGE, "general")
        assert [a.member_id for a in repo.list_recent_activities(limit=10)] == ["2", "1"]


class TestReminders:
    def test_recent_window_and_wildcard(self, repo, clock):
        repo.create_member("1", "a")
        repo.create_member("2", "b")
        repo.append_reminder("1", 20, "bot-chat")
        clock.advance(days=2)
        repo.append_reminder("2", 15, "bot-chat")
        clock.advance(days=2)

        assert [r.member_id for r in repo.list_recent_reminders(None, 3)] == ["2"]
        assert len(repo.list_recent_reminders(None, 7)) == 2
        assert repo.list_recent_reminders("1", 3) == []
        assert repo.get_most_recent_reminder().member_id == "2"

    def test_most_recent_none_when_empty(self, repo):
        assert repo.get_most_recent_reminder() is None


class TestReminderClaims:
    def test_claim_is_visible_before_confirm(self, repo):
        repo.create_member("1", "a")
        claim = repo.claim_reminder("1", 20, "bot-channel", rate_limit_minutes=10, cooldown_days=3)

        assert repo.get_most_recent_reminder().id == claim.id
        confirmed = repo.confirm_reminder(claim.id, "bot-commands")
        assert confirmed.channel_label == "bot-commands"
        assert repo.list_recent_reminders("1", 1)[0].channel_label == "bot-commands"

    def test_release_drops_the_claim(self, repo):
        repo.create_member("1", "a")
        claim = repo.claim_reminder("1", 20, "bot-channel")
        repo.release_reminder(claim.id)
        assert repo.get_most_recent_reminder() is None

    def test_rate_limit_blocks_any_member(self, repo, clock):
        repo.create_member("1", "a")
        repo.create_member("2", "b")
        repo.append_reminder("1", 20, "bot-chat")
        clock.advance(minutes=9)

        with pytest.raises(ReminderBlockedError) as exc:
            repo.claim_reminder("2", 15, "bot-channel", rate_limit_minutes=10)
        assert exc.value.reason == BLOCKED_RATE_LIMIT

        clock.advance(minutes=1)
        assert repo.claim_reminder("2", 15, "bot-channel", rate_limit_minutes=10).member_id == "2"

    def test_cooldown_blocks_same_member(self, repo, clock):
        repo.create_member("1", "a")
        repo.append_reminder("1", 20, "manual-reminder")
        clock.advance(days=3)

        with pytest.raises(ReminderBlockedError) as exc:
            repo.claim_reminder("1", 23, "bot-channel", rate_limit_minutes=10, cooldown_days=3)
        assert exc.value.reason == BLOCKED_COOLDOWN
        assert len(repo.list_recent_reminders("1", 7)) == 1

    def test_ungated_claim_ignores_history(self, repo):
        repo.create_member("1", "a")
        repo.append_reminder("1", 20, "bot-chat")
        claim = repo.claim_reminder("1", 20, "manual-reminder")
        assert claim.id is not None
        assert len(repo.list_recent_reminders("1", 1)) == 2


class TestConfiguration:
    def test_seed_is_idempotent(self, db_engine, repo):
        repo.update_configuration(inactivity_threshold=30)
        assert seed_default_settings(db_engine) is False
        assert repo.get_configuration().inactivity_threshold == 30

    def test_defaults(self, repo):
        config = repo.get_configuration()
        assert config.id == SETTINGS_ROW_ID
        assert config.inactivity_threshold == DEFAULT_INACTIVITY_THRESHOLD_DAYS
        assert config.is_active is False

    def test_partial_update_and_audit(self, repo, db_engine):
        repo.update_configuration(actor="tester", reminder_cooldown=5)
        config = repo.get_configuration()
        assert config.reminder_cooldown == 5
        assert config.inactivity_threshold == DEFAULT_INACTIVITY_THRESHOLD_DAYS

        [change] = repo.list_configuration_changes()
        assert change.actor == "tester"
        assert change.after_snapshot["reminder_cooldown"] == 5
        assert "discord_token" not in change.after_snapshot

    def test_noop_update_not_audited(self, repo):
        repo.update_configuration(is_active=False)
        assert repo.list_configuration_changes() == []

    def test_update_creates_missing_row(self, bare_repo):
        assert bare_repo.get_configuration() is None
        bare_repo.update_configuration(is_active=True)
        config = bare_repo.get_configuration()
        assert config.is_active is True
        assert config.rate_limit_minutes == 10

    def test_unknown_field_rejected(self, repo):
        with pytest.raises(ValueError):
            repo.update_configuration(colour="blue")

    def test_audit_rows_are_settings_log(self, repo):
        repo.update_configuration(is_active=True)
        assert isinstance(repo.list_configuration_changes()[0], SettingsLog)
