"""
tests/test_classification.py — Tier Rule & Template Unit Tests
===============================================================

Pure functions only; no database.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from quietwatch.constants import days_between, mention
from quietwatch.database.models import ActivityKind, MemberStatus
from quietwatch.engine.classification import (
    WeeklyCounters,
    classify,
    days_inactive,
    render_reminder,
    weekly_counters,
    window_start,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _activity(kind: ActivityKind, at: datetime):
    return SimpleNamespace(kind=kind.value, timestamp=at)


def _member(last_activity=None, joined_at=NOW - timedelta(days=100)):
    m = SimpleNamespace(last_activity=last_activity, joined_at=joined_at)
    m.reference_time = last_activity or joined_at
    return m


class TestDaysBetween:
    def test_floors_partial_days(self):
        assert days_between(NOW - timedelta(days=14, hours=23), NOW) == 14

    def test_exact_boundary(self):
        assert days_between(NOW - timedelta(days=14), NOW) == 14

    def test_future_reference_is_zero(self):
        assert days_between(NOW + timedelta(hours=3), NOW) == 0


class TestWeeklyCounters:
    def test_counts_messages_and_voice_joins_only(self):
        acts = [
            _activity(ActivityKind.MESSAGE, NOW - timedelta(days=1)),
            _activity(ActivityKind.MESSAGE, NOW - timedelta(days=2)),
            _activity(ActivityKind.VOICE_JOIN, NOW - timedelta(days=3)),
            _activity(ActivityKind.VOICE_LEAVE, NOW - timedelta(days=3)),
        ]
        counters = weekly_counters(acts, NOW)
        assert counters == WeeklyCounters(messages=2, voice_joins=1)
        assert counters.voice_minutes == 30

    def test_window_lower_bound_is_inclusive(self):
        acts = [_activity(ActivityKind.MESSAGE, window_start(NOW))]
        assert weekly_counters(acts, NOW).messages == 1

    def test_older_than_window_ignored(self):
        acts = [_activity(ActivityKind.MESSAGE, NOW - timedelta(days=7, seconds=1))]
        assert weekly_counters(acts, NOW) == WeeklyCounters()

    def test_future_activity_ignored(self):
        acts = [_activity(ActivityKind.VOICE_JOIN, NOW + timedelta(minutes=1))]
        assert not weekly_counters(acts, NOW).has_engagement


class TestClassify:
    def test_any_message_is_active(self):
        status = classify(WeeklyCounters(messages=1), NOW - timedelta(days=60), NOW, 14)
        assert status == MemberStatus.ACTIVE

    def test_voice_join_alone_is_active(self):
        status = classify(WeeklyCounters(voice_joins=1), NOW - timedelta(days=60), NOW, 14)
        assert status == MemberStatus.ACTIVE

    def test_very_inactive_at_threshold(self):
        status = classify(WeeklyCounters(), NOW - timedelta(days=14), NOW, 14)
        assert status == MemberStatus.VERY_INACTIVE

    def test_inactive_below_threshold(self):
        status = classify(WeeklyCounters(), NOW - timedelta(days=13, hours=23), NOW, 14)
        assert status == MemberStatus.INACTIVE

    @pytest.mark.parametrize("threshold, expected", [
        (5, MemberStatus.VERY_INACTIVE),
        (14, MemberStatus.INACTIVE),
    ])
    def test_threshold_is_respected(self, threshold, expected):
        assert classify(WeeklyCounters(), NOW - timedelta(days=10), NOW, threshold) == expected


class TestDaysInactive:
    def test_uses_last_activity(self):
        member = _member(last_activity=NOW - timedelta(days=20, hours=5))
        assert days_inactive(member, NOW) == 20

    def test_falls_back_to_joined_at(self):
        member = _member(last_activity=None, joined_at=NOW - timedelta(days=3))
        assert days_inactive(member, NOW) == 3


class TestRenderReminder:
    def test_replaces_every_placeholder(self):
        text = render_reminder("{user} {user} gone {days}/{days}", "42", 17)
        assert text == "<@42> <@42> gone 17/17"

    def test_other_braces_untouched(self):
        assert render_reminder("{x} {days}", "1", 3) == "{x} 3"

    def test_mention_markup(self):
        assert mention("123456") == "<@123456>"

    def test_short_template_scenario(self):
        text = render_reminder("Hi {user}, gone {days}d", "u1", 5)
        assert mention("u1") in text
        assert "5" in text
