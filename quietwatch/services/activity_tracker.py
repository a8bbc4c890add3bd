"""
quietwatch.services.activity_tracker — Event Ingestion & Classification
========================================================================

Turns raw engagement events into journal rows and keeps each member's
rolling counters and status tier current.

Pipeline for every event:
1. Create the member if this is the first time we see them.
2. Append the activity (timestamp assigned by the repository).
3. Recompute ``messages_this_week`` / ``voice_time_this_week`` from the
   journal window ``[now - 7d, now]``.
4. Re-derive ``status`` with the tier rule and persist.

Ingestion is best-effort: a failed write is logged with context and the
event is dropped.  Nothing raises back into the event source.

Every read-modify-write of one member runs under that member's
``asyncio.Lock`` in this process, and inside
:meth:`~quietwatch.services.repository.SqlRepository.modify_member`,
which holds the member row ``FOR UPDATE``.  A force-check from the API
therefore never overwrites counters the bot has just written.
Different members proceed independently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from quietwatch.constants import DEFAULT_INACTIVITY_THRESHOLD_DAYS, VOICE_SESSION_MINUTES
from quietwatch.database.engine import run_db
from quietwatch.database.models import Activity, ActivityKind, Member
from quietwatch.engine.classification import (
    classify,
    classify_member,
    weekly_counters,
    window_start,
)
from quietwatch.services.repository import MemberExistsError, MemberNotFoundError, Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MemberSnapshot:
    """Identity of a guild member as reported by the event source."""

    id: str
    handle: str
    display_name: str | None = None
    joined_at: datetime | None = None


class ActivityTracker:
    """Ingests engagement events and maintains member status tiers.

    The live ``inactivity_threshold`` is read from the repository on every
    classification, for single events and full passes alike.
    """

    def __init__(self, repo: Repository) -> None:
        self.repo = repo
        self._member_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, member_id: str) -> asyncio.Lock:
        lock = self._member_locks.get(member_id)
        if lock is None:
            lock = self._member_locks[member_id] = asyncio.Lock()
        return lock

    def _threshold(self) -> int:
        config = self.repo.get_configuration()
        if config is None or not config.inactivity_threshold:
            return DEFAULT_INACTIVITY_THRESHOLD_DAYS
        return config.inactivity_threshold

    # -------------------------------------------------------------------
    # Ingestion surface for the event source
    # -------------------------------------------------------------------
    async def on_message(self, member_id: str, handle: str, channel_label: str) -> bool:
        return await self.record_event(
            member_id, ActivityKind.MESSAGE, channel_label, handle=handle,
        )

    async def on_voice_join(
        self, member_id: str, handle: str, channel_label: str,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        return await self.record_event(
            member_id, ActivityKind.VOICE_JOIN, channel_label, payload, handle=handle,
        )

    async def on_voice_leave(
        self, member_id: str, handle: str, channel_label: str,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        return await self.record_event(
            member_id, ActivityKind.VOICE_LEAVE, channel_label, payload, handle=handle,
        )

    async def on_member_joined(
        self,
        member_id: str,
        handle: str,
        display_name: str | None,
        joined_at: datetime | None,
    ) -> bool:
        """Register a member who just joined the guild.

        Returns True if a new member row was created.  A member we already
        track is left unchanged.
        """
        try:
            async with self._lock_for(member_id):
                return await run_db(
                    self._create_if_missing,
                    MemberSnapshot(member_id, handle, display_name, joined_at),
                )
        except Exception:
            logger.exception(
                "Error registering joined member %s", member_id,
                extra={"event_kind": "member_joined", "member_id": member_id},
            )
            return False

    async def record_event(
        self,
        member_id: str,
        kind: ActivityKind,
        channel_label: str | None,
        payload: dict[str, Any] | None = None,
        *,
        handle: str | None = None,
    ) -> bool:
        """Journal one event and refresh the member's counters and tier.

        Returns True on success, False if the event was dropped.
        """
        try:
            async with self._lock_for(member_id):
                member = await run_db(
                    self._apply_event, member_id, ActivityKind(kind),
                    channel_label, payload, handle,
                )
        except Exception:
            logger.exception(
                "Dropped %s event for member %s", kind, member_id,
                extra={"event_kind": str(kind), "member_id": member_id},
            )
            return False

        logger.debug(
            "Tracked %s from %s in %s → %s (%d msgs, %d voice min this week)",
            kind, member.handle, channel_label, member.status,
            member.messages_this_week, member.voice_time_this_week,
        )
        return True

    # -------------------------------------------------------------------
    # Reclassification
    # -------------------------------------------------------------------
    async def reclassify_member(self, member_id: str) -> bool:
        """Refresh one member's window counters and tier.

        Returns True if anything was written.  Raises on repository errors.
        """
        async with self._lock_for(member_id):
            return await run_db(self._reclassify, member_id, None)

    async def classify_all_members(self) -> int:
        """Reclassify every tracked member ("force check").

        Members whose counters and tier are already correct are not
        written.  A failure on one member is logged and the pass moves on.

        Returns the number of members that changed.
        """
        members = await run_db(self.repo.list_members)
        threshold = await run_db(self._threshold)
        changed = 0
        for member in members:
            try:
                async with self._lock_for(member.id):
                    if await run_db(self._reclassify, member.id, threshold):
                        changed += 1
            except Exception:
                logger.exception(
                    "Error classifying member %s", member.id,
                    extra={"task": "classify_all", "member_id": member.id},
                )
        logger.info("Classified %d members, %d changed", len(members), changed)
        return changed

    # -------------------------------------------------------------------
    # Member sync
    # -------------------------------------------------------------------
    async def sync_members(self, snapshots: Iterable[MemberSnapshot]) -> int:
        """Create rows for guild members we don't track yet.

        Returns the number of members created.
        """
        created = 0
        for snap in snapshots:
            try:
                async with self._lock_for(snap.id):
                    if await run_db(self._create_if_missing, snap):
                        created += 1
            except Exception:
                logger.exception(
                    "Error syncing member %s", snap.id,
                    extra={"task": "member_sync", "member_id": snap.id},
                )
        logger.info("Member sync complete: %d new members", created)
        return created

    # -------------------------------------------------------------------
    # Synchronous bodies (run on the DB thread pool)
    # -------------------------------------------------------------------
    def _create_if_missing(self, snap: MemberSnapshot) -> bool:
        if self.repo.get_member(snap.id) is not None:
            return False
        try:
            self.repo.create_member(
                snap.id, snap.handle, snap.display_name,
                joined_at=snap.joined_at, last_activity=None,
            )
        except MemberExistsError:
            return False
        return True

    def _apply_event(
        self,
        member_id: str,
        kind: ActivityKind,
        channel_label: str | None,
        payload: dict[str, Any] | None,
        handle: str | None,
    ) -> Member:
        if self.repo.get_member(member_id) is None:
            try:
                self.repo.create_member(
                    member_id, handle or member_id, handle, last_activity=None,
                )
            except MemberExistsError:
                pass

        threshold = self._threshold()
        activity = self.repo.append_activity(member_id, kind, channel_label, payload)
        now = activity.timestamp

        def changes(member: Member, recent: list[Activity]) -> dict[str, Any]:
            counters = weekly_counters(recent, now)
            # The event itself is now the member's last activity
            fields: dict[str, Any] = {
                "status": classify(counters, now, now, threshold).value,
                "messages_this_week": counters.messages,
                "voice_time_this_week": counters.voice_minutes,
            }
            if member.last_activity is None or member.last_activity <= now:
                fields["last_activity"] = now
            if kind == ActivityKind.MESSAGE:
                fields["total_messages"] = (member.total_messages or 0) + 1
            elif kind == ActivityKind.VOICE_JOIN:
                fields["total_voice_time"] = (
                    (member.total_voice_time or 0) + VOICE_SESSION_MINUTES
                )
            if handle and handle != member.handle:
                fields["handle"] = handle
            return fields

        member, _ = self.repo.modify_member(member_id, changes, since=window_start(now))
        return member

    def _reclassify(self, member_id: str, threshold: int | None) -> bool:
        if threshold is None:
            threshold = self._threshold()
        now = self.repo.now()
        previous: dict[str, Any] = {}

        def changes(member: Member, recent: list[Activity]) -> dict[str, Any]:
            counters = weekly_counters(recent, now)
            target = {
                "status": classify_member(member, counters, now, threshold).value,
                "messages_this_week": counters.messages,
                "voice_time_this_week": counters.voice_minutes,
            }
            previous["status"] = member.status
            return {k: v for k, v in target.items() if getattr(member, k) != v}

        try:
            member, applied = self.repo.modify_member(
                member_id, changes, since=window_start(now),
            )
        except MemberNotFoundError:
            return False
        if not applied:
            return False

        if "status" in applied:
            logger.info(
                "Member %s reclassified %s → %s", member_id, previous["status"], member.status,
                extra={"member_id": member_id},
            )
        return True
