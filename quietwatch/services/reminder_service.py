"""
quietwatch.services.reminder_service — Paced Re-engagement Reminders
=====================================================================

Runs the periodic reminder loop and the operator-triggered manual path.

Each tick (every 10 minutes):

1. Skip if the configuration is missing or ``is_active`` is off.
2. **Global gate** — skip the whole tick if the newest reminder to anyone
   is younger than ``rate_limit_minutes``.
3. Candidates are members quiet for at least ``inactivity_threshold``
   days, longest-quiet first.
4. **Cooldown gate** — skip candidates reminded within the last
   ``reminder_cooldown`` days.
5. Render the template and try delivery.  A failed delivery moves on to
   the next candidate; the first success is recorded and ends the tick.

At most one reminder is sent per tick.

Manual dispatch renders and delivers the same way but ignores both gates.

Ticks and manual dispatches in one process share an ``asyncio.Lock``.
The bot and the API dispatch from different processes, so every send
first claims its reminder row through
:meth:`~quietwatch.services.repository.SqlRepository.claim_reminder`,
which re-checks both gates under a database row lock.  The claim is
confirmed after delivery or released if delivery fails; a tick that
loses the race to a manual reminder sees it and skips that member.
Errors inside a tick are logged and the tick is abandoned; the loop keeps
running.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from quietwatch.constants import (
    DEFAULT_INACTIVITY_THRESHOLD_DAYS,
    DEFAULT_RATE_LIMIT_MINUTES,
    DEFAULT_REMINDER_COOLDOWN_DAYS,
    DEFAULT_REMINDER_TEMPLATE,
    MANUAL_REMINDER_CHANNEL,
    SCHEDULED_REMINDER_CHANNEL,
    SCHEDULER_INTERVAL_SECONDS,
)
from quietwatch.database.engine import run_db
from quietwatch.database.models import BotSettings, Member, Reminder
from quietwatch.engine.classification import days_inactive, render_reminder
from quietwatch.services.delivery import DeliveryResult, DeliveryTransport
from quietwatch.services.repository import BLOCKED_RATE_LIMIT, ReminderBlockedError, Repository

logger = logging.getLogger(__name__)


class TickOutcome(enum.StrEnum):
    """How a scheduler tick ended."""
    SENT = "sent"
    NO_CONFIG = "no_config"
    DISABLED = "disabled"
    RATE_LIMITED = "rate_limited"
    NO_CANDIDATES = "no_candidates"
    DELIVERY_FAILED = "delivery_failed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TickResult:
    outcome: TickOutcome
    reminder: Reminder | None = None
    attempted: int = 0


def reminder_text(config: BotSettings, member: Member, now: datetime) -> tuple[str, int]:
    """Render the reminder for *member*; returns ``(text, days_inactive)``."""
    days = days_inactive(member, now)
    template = config.reminder_template or DEFAULT_REMINDER_TEMPLATE
    return render_reminder(template, member.id, days), days


class ReminderService:
    """Scheduler loop plus manual dispatch over a repository and a transport.

    Parameters
    ----------
    repo:
        Source of members, reminder history and live configuration.
    transport:
        Delivers rendered reminders.
    interval_seconds:
        Tick period.  Fixed at 10 minutes in production.
    dispatch_lock:
        Lock shared by every service instance in one process.  A private
        lock is created when omitted.
    """

    def __init__(
        self,
        repo: Repository,
        transport: DeliveryTransport,
        interval_seconds: float = SCHEDULER_INTERVAL_SECONDS,
        dispatch_lock: asyncio.Lock | None = None,
    ) -> None:
        self.repo = repo
        self.transport = transport
        self.interval_seconds = interval_seconds
        self._dispatch_lock = dispatch_lock or asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.last_result: TickResult | None = None

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> bool:
        """Start the background tick loop.

        Only one loop ever runs: calling ``start`` while running logs a
        warning and returns False.
        """
        if self.is_running:
            logger.warning("Reminder scheduler already running; start ignored")
            return False

        loop = loop or asyncio.get_running_loop()
        self._task = loop.create_task(self._run_forever(), name="reminder-scheduler")
        logger.info(
            "Reminder scheduler started (every %d s)", int(self.interval_seconds),
        )
        return True

    def stop(self) -> None:
        """Stop future ticks.  Safe to call when already stopped.

        A tick already in progress runs to completion.
        """
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Reminder scheduler stopped")

    async def _run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            # Shielded: cancelling the loop never cuts a tick off mid-iteration.
            await asyncio.shield(self.tick())

    # -------------------------------------------------------------------
    # Scheduled path
    # -------------------------------------------------------------------
    async def tick(self) -> TickResult:
        """Run one scheduler pass.  Never raises."""
        async with self._dispatch_lock:
            try:
                result = await self._tick()
            except Exception:
                logger.exception("Reminder tick failed", extra={"task": "reminder_tick"})
                result = TickResult(TickOutcome.ERROR)

        self.last_result = result
        if result.outcome not in (TickOutcome.SENT, TickOutcome.DISABLED):
            logger.debug("Reminder tick ended: %s", result.outcome)
        return result

    async def _tick(self) -> TickResult:
        config = await run_db(self.repo.get_configuration)
        if config is None:
            logger.warning("Reminder tick skipped: no configuration row")
            return TickResult(TickOutcome.NO_CONFIG)
        if not config.is_active:
            return TickResult(TickOutcome.DISABLED)

        now = self.repo.now()

        # Global gate
        last = await run_db(self.repo.get_most_recent_reminder)
        rate_limit = config.rate_limit_minutes or DEFAULT_RATE_LIMIT_MINUTES
        if last is not None and now - last.sent_at < timedelta(minutes=rate_limit):
            return TickResult(TickOutcome.RATE_LIMITED)

        threshold = config.inactivity_threshold or DEFAULT_INACTIVITY_THRESHOLD_DAYS
        cooldown = config.reminder_cooldown or DEFAULT_REMINDER_COOLDOWN_DAYS
        candidates = await run_db(self.repo.list_inactive_members, threshold)

        attempted = 0
        for member in candidates:
            text, days = reminder_text(config, member, now)
            # Both gates are re-checked under the database lock
            try:
                claim = await run_db(
                    self.repo.claim_reminder,
                    member.id, days, SCHEDULED_REMINDER_CHANNEL,
                    rate_limit_minutes=rate_limit, cooldown_days=cooldown,
                )
            except ReminderBlockedError as exc:
                if exc.reason == BLOCKED_RATE_LIMIT:
                    return TickResult(TickOutcome.RATE_LIMITED, attempted=attempted)
                continue

            attempted += 1
            result = await self._deliver(claim, text)
            if not result.delivered:
                logger.info(
                    "Reminder delivery to %s failed; trying next candidate", member.id,
                    extra={"task": "reminder_tick", "member_id": member.id},
                )
                continue

            reminder = await run_db(
                self.repo.confirm_reminder,
                claim.id, result.channel_label or SCHEDULED_REMINDER_CHANNEL,
            )
            logger.info(
                "Sent reminder to %s (%d days inactive) in #%s",
                member.handle, days, reminder.channel_label,
                extra={"task": "reminder_tick", "member_id": member.id},
            )
            return TickResult(TickOutcome.SENT, reminder, attempted)

        if attempted:
            return TickResult(TickOutcome.DELIVERY_FAILED, attempted=attempted)
        return TickResult(TickOutcome.NO_CANDIDATES)

    async def _deliver(self, claim: Reminder, text: str) -> DeliveryResult:
        """Deliver a claimed reminder; the claim is released unless it lands."""
        try:
            result = await self.transport.deliver(claim.member_id, text)
        except Exception:
            await run_db(self.repo.release_reminder, claim.id)
            raise
        if not result.delivered:
            await run_db(self.repo.release_reminder, claim.id)
        return result

    # -------------------------------------------------------------------
    # Manual path
    # -------------------------------------------------------------------
    async def send_manual_reminder(self, member_id: str) -> bool:
        """Remind *member_id* now, ignoring the rate limit and cooldown.

        Returns False if the member is unknown, configuration is missing,
        delivery fails, or an error occurs.  On success the reminder is
        recorded exactly like a scheduled one.
        """
        async with self._dispatch_lock:
            try:
                return await self._send_manual(member_id)
            except Exception:
                logger.exception(
                    "Error sending manual reminder to %s", member_id,
                    extra={"task": "manual_reminder", "member_id": member_id},
                )
                return False

    async def _send_manual(self, member_id: str) -> bool:
        member = await run_db(self.repo.get_member, member_id)
        if member is None:
            logger.info("Manual reminder rejected: unknown member %s", member_id)
            return False

        config = await run_db(self.repo.get_configuration)
        if config is None:
            logger.warning("Manual reminder rejected: no configuration row")
            return False

        text, days = reminder_text(config, member, self.repo.now())
        # No gates, but the claim still queues behind a tick in another process
        claim = await run_db(
            self.repo.claim_reminder, member.id, days, MANUAL_REMINDER_CHANNEL,
        )
        result = await self._deliver(claim, text)
        if not result.delivered:
            return False

        await run_db(
            self.repo.confirm_reminder,
            claim.id, result.channel_label or MANUAL_REMINDER_CHANNEL,
        )
        logger.info(
            "Sent manual reminder to %s (%d days inactive)", member.handle, days,
            extra={"task": "manual_reminder", "member_id": member.id},
        )
        return True
