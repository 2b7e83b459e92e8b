"""
Standup Orchestrator

Owns every background job of the bot:
- the trigger job (every weekday minute, opens standups whose local time matches)
- the late reminder job (weekdays at trigger time + delay)
- the maintenance job (daily pruning of old standups and reminder records)

Admin changes to the schedule go through this class; they are serialized
with job reinstallation so a tick never sees a half-updated schedule.
"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional, Tuple

from .errors import ConflictError, StandupError, TransientIOError, ValidationError
from .interview import InterviewEngine
from .jobs import ScheduledJob, utc_now
from .late_reminders import LateReminderDebouncer
from .models import ScheduleSettings
from .trigger_clock import TriggerClock, next_weekday_occurrence

logger = logging.getLogger(__name__)

MIN_LATE_REMINDER_HOURS = 1
MAX_LATE_REMINDER_HOURS = 12


def validate_standup_time(hour: int, minute: int) -> None:
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValidationError(
            "⚠️ Please provide a valid time in 24h format.\n"
            "Usage: `/standup set_time HH:mm` or `/standup set_time HH`"
        )


def validate_late_reminder_hours(hours: int) -> None:
    if not (MIN_LATE_REMINDER_HOURS <= hours <= MAX_LATE_REMINDER_HOURS):
        raise ValidationError(
            f"⚠️ Please specify a number of hours between "
            f"{MIN_LATE_REMINDER_HOURS} and {MAX_LATE_REMINDER_HOURS}."
        )


class StandupOrchestrator:
    """Job lifecycle and schedule reconfiguration"""

    def __init__(self, db, engine: InterviewEngine, clock: TriggerClock,
                 debouncer: LateReminderDebouncer, retention_days: int = 7,
                 now_fn: Callable[[], datetime] = utc_now):
        self.db = db
        self.engine = engine
        self.clock = clock
        self.debouncer = debouncer
        self.retention_days = retention_days
        self.now_fn = now_fn

        self._settings: Optional[ScheduleSettings] = None
        self._lock = asyncio.Lock()
        self.trigger_job: Optional[ScheduledJob] = None
        self.late_reminder_job: Optional[ScheduledJob] = None
        self.maintenance_job: Optional[ScheduledJob] = None
        # Standup day the late reminder job last evaluated
        self._last_late_day: Optional[date] = None

    @property
    def settings(self) -> ScheduleSettings:
        if self._settings is None:
            raise RuntimeError("Orchestrator not started")
        return self._settings

    @property
    def reference_tz(self):
        return self.clock.reference_tz

    # ========================= LIFECYCLE =========================

    async def start(self) -> None:
        """Load settings and install all jobs"""
        async with self._lock:
            self._settings = await self.db.get_schedule_settings()
            latest = self._latest_late_check(self.now_fn())
            if latest and latest[1] <= self.now_fn():
                # Checks that fell due before startup are not made up
                self._last_late_day = latest[0]
            self._install_trigger_job()
            self._install_late_reminder_job()
            if self.maintenance_job is None:
                self.maintenance_job = ScheduledJob(
                    "maintenance", self._next_maintenance, self._run_maintenance, now_fn=self.now_fn
                ).start()
        logger.info(
            f"Daily standups scheduled for {self.settings.time_label} "
            f"(local time, reference {self.reference_tz.key})"
        )

    async def stop(self) -> None:
        async with self._lock:
            for job in (self.trigger_job, self.late_reminder_job, self.maintenance_job):
                if job:
                    job.cancel()
            self.trigger_job = self.late_reminder_job = self.maintenance_job = None

    # ========================= RECONFIGURATION =========================

    async def set_standup_time(self, hour: int, minute: int) -> ScheduleSettings:
        validate_standup_time(hour, minute)
        async with self._lock:
            await self.db.set_standup_time(hour, minute)
            self._settings = self.settings.with_time(hour, minute)
            self._install_trigger_job()
            self._install_late_reminder_job()
            logger.info(f"Standup time changed to {self._settings.time_label}")
            return self._settings

    async def set_late_reminder_hours(self, hours: int) -> ScheduleSettings:
        validate_late_reminder_hours(hours)
        async with self._lock:
            await self.db.set_late_reminder_hours(hours)
            self._settings = self.settings.with_late_reminder(hours=hours)
            self._install_late_reminder_job()
            logger.info(f"Late reminder delay changed to {hours}h")
            return self._settings

    async def set_late_reminder_enabled(self, enabled: bool) -> ScheduleSettings:
        async with self._lock:
            await self.db.set_late_reminder_enabled(enabled)
            self._settings = self.settings.with_late_reminder(enabled=enabled)
            self._install_late_reminder_job()
            logger.info(f"Late reminders turned {'on' if enabled else 'off'}")
            return self._settings

    # Install methods contain no await: the replacement exists before the old
    # job is cancelled, and nothing else runs in between.

    def _install_trigger_job(self) -> None:
        replacement = ScheduledJob("standup-trigger", self.clock.next_tick, self._run_trigger_tick,
                                   now_fn=self.now_fn)
        previous, self.trigger_job = self.trigger_job, replacement
        if previous:
            previous.cancel()
        replacement.start()
        logger.info(f"Installed trigger job for {self.settings.time_label}")

    def _install_late_reminder_job(self) -> None:
        previous, self.late_reminder_job = self.late_reminder_job, None
        if previous:
            previous.cancel()

        settings = self.settings
        if not settings.late_reminder_enabled:
            logger.info("Late reminders disabled; no late reminder job installed")
            return

        self.late_reminder_job = ScheduledJob(
            "late-reminder", self._next_late_reminder, self._run_late_reminders, now_fn=self.now_fn
        ).start()
        logger.info(f"Installed late reminder job {settings.late_reminder_hours}h after {settings.time_label}")

    # ========================= FIRE TIMES =========================

    def _latest_late_check(self, now: datetime) -> Optional[Tuple[date, datetime]]:
        """Standup day and late check time of the last trigger at or before now"""
        settings = self.settings
        at = time(settings.standup_hour, settings.standup_minute)
        day = self.clock.reference_today(now)
        trigger = datetime.combine(day, at, tzinfo=self.reference_tz)
        if trigger > now:
            day -= timedelta(days=1)
            trigger = datetime.combine(day, at, tzinfo=self.reference_tz)
        if day.weekday() >= 5:
            return None
        return day, trigger.astimezone(now.tzinfo) + timedelta(hours=settings.late_reminder_hours)

    def _next_late_reminder(self, after: datetime) -> datetime:
        settings = self.settings
        offset = timedelta(hours=settings.late_reminder_hours)

        # A reinstall can move a pending check into the past: run it now rather than lose the day
        latest = self._latest_late_check(after)
        if latest and latest[1] <= after and latest[0] != self._last_late_day:
            logger.info(f"Late check for {latest[0].isoformat()} is overdue; running it now")
            return after

        fire_at = next_weekday_occurrence(
            after, settings.standup_hour, settings.standup_minute, self.reference_tz, offset=offset,
        )
        # One evaluation per standup day
        if self.clock.reference_today(fire_at - offset) == self._last_late_day:
            fire_at = next_weekday_occurrence(
                fire_at, settings.standup_hour, settings.standup_minute, self.reference_tz, offset=offset,
            )
        return fire_at

    def _next_maintenance(self, after: datetime) -> datetime:
        local = after.astimezone(self.reference_tz)
        tomorrow = local.date() + timedelta(days=1)
        midnight = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=self.reference_tz)
        return midnight.astimezone(after.tzinfo)

    # ========================= JOB BODIES =========================

    async def _run_trigger_tick(self, fire_at: datetime) -> None:
        """Open standups for everyone whose local time is the trigger time"""
        settings = self.settings
        if not self.clock.is_weekday(fire_at):
            return

        today = self.clock.reference_today(fire_at)
        try:
            subscribers = await self.db.get_active_subscribers(today)
        except TransientIOError as e:
            logger.error(f"Error loading subscribers for standup tick: {e}")
            return

        result = self.clock.evaluate(subscribers, fire_at, settings)

        for subscriber in result.invalid_timezone:
            try:
                await self.db.set_user_timezone(subscriber.user_id, self.reference_tz.key)
                logger.warning(
                    f"Reset invalid timezone {subscriber.timezone!r} of user {subscriber.user_id} "
                    f"to {self.reference_tz.key}"
                )
            except TransientIOError as e:
                logger.error(f"Could not reset timezone of user {subscriber.user_id}: {e}")

        if result.matched:
            logger.info(f"Starting daily standups for {len(result.matched)} subscribers...")

        for subscriber in result.matched:
            try:
                await self.engine.start_interview(subscriber.user_id, subscriber.username, scheduled=True)
            except ConflictError:
                logger.info(f"User {subscriber.user_id} already has a standup open")
            except StandupError as e:
                logger.error(f"Failed to start standup for user {subscriber.user_id}: {e}")

    async def _run_late_reminders(self, fire_at: datetime) -> None:
        settings = self.settings
        if not settings.late_reminder_enabled:
            logger.info("Late reminders disabled since the job was installed; skipping")
            return
        trigger_moment = fire_at - timedelta(hours=settings.late_reminder_hours)
        day = self.clock.reference_today(trigger_moment)
        self._last_late_day = day
        await self.debouncer.run(day)

    async def _run_maintenance(self, fire_at: datetime) -> None:
        today = self.clock.reference_today(fire_at)
        logger.info("Cleaning up old standups...")
        try:
            await self.db.cleanup_old_standups(today - timedelta(days=self.retention_days))
            await self.db.cleanup_old_late_reminders(today)
        except TransientIOError as e:
            logger.error(f"Maintenance failed: {e}")
