"""
Late Reminder Debouncer

Once per weekday, some hours after the trigger time, nudges every subscriber
who is not on vacation and has not submitted that day. The per-day record is
claimed before the message goes out, so a retried or overlapping evaluation
never reminds the same person twice.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, List

from .jobs import utc_now
from .transport import StandupTransport

logger = logging.getLogger(__name__)

LATE_REMINDER_MESSAGE = (
    "⚠️ *Reminder:* You haven't submitted your standup today yet!\n"
    "Use `/standup` to start your daily standup."
)


@dataclass
class LateReminderReport:
    """What one evaluation did"""
    day: date
    reminded: List[str] = field(default_factory=list)
    already_reminded: List[str] = field(default_factory=list)
    submitted: List[str] = field(default_factory=list)
    on_vacation: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class LateReminderDebouncer:
    """Sends at most one late reminder per subscriber per day"""

    def __init__(self, db, transport: StandupTransport, now_fn: Callable[[], datetime] = utc_now):
        self.db = db
        self.transport = transport
        self.now_fn = now_fn
        self._lock = asyncio.Lock()

    async def run(self, day: date) -> LateReminderReport:
        """Evaluate every subscriber for the given standup day"""
        async with self._lock:
            logger.info(f"Checking for missing standups on {day.isoformat()}...")
            report = LateReminderReport(day=day)

            try:
                await self.db.cleanup_old_late_reminders(day)
            except Exception as e:
                logger.warning(f"Late reminder cleanup failed: {e}")

            subscribers = await self.db.get_all_subscribers()
            submitted_ids = {r.user_id for r in await self.db.get_standups_for_day(day)}

            for subscriber in subscribers:
                user_id = subscriber.user_id
                if subscriber.is_on_vacation_on(day):
                    report.on_vacation.append(user_id)
                    continue
                if user_id in submitted_ids:
                    report.submitted.append(user_id)
                    continue

                try:
                    await self._remind(subscriber, day, report)
                except Exception as e:
                    logger.error(f"Late reminder for @{subscriber.username} failed: {e}")
                    report.failed.append(user_id)

            logger.info(
                f"Late reminders for {day.isoformat()}: {len(report.reminded)} sent, "
                f"{len(report.already_reminded)} already sent, {len(report.failed)} failed"
            )
            return report

    async def _remind(self, subscriber, day: date, report: LateReminderReport) -> None:
        user_id = subscriber.user_id
        claimed = await self.db.claim_late_reminder(user_id, day, self.now_fn())
        if not claimed:
            logger.info(f"Skipped late reminder for @{subscriber.username} (already sent today)")
            report.already_reminded.append(user_id)
            return

        try:
            await self.transport.send_to_participant(user_id, LATE_REMINDER_MESSAGE)
        except Exception:
            # Not delivered, so a later evaluation may try again
            await self.db.release_late_reminder(user_id, day)
            raise

        logger.info(f"Sent late reminder to @{subscriber.username}")
        report.reminded.append(user_id)
