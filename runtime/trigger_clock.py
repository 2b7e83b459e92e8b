"""
Trigger Clock

Decides, once per minute, which subscribers should have their standup opened:
weekdays only (judged in the reference timezone), and only subscribers whose
local wall-clock hour:minute equals the configured trigger time.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import ScheduleSettings, Subscriber

logger = logging.getLogger(__name__)


def resolve_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    """ZoneInfo for an IANA name, or None when the name is unknown"""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def next_minute_boundary(after: datetime) -> datetime:
    """First whole minute strictly after the given moment"""
    return after.replace(second=0, microsecond=0) + timedelta(minutes=1)


def next_weekday_occurrence(after: datetime, hour: int, minute: int, tz: ZoneInfo,
                            offset: timedelta = timedelta(0)) -> datetime:
    """
    Next weekday hour:minute in tz, shifted by offset, strictly after `after`.

    The weekday is that of the unshifted trigger, so a late reminder for a
    Friday trigger still fires even if the offset crosses midnight.
    """
    start_day = (after - offset).astimezone(tz).date()
    for days_ahead in range(0, 9):
        day = start_day + timedelta(days=days_ahead)
        if day.weekday() >= 5:
            continue
        trigger = datetime.combine(day, time(hour, minute), tzinfo=tz).astimezone(timezone.utc)
        fire_at = trigger + offset
        if fire_at > after:
            return fire_at
    raise RuntimeError("No weekday occurrence found")


@dataclass
class TickResult:
    """Outcome of one evaluation tick"""
    matched: List[Subscriber] = field(default_factory=list)
    invalid_timezone: List[Subscriber] = field(default_factory=list)


class TriggerClock:
    """Per-subscriber trigger matching"""

    def __init__(self, reference_tz: ZoneInfo):
        self.reference_tz = reference_tz
        # user_id -> local date of the last match
        self._matched_on: Dict[str, date] = {}

    def reference_today(self, now: datetime) -> date:
        return now.astimezone(self.reference_tz).date()

    def is_weekday(self, now: datetime) -> bool:
        return now.astimezone(self.reference_tz).weekday() < 5

    def next_tick(self, after: datetime) -> datetime:
        """Next minute boundary that falls on a reference-timezone weekday"""
        candidate = next_minute_boundary(after)
        local = candidate.astimezone(self.reference_tz)
        if local.weekday() >= 5:
            monday = local.date() + timedelta(days=7 - local.weekday())
            candidate = datetime.combine(monday, time(0, 0), tzinfo=self.reference_tz).astimezone(timezone.utc)
        return candidate

    @staticmethod
    def matches_local_time(local_now: datetime, settings: ScheduleSettings) -> bool:
        return local_now.hour == settings.standup_hour and local_now.minute == settings.standup_minute

    def evaluate(self, subscribers: Iterable[Subscriber], now: datetime,
                 settings: ScheduleSettings) -> TickResult:
        """Subscribers whose standup opens at this tick"""
        result = TickResult()
        if not self.is_weekday(now):
            return result

        today = self.reference_today(now)
        for subscriber in subscribers:
            if not subscriber.is_active_on(today):
                continue

            tz = resolve_timezone(subscriber.timezone)
            if tz is None:
                logger.warning(f"Skipping user {subscriber.user_id}: invalid timezone {subscriber.timezone!r}")
                result.invalid_timezone.append(subscriber)
                continue

            local_now = now.astimezone(tz)
            if not self.matches_local_time(local_now, settings):
                continue

            if self._matched_on.get(subscriber.user_id) == local_now.date():
                logger.info(f"User {subscriber.user_id} already matched on {local_now.date().isoformat()}")
                continue

            self._matched_on[subscriber.user_id] = local_now.date()
            result.matched.append(subscriber)

        self._forget_before(today - timedelta(days=2))
        return result

    def _forget_before(self, cutoff: date) -> None:
        stale = [user_id for user_id, day in self._matched_on.items() if day < cutoff]
        for user_id in stale:
            del self._matched_on[user_id]
