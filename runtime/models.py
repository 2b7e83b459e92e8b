"""
Data models for the standup engine
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Optional


@dataclass
class Subscriber:
    """A participant subscribed to daily standups"""
    user_id: str
    username: str
    timezone: str
    is_on_vacation: bool = False
    vacation_until: Optional[date] = None
    subscribed_at: Optional[datetime] = None

    def is_on_vacation_on(self, today: date) -> bool:
        """Vacation counts only while the end date has not passed"""
        if not self.is_on_vacation:
            return False
        if self.vacation_until is None:
            return True
        return self.vacation_until >= today

    def is_active_on(self, today: date) -> bool:
        return not self.is_on_vacation_on(today)


@dataclass
class StandupResponse:
    """A submitted standup; blank yesterday/blockers mean skipped"""
    user_id: str
    username: str
    yesterday: str
    today: str
    blockers: str
    submitted_at: datetime
    submission_date: date


@dataclass
class LateReminderRecord:
    """One late reminder sent to a subscriber on a standup day"""
    user_id: str
    sent_date: date
    sent_at: datetime


@dataclass(frozen=True)
class ScheduleSettings:
    """Process-wide schedule; replaced as a whole, never mutated in place"""
    standup_hour: int = 9
    standup_minute: int = 0
    late_reminder_enabled: bool = True
    late_reminder_hours: int = 4

    def with_time(self, hour: int, minute: int) -> "ScheduleSettings":
        return replace(self, standup_hour=hour, standup_minute=minute)

    def with_late_reminder(self, enabled: Optional[bool] = None,
                           hours: Optional[int] = None) -> "ScheduleSettings":
        return replace(
            self,
            late_reminder_enabled=self.late_reminder_enabled if enabled is None else enabled,
            late_reminder_hours=self.late_reminder_hours if hours is None else hours,
        )

    @property
    def time_label(self) -> str:
        return f"{self.standup_hour:02d}:{self.standup_minute:02d}"


@dataclass
class StandupStatusEntry:
    """Per-subscriber row of today's status report"""
    username: str
    has_submitted: bool
    is_on_vacation: bool
    vacation_until: Optional[date] = None
    submitted_at: Optional[datetime] = None
