"""
Standup command intents

`/standup <subcommand> [args]` is parsed once, at the edge, into a typed
intent with validated arguments. Handlers never look at raw text again.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from .errors import ValidationError
from .trigger_clock import resolve_timezone

MAX_SUMMARY_DAYS = 7


@dataclass(frozen=True)
class HelpCommand:
    pass


@dataclass(frozen=True)
class StartInterviewCommand:
    pass


@dataclass(frozen=True)
class SubscribeCommand:
    pass


@dataclass(frozen=True)
class UnsubscribeCommand:
    pass


@dataclass(frozen=True)
class SkipCommand:
    pass


@dataclass(frozen=True)
class MembersCommand:
    pass


@dataclass(frozen=True)
class ReplayCommand:
    pass


@dataclass(frozen=True)
class StatusCommand:
    pass


@dataclass(frozen=True)
class SummaryCommand:
    days: int = MAX_SUMMARY_DAYS


@dataclass(frozen=True)
class VacationCommand:
    until: date


@dataclass(frozen=True)
class BackCommand:
    pass


@dataclass(frozen=True)
class TimezoneCommand:
    timezone: Optional[str] = None


@dataclass(frozen=True)
class SetTimeCommand:
    hour: int
    minute: int


@dataclass(frozen=True)
class LateReminderCommand:
    enabled: bool


@dataclass(frozen=True)
class LateReminderHoursCommand:
    hours: int


Command = Union[
    HelpCommand, StartInterviewCommand, SubscribeCommand, UnsubscribeCommand, SkipCommand,
    MembersCommand, ReplayCommand, StatusCommand, SummaryCommand, VacationCommand, BackCommand,
    TimezoneCommand, SetTimeCommand, LateReminderCommand, LateReminderHoursCommand,
]

ADMIN_COMMANDS = (SetTimeCommand, LateReminderCommand, LateReminderHoursCommand)

VACATION_USAGE = (
    "⚠️ Please provide an end date for your vacation.\n"
    "Usage: `/standup vacation dd/mm/yyyy`\n"
    "Example: `/standup vacation 31/12/2026`"
)
SET_TIME_USAGE = (
    "⚠️ Please provide a valid time in 24h format.\n"
    "Usage: `/standup set_time HH:mm` or `/standup set_time HH`\n"
    "Examples:\n"
    "• `/standup set_time 9:30` for 9:30 AM\n"
    "• `/standup set_time 14:15` for 2:15 PM\n"
    "• `/standup set_time 9` for 9:00 AM"
)

_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?$")
_TIMEZONE_RE = re.compile(r"^[A-Za-z_]+(?:/[A-Za-z0-9_+\-]+)+$")

_SIMPLE_COMMANDS = {
    "": StartInterviewCommand,
    "start": HelpCommand,
    "help": HelpCommand,
    "subscribe": SubscribeCommand,
    "unsubscribe": UnsubscribeCommand,
    "skip": SkipCommand,
    "members": MembersCommand,
    "replay": ReplayCommand,
    "status": StatusCommand,
    "back": BackCommand,
}


def parse_vacation_date(text: str) -> date:
    match = _DATE_RE.match(text)
    if not match:
        raise ValidationError(VACATION_USAGE)
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        raise ValidationError(
            "⚠️ Please provide a valid date in format dd/mm/yyyy.\n"
            "Example: `/standup vacation 31/12/2026`"
        )


def parse_time(text: str):
    match = _TIME_RE.match(text)
    if not match:
        raise ValidationError(SET_TIME_USAGE)
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValidationError(SET_TIME_USAGE)
    return hour, minute


def parse_timezone(text: str) -> str:
    if not _TIMEZONE_RE.match(text) or resolve_timezone(text) is None:
        raise ValidationError("⚠️ Invalid timezone. Use `/standup timezone` to see the list of valid timezones.")
    return text


def parse_command(text: Optional[str]) -> Command:
    """Turn the text after `/standup` into a command intent"""
    parts = (text or "").strip().split()
    name = parts[0].lower() if parts else ""
    # Tolerate a leading slash and a bot-name suffix, e.g. "skip@standupbot"
    name = name.lstrip("/").split("@", 1)[0]
    args = parts[1:]

    if name in _SIMPLE_COMMANDS:
        return _SIMPLE_COMMANDS[name]()

    if name == "summary":
        if not args:
            return SummaryCommand()
        if not args[0].isdigit() or not (1 <= int(args[0]) <= MAX_SUMMARY_DAYS):
            raise ValidationError(f"⚠️ Please specify a number of days between 1 and {MAX_SUMMARY_DAYS}.")
        return SummaryCommand(days=int(args[0]))

    if name == "vacation":
        if not args:
            raise ValidationError(VACATION_USAGE)
        return VacationCommand(until=parse_vacation_date(args[0]))

    if name == "timezone":
        if not args:
            return TimezoneCommand()
        return TimezoneCommand(timezone=parse_timezone(args[0]))

    if name == "set_time":
        if not args:
            raise ValidationError(SET_TIME_USAGE)
        hour, minute = parse_time(args[0])
        return SetTimeCommand(hour=hour, minute=minute)

    if name == "late_reminder":
        if not args or args[0].lower() not in ("on", "off"):
            raise ValidationError("⚠️ Usage: `/standup late_reminder on|off`")
        return LateReminderCommand(enabled=args[0].lower() == "on")

    if name == "late_reminder_hours":
        if not args or not args[0].isdigit():
            raise ValidationError("⚠️ Please specify a number of hours between 1 and 12.")
        return LateReminderHoursCommand(hours=int(args[0]))

    return HelpCommand()
