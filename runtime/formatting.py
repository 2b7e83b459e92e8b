"""
Message formatting for standup summaries and reports (Slack mrkdwn)
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from .models import ScheduleSettings, StandupResponse, StandupStatusEntry, Subscriber

SEPARATOR = "\n\n──────────────\n\n"

COMMON_TIMEZONES = (
    "Europe/London",
    "Europe/Lisbon",
    "Europe/Paris",
    "America/New_York",
    "America/Los_Angeles",
    "Asia/Tokyo",
)


def format_timestamp(moment: datetime, tz: ZoneInfo) -> str:
    """e.g. 18 Oct 2026, 09:42"""
    return moment.astimezone(tz).strftime("%d %b %Y, %H:%M")


def format_standup_summary(response: StandupResponse, tz: ZoneInfo) -> str:
    """Channel post for one standup; skipped sections are left out"""
    message = f"📊 *Daily Standup - @{response.username}*\n\n"

    if response.yesterday and response.yesterday.strip():
        message += f"⏪ *Yesterday:*\n{response.yesterday}\n\n"

    message += f"⏩ *Today:*\n{response.today}"

    if response.blockers and response.blockers.strip():
        message += f"\n\n🚧 *Blockers:*\n{response.blockers}"

    message += f"\n\n🕐 *Submitted:* {format_timestamp(response.submitted_at, tz)}"
    return message


def format_replay(responses: Sequence[StandupResponse], tz: ZoneInfo) -> str:
    if not responses:
        return "📭 No standups have been submitted today."
    return "📋 *Today's Standups:*\n\n" + SEPARATOR.join(
        format_standup_summary(response, tz) for response in responses
    )


def format_members(subscribers: Sequence[Subscriber]) -> str:
    if not subscribers:
        return "👥 No members are currently subscribed."
    return "👥 Subscribed Members:\n\n" + "\n".join(f"• @{sub.username}" for sub in subscribers)


def format_status(entries: Sequence[StandupStatusEntry], tz: ZoneInfo) -> str:
    """Who has submitted, who is pending and who is away today"""
    if not entries:
        return "👥 No members are currently subscribed."

    submitted = [e for e in entries if e.has_submitted]
    pending = [e for e in entries if not e.has_submitted and not e.is_on_vacation]
    on_vacation = [e for e in entries if e.is_on_vacation and not e.has_submitted]

    message = "📊 Standup Status Report\n\n"

    if submitted:
        lines = []
        for entry in submitted:
            when = entry.submitted_at.astimezone(tz).strftime("%H:%M") if entry.submitted_at else "?"
            lines.append(f"• @{entry.username} ({when})")
        message += "✅ Submitted:\n" + "\n".join(lines) + "\n\n"

    if pending:
        message += "⏳ Pending:\n" + "\n".join(f"• @{e.username}" for e in pending) + "\n\n"

    if on_vacation:
        lines = []
        for entry in on_vacation:
            until = f" (until {entry.vacation_until.strftime('%d/%m/%Y')})" if entry.vacation_until else ""
            lines.append(f"• @{entry.username}{until}")
        message += "🏖 On Vacation:\n" + "\n".join(lines) + "\n\n"

    message += f"📈 Participation: {len(submitted)}/{len(entries) - len(on_vacation)} members"
    return message


def format_period_summary(responses: Sequence[StandupResponse], start: date, end: date, tz: ZoneInfo) -> str:
    """Standups over a date range, newest day first"""
    if not responses:
        return f"📭 No standups between {start.strftime('%d/%m/%Y')} and {end.strftime('%d/%m/%Y')}."

    by_day: Dict[date, List[StandupResponse]] = {}
    for response in responses:
        by_day.setdefault(response.submission_date, []).append(response)

    sections = []
    for day in sorted(by_day, reverse=True):
        header = f"📅 *{day.strftime('%A %d/%m/%Y')}* ({len(by_day[day])} standups)"
        body = SEPARATOR.join(format_standup_summary(r, tz) for r in by_day[day])
        sections.append(f"{header}\n\n{body}")

    return (
        f"🗂 *Standup Summary {start.strftime('%d/%m/%Y')} - {end.strftime('%d/%m/%Y')}*\n\n"
        + "\n\n".join(sections)
    )


def format_timezone_help(current_timezone: str, profile_timezone: Optional[str] = None) -> str:
    lines = [
        "🌍 Set your timezone using `/standup timezone Region/City`",
        "",
        f"Your current timezone is: `{current_timezone}`",
    ]
    if profile_timezone and profile_timezone != current_timezone:
        lines.append(f"Your Slack profile says: `{profile_timezone}`")
    lines.extend(["", "Common timezones:"])
    lines.extend(f"• `{zone}`" for zone in COMMON_TIMEZONES)
    lines.extend([
        "",
        "<https://en.wikipedia.org/wiki/List_of_tz_database_time_zones|View all available timezones>",
    ])
    return "\n".join(lines)


def format_late_reminder_settings(settings: ScheduleSettings, headline: Optional[str] = None) -> str:
    message = f"{headline}\n" if headline else ""
    return (
        message
        + "Current settings:\n"
        + f"• Enabled: {'Yes' if settings.late_reminder_enabled else 'No'}\n"
        + f"• Hours to wait: {settings.late_reminder_hours}"
    )


def format_help(is_admin: bool, settings: ScheduleSettings, reference_timezone: str) -> str:
    message = (
        "👋 Welcome to the Daily Standup Bot!\n\n"
        f"Standups start at {settings.time_label} your local time, Monday to Friday.\n\n"
        "📋 Available commands:\n"
        "• `/standup subscribe` - Start receiving daily standup questions\n"
        "• `/standup unsubscribe` - Stop receiving daily standup questions\n"
        "• `/standup` - Start a standup session now\n"
        "• `/standup skip` - Skip an optional question (only during standup)\n"
        "• `/standup replay` - Show all standups submitted today\n"
        "• `/standup status` - Show today's standup status\n"
        "• `/standup summary [days]` - Show standup summary\n"
        "• `/standup members` - List all subscribed members\n"
        "• `/standup vacation dd/mm/yyyy` - Set vacation mode until date\n"
        "• `/standup back` - Return from vacation\n"
        "• `/standup timezone [Region/City]` - Show or set your timezone"
    )
    if is_admin:
        message += (
            "\n\n👑 Admin commands:\n"
            f"• `/standup set_time HH:mm` - Set daily standup time (24h, {reference_timezone} reference)\n"
            "• `/standup late_reminder on|off` - Enable/disable late reminders\n"
            "• `/standup late_reminder_hours N` - Hours to wait before the late reminder (1-12)"
        )
    return message
