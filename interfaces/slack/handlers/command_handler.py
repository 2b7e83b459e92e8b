"""
Slack Standup Command Handler

Executes `/standup` intents and DM answers on behalf of one caller. Every
entry point first checks that the caller belongs to the standup channel;
admin intents additionally need an admin subscriber.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from runtime.commands import (
    ADMIN_COMMANDS, BackCommand, HelpCommand, LateReminderCommand, LateReminderHoursCommand,
    MembersCommand, ReplayCommand, SetTimeCommand, SkipCommand, StartInterviewCommand,
    StatusCommand, SubscribeCommand, SummaryCommand, TimezoneCommand, UnsubscribeCommand,
    VacationCommand, parse_command,
)
from runtime.errors import AuthorizationError, NotSubscribedError, StandupError, ValidationError
from runtime.formatting import (
    format_help, format_late_reminder_settings, format_members, format_period_summary,
    format_replay, format_status, format_timezone_help,
)
from runtime.interview import InterviewEngine
from runtime.jobs import utc_now
from runtime.orchestrator import StandupOrchestrator
from runtime.transport import StandupTransport

logger = logging.getLogger(__name__)

NOT_A_MEMBER_MESSAGE = "⚠️ This bot is only available to members of the standup channel."
GENERIC_ERROR_MESSAGE = "❌ Sorry, there was an error processing your request. Please try again later."
NOT_SUBSCRIBED_MESSAGE = "⚠️ You need to `/standup subscribe` first."


class StandupCommandHandler:
    """Runs parsed standup commands against the engine, database and orchestrator"""

    def __init__(self, db, transport: StandupTransport, engine: InterviewEngine,
                 orchestrator: StandupOrchestrator, reference_tz: ZoneInfo,
                 user_service=None, now_fn: Callable[[], datetime] = utc_now):
        self.db = db
        self.transport = transport
        self.engine = engine
        self.orchestrator = orchestrator
        self.reference_tz = reference_tz
        self.user_service = user_service
        self.now_fn = now_fn

        self._handlers = {
            HelpCommand: self._help,
            StartInterviewCommand: self._start,
            SubscribeCommand: self._subscribe,
            UnsubscribeCommand: self._unsubscribe,
            SkipCommand: self._skip,
            MembersCommand: self._members,
            ReplayCommand: self._replay,
            StatusCommand: self._status,
            SummaryCommand: self._summary,
            VacationCommand: self._vacation,
            BackCommand: self._back,
            TimezoneCommand: self._timezone,
            SetTimeCommand: self._set_time,
            LateReminderCommand: self._late_reminder,
            LateReminderHoursCommand: self._late_reminder_hours,
        }

    def _today(self):
        return self.now_fn().astimezone(self.reference_tz).date()

    async def _require_member(self, user_id: str) -> None:
        if not await self.transport.is_channel_member(user_id):
            raise AuthorizationError(NOT_A_MEMBER_MESSAGE)

    # ========================= ENTRY POINTS =========================

    async def handle_command(self, user_id: str, username: str, text: Optional[str]) -> str:
        """Reply text for `/standup <text>`; never raises"""
        try:
            await self._require_member(user_id)
            command = parse_command(text)
            logger.info(f"User {user_id} ran {type(command).__name__}")

            if isinstance(command, ADMIN_COMMANDS) and not await self.db.is_admin(user_id):
                raise AuthorizationError()

            return await self._handlers[type(command)](command, user_id, username)
        except StandupError as e:
            logger.info(f"Command from user {user_id} rejected: {type(e).__name__}")
            return e.user_message
        except Exception as e:
            logger.error(f"Error handling command {text!r} from user {user_id}: {e}")
            return GENERIC_ERROR_MESSAGE

    async def handle_direct_message(self, user_id: str, text: str) -> None:
        """Free text in a DM; answers the open standup question, if any"""
        try:
            await self._require_member(user_id)
            await self.engine.handle_answer(user_id, text)
        except StandupError as e:
            await self._notify(user_id, e.user_message)
        except Exception as e:
            logger.error(f"Error handling message from user {user_id}: {e}")
            await self._notify(user_id, GENERIC_ERROR_MESSAGE)

    async def _notify(self, user_id: str, text: str) -> None:
        try:
            await self.transport.send_to_participant(user_id, text)
        except Exception as e:
            logger.error(f"Could not notify user {user_id}: {e}")

    # ========================= PARTICIPANT COMMANDS =========================

    async def _help(self, command, user_id, username) -> str:
        is_admin = await self.db.is_admin(user_id)
        return format_help(is_admin, self.orchestrator.settings, self.reference_tz.key)

    async def _start(self, command, user_id, username) -> str:
        await self.engine.start_interview(user_id, username)
        return "📬 Your standup has started. Answer the questions in our direct messages."

    async def _subscribe(self, command, user_id, username) -> str:
        if await self.db.is_subscribed(user_id):
            return "⚠️ You are already subscribed to daily standups!"
        await self.db.add_subscriber(user_id, username, self.reference_tz.key, self.now_fn())
        return (
            "✅ You have been subscribed to daily standups!\n"
            f"You will receive the questions at {self.orchestrator.settings.time_label} "
            f"in your timezone (currently `{self.reference_tz.key}`), Monday to Friday.\n"
            "Use `/standup timezone` to change it."
        )

    async def _unsubscribe(self, command, user_id, username) -> str:
        if not await self.db.is_subscribed(user_id):
            return "⚠️ You are not subscribed to daily standups!"
        await self.db.remove_subscriber(user_id)
        return "✅ You have been unsubscribed from daily standups."

    async def _skip(self, command, user_id, username) -> str:
        if not self.engine.has_session(user_id):
            return "⚠️ There is no standup in progress. Use `/standup` to start one."
        response = await self.engine.handle_skip(user_id)
        if response is not None:
            return "✅ Standup submitted."
        return "⏭ Question skipped."

    async def _members(self, command, user_id, username) -> str:
        return format_members(await self.db.get_all_subscribers())

    async def _replay(self, command, user_id, username) -> str:
        return format_replay(await self.db.get_standups_for_day(self._today()), self.reference_tz)

    async def _status(self, command, user_id, username) -> str:
        return format_status(await self.db.get_standup_status(self._today()), self.reference_tz)

    async def _summary(self, command: SummaryCommand, user_id, username) -> str:
        end = self._today()
        start = end - timedelta(days=command.days - 1)
        responses = await self.db.get_standups_between(start, end)
        return format_period_summary(responses, start, end, self.reference_tz)

    async def _vacation(self, command: VacationCommand, user_id, username) -> str:
        if not await self.db.is_subscribed(user_id):
            raise NotSubscribedError(NOT_SUBSCRIBED_MESSAGE)
        if command.until < self._today():
            raise ValidationError("⚠️ The vacation end date cannot be in the past.")
        await self.db.set_vacation(user_id, command.until)
        return (
            f"🏖 Vacation mode enabled until {command.until.strftime('%d/%m/%Y')}.\n"
            "You won't receive standup questions until then. Use `/standup back` to return early."
        )

    async def _back(self, command, user_id, username) -> str:
        subscriber = await self.db.get_subscriber(user_id)
        if subscriber is None:
            raise NotSubscribedError(NOT_SUBSCRIBED_MESSAGE)
        if not subscriber.is_on_vacation:
            return "⚠️ You are not on vacation mode."
        await self.db.clear_vacation(user_id)
        return "👋 Welcome back! You will receive standup questions again."

    async def _timezone(self, command: TimezoneCommand, user_id, username) -> str:
        if not await self.db.is_subscribed(user_id):
            raise NotSubscribedError(NOT_SUBSCRIBED_MESSAGE)

        if command.timezone is None:
            current = await self.db.get_user_timezone(user_id)
            profile = await self.user_service.get_user_timezone(user_id) if self.user_service else None
            return format_timezone_help(current, profile)

        await self.db.set_user_timezone(user_id, command.timezone)
        local_now = self.now_fn().astimezone(ZoneInfo(command.timezone))
        return (
            f"✅ Your timezone has been set to `{command.timezone}`\n"
            f"Current time in your timezone: {local_now.strftime('%H:%M')}"
        )

    # ========================= ADMIN COMMANDS =========================

    async def _set_time(self, command: SetTimeCommand, user_id, username) -> str:
        settings = await self.orchestrator.set_standup_time(command.hour, command.minute)
        return (
            f"✅ Daily standup time has been set to {settings.time_label}\n"
            "Members will receive the questions at this time in their own timezone."
        )

    async def _late_reminder(self, command: LateReminderCommand, user_id, username) -> str:
        settings = await self.orchestrator.set_late_reminder_enabled(command.enabled)
        headline = f"✅ Late reminders have been {'enabled' if command.enabled else 'disabled'}."
        return format_late_reminder_settings(settings, headline)

    async def _late_reminder_hours(self, command: LateReminderHoursCommand, user_id, username) -> str:
        settings = await self.orchestrator.set_late_reminder_hours(command.hours)
        headline = f"✅ Late reminders will be sent {command.hours} hours after the standup time."
        return format_late_reminder_settings(settings, headline)
