import logging
from typing import Dict, Any, Optional

from slack_bolt.async_app import AsyncApp
from slack_bolt.adapter.fastapi.async_handler import AsyncSlackRequestHandler

from database import StandupDatabase, get_database
from runtime.config import StandupConfig
from runtime.errors import ConfigurationError, TransientIOError
from runtime.interview import InterviewEngine
from runtime.late_reminders import LateReminderDebouncer
from runtime.orchestrator import StandupOrchestrator
from runtime.transport import StandupTransport
from runtime.trigger_clock import TriggerClock

from .services.cache_service import SlackCacheService
from .services.user_service import SlackUserService
from .handlers.command_handler import StandupCommandHandler

logger = logging.getLogger(__name__)


class SlackInterface(StandupTransport):
    """
    Slack side of the standup bot: `/standup` commands and DMs in,
    questions, reminders and channel posts out
    """

    def __init__(self, config: StandupConfig, db: Optional[StandupDatabase] = None,
                 app: Optional[AsyncApp] = None):
        self.config = config
        self.channel_id = config.channel_id

        # Initialize Slack app
        self.app = app or AsyncApp(
            token=config.slack_bot_token,
            signing_secret=config.slack_signing_secret
        )

        self.db = db or get_database(config)

        # Initialize modular services
        self.cache_service = SlackCacheService(config.channel_id)
        self.user_service = SlackUserService(self.app.client)

        reference_tz = config.reference_tz
        self.engine = InterviewEngine(self.db, self, reference_tz)
        self.orchestrator = StandupOrchestrator(
            self.db, self.engine, TriggerClock(reference_tz),
            LateReminderDebouncer(self.db, self),
            retention_days=config.retention_days,
        )
        self.command_handler = StandupCommandHandler(
            self.db, self, self.engine, self.orchestrator, reference_tz,
            user_service=self.user_service,
        )

        # Setup handlers
        self._setup_handlers()

        # Create FastAPI handler
        self.handler = AsyncSlackRequestHandler(self.app)

    def _setup_handlers(self):
        """Register the slash command and DM handlers"""

        @self.app.command("/standup")
        async def handle_standup_command(ack, command, respond):
            # Ack within Slack's 3s window, reply afterwards
            await ack()
            await self._handle_command(command, respond)

        @self.app.event("message")
        async def handle_message(event):
            await self._handle_message(event)

    async def _handle_command(self, command: Dict[str, Any], respond):
        user_id = command.get("user_id")
        username = await self.user_service.get_handle(user_id, fallback=command.get("user_name"))
        reply = await self.command_handler.handle_command(user_id, username, command.get("text", ""))
        if reply:
            try:
                await respond(text=reply, response_type="ephemeral")
            except Exception as e:
                logger.error(f"Failed to respond to /standup from user {user_id}: {e}")

    async def _handle_message(self, event: Dict[str, Any]):
        """Direct messages are answers to the open standup question"""
        # Skip bot messages, edits and joins
        if event.get("bot_id") or event.get("subtype"):
            return
        if event.get("channel_type") != "im":
            return

        user_id = event.get("user")
        message_text = (event.get("text") or "").strip()
        if not user_id or not message_text:
            return

        logger.info(f"DM from user {user_id}: {message_text[:50]}...")
        await self.command_handler.handle_direct_message(user_id, message_text)

    # ========================= TRANSPORT =========================

    async def send_to_participant(self, user_id: str, text: str) -> None:
        try:
            channel = await self.cache_service.get_dm_channel(user_id, self.app.client)
            await self.app.client.chat_postMessage(channel=channel, text=text, mrkdwn=True)
        except Exception as e:
            logger.error(f"Failed to send DM to user {user_id}: {e}")
            raise TransientIOError() from e

    async def send_to_channel(self, text: str) -> None:
        try:
            await self.app.client.chat_postMessage(channel=self.channel_id, text=text, mrkdwn=True)
        except Exception as e:
            logger.error(f"Failed to post to channel {self.channel_id}: {e}")
            raise TransientIOError() from e

    async def is_channel_member(self, user_id: str) -> bool:
        return await self.cache_service.is_member(user_id, self.app.client)

    # ========================= LIFECYCLE =========================

    async def verify_channel_access(self) -> None:
        """The bot must be able to read and post in the standup channel"""
        try:
            auth = await self.app.client.auth_test()
            info = await self.app.client.conversations_info(channel=self.channel_id)
        except Exception as e:
            raise ConfigurationError(f"Cannot access standup channel {self.channel_id}: {e}") from e

        if not info["channel"].get("is_member"):
            raise ConfigurationError(
                f"Bot user {auth.get('user_id')} is not a member of channel {self.channel_id}; invite it first"
            )
        await self.cache_service.refresh_members(self.app.client)
        logger.info(f"Bot has access to standup channel #{info['channel'].get('name', self.channel_id)}")

    async def start(self) -> None:
        await self.db.initialize()
        await self.verify_channel_access()
        await self.orchestrator.start()

    async def stop(self) -> None:
        await self.orchestrator.stop()
        await self.db.close()

    def get_fastapi_handler(self):
        """Get FastAPI handler for webhook integration"""
        return self.handler


# For FastAPI integration
def create_slack_app(config: StandupConfig) -> SlackInterface:
    """Create the Slack interface for FastAPI"""
    return SlackInterface(config)
