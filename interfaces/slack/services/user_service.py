"""
Slack User Service

Resolves Slack user IDs to the handles shown in standup posts and reads the
timezone a user set in their Slack profile.
"""

import logging
from typing import Dict, Optional

from runtime.trigger_clock import resolve_timezone

logger = logging.getLogger(__name__)


class SlackUserService:
    """Service for Slack user handles and profile timezones"""

    def __init__(self, slack_client=None):
        self.slack_client = slack_client
        self.handle_cache: Dict[str, str] = {}  # { 'USER_ID': 'handle' }

        # Timezone mapping for common labels to IANA identifiers
        self.timezone_mapping = {
            "Eastern Standard Time": "America/New_York",
            "Eastern Daylight Time": "America/New_York",
            "Central Standard Time": "America/Chicago",
            "Central Daylight Time": "America/Chicago",
            "Mountain Standard Time": "America/Denver",
            "Mountain Daylight Time": "America/Denver",
            "Pacific Standard Time": "America/Los_Angeles",
            "Pacific Daylight Time": "America/Los_Angeles",
            "Greenwich Mean Time": "Europe/London",
            "British Summer Time": "Europe/London",
            "Western European Time": "Europe/Lisbon",
            "Western European Summer Time": "Europe/Lisbon",
            "Central European Time": "Europe/Paris",
            "Central European Summer Time": "Europe/Paris",
            "Eastern European Time": "Europe/Bucharest",
            "Eastern European Summer Time": "Europe/Bucharest"
        }

    async def _fetch_user(self, user_id: str) -> Optional[dict]:
        if not self.slack_client:
            logger.error("Slack client not set - cannot fetch user info")
            return None

        response = await self.slack_client.users_info(user=user_id)
        if not response["ok"]:
            logger.error(f"Slack API error for user {user_id}: {response.get('error')}")
            return None
        return response["user"]

    async def get_handle(self, user_id: str, fallback: Optional[str] = None) -> str:
        """
        Handle used in standup posts: the Slack username.

        Falls back to the given name (e.g. `user_name` from a slash command
        payload), then the user ID, when Slack can't be reached.
        """
        if user_id in self.handle_cache:
            return self.handle_cache[user_id]

        try:
            user_info = await self._fetch_user(user_id)
        except Exception as e:
            logger.error(f"Error getting user info for {user_id}: {e}")
            user_info = None

        if not user_info:
            return fallback or user_id

        handle = user_info.get("name") or user_info.get("profile", {}).get("display_name") or fallback or user_id
        self.handle_cache[user_id] = handle
        return handle

    async def get_user_timezone(self, user_id: str) -> Optional[str]:
        """Timezone from the user's Slack profile, if it is a known IANA zone"""
        try:
            user_info = await self._fetch_user(user_id)
        except Exception as e:
            logger.error(f"Error getting user timezone for {user_id}: {e}")
            return None

        if not user_info:
            return None

        timezone = user_info.get("tz")
        if timezone and resolve_timezone(timezone):
            logger.info(f"Found timezone for user {user_id}: {timezone}")
            return timezone

        # Fallback: try to get from tz_label
        tz_label = user_info.get("tz_label")
        if tz_label and tz_label in self.timezone_mapping:
            mapped_tz = self.timezone_mapping[tz_label]
            logger.info(f"Mapped {tz_label} to {mapped_tz} for user {user_id}")
            return mapped_tz

        logger.warning(f"Could not get timezone for user {user_id}")
        return None
