"""
Slack Cache Service

Keeps Slack lookups off the hot path of every command and DM:
- Standup channel membership, refreshed after a TTL
- Direct message channel IDs per user
"""

import time
import asyncio
import logging
from typing import Dict, Any, Optional, Set

logger = logging.getLogger(__name__)


class SlackCacheService:
    """Centralized caching service for Slack operations"""

    def __init__(self, channel_id: str, cache_ttl: int = 300):
        self.channel_id = channel_id
        self.cache_ttl = cache_ttl

        self.member_cache: Set[str] = set()
        self.members_fetched_at: Optional[float] = None
        self.dm_channel_cache: Dict[str, str] = {}  # { 'USER_ID': 'DM_CHANNEL_ID' }

        self._refresh_lock = asyncio.Lock()

    def _members_stale(self) -> bool:
        if self.members_fetched_at is None:
            return True
        return time.monotonic() - self.members_fetched_at > self.cache_ttl

    # === Channel Membership ===

    async def refresh_members(self, slack_client) -> Set[str]:
        """Fetch every member of the standup channel"""
        members: Set[str] = set()
        async for page in await slack_client.conversations_members(channel=self.channel_id, limit=1000):
            members.update(page.get("members", []))

        self.member_cache = members
        self.members_fetched_at = time.monotonic()
        logger.info(f"Member cache populated with {len(members)} members of {self.channel_id}")
        return members

    async def is_member(self, user_id: str, slack_client) -> bool:
        """Is the user a member of the standup channel? Uses the cache within its TTL"""
        if not self._members_stale() and user_id in self.member_cache:
            return True

        async with self._refresh_lock:
            # Someone else may have refreshed while we waited
            if self._members_stale() or user_id not in self.member_cache:
                try:
                    await self.refresh_members(slack_client)
                except Exception as e:
                    logger.error(f"Error fetching members of {self.channel_id}: {e}")
                    if self.members_fetched_at is None:
                        return False
                    # Fall back to the last known membership
            return user_id in self.member_cache

    # === DM Channel Cache ===

    async def get_dm_channel(self, user_id: str, slack_client) -> str:
        """Open (or reuse) the direct message channel with a user"""
        if user_id in self.dm_channel_cache:
            return self.dm_channel_cache[user_id]

        response = await slack_client.conversations_open(users=user_id)
        channel_id = response["channel"]["id"]
        self.dm_channel_cache[user_id] = channel_id
        return channel_id

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "member_cache_count": len(self.member_cache),
            "dm_channel_cache_count": len(self.dm_channel_cache),
            "members_stale": self._members_stale(),
            "cache_ttl": self.cache_ttl,
        }
