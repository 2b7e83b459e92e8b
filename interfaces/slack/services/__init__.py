"""
Slack Business Logic Services

- Channel membership and DM channel caching
- User handle and profile timezone lookup
"""

from .cache_service import SlackCacheService
from .user_service import SlackUserService

__all__ = ['SlackCacheService', 'SlackUserService']
