"""
Slack Integration Module

Slack transport for the standup bot:
- `/standup` slash command and DM answers
- Channel membership checks and DM delivery
"""

from .core_slack_orchestration import SlackInterface, create_slack_app

__all__ = ['SlackInterface', 'create_slack_app']
