"""
Slack Event and Command Handlers

- `/standup` slash command dispatch
- Direct message answers to standup questions
"""

from .command_handler import StandupCommandHandler

__all__ = ['StandupCommandHandler']
