"""
Standup Error Taxonomy

Every error raised by the standup engine carries a user-facing message so the
command layer can reply to the participant without inspecting the type:
- ValidationError: malformed command arguments
- AuthorizationError: non-admin or non-member callers
- ConflictError: session already open, skip not allowed
- NotSubscribedError: operation needs an active subscription
- TransientIOError: database or Slack failures
"""

from typing import Optional


class StandupError(Exception):
    """Base error with a user-friendly message"""

    default_message = "❌ Sorry, something went wrong. Please try again later."

    def __init__(self, message: Optional[str] = None):
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class ValidationError(StandupError):
    default_message = "⚠️ Invalid command arguments."


class AuthorizationError(StandupError):
    default_message = "⚠️ This command is only available to administrators."


class ConflictError(StandupError):
    default_message = "⚠️ That action is not possible right now."


class SessionAlreadyOpenError(ConflictError):
    default_message = "You already have an ongoing standup session. Please complete it first."


class SkipNotAllowedError(ConflictError):
    default_message = "⚠️ This question cannot be skipped. Please provide an answer."


class NotSubscribedError(StandupError):
    default_message = "You need to `/standup subscribe` first."


class TransientIOError(StandupError):
    default_message = "❌ Sorry, there was an error processing your request. Please try again later."


class ConfigurationError(Exception):
    """Unusable startup configuration (fatal to the process)"""
    pass
