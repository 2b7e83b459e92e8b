"""
Messaging transport contract used by the standup engine.

Implementations wrap their client errors into TransientIOError so the engine
can treat every transport failure the same way.
"""

from abc import ABC, abstractmethod


class StandupTransport(ABC):
    """Outbound messaging primitives"""

    @abstractmethod
    async def send_to_participant(self, user_id: str, text: str) -> None:
        """Send a direct message to one participant"""

    @abstractmethod
    async def send_to_channel(self, text: str) -> None:
        """Post to the shared standup channel"""

    @abstractmethod
    async def is_channel_member(self, user_id: str) -> bool:
        """Whether the participant belongs to the standup channel"""
