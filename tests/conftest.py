import os
import sys
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from database import StandupDatabase
from runtime.errors import TransientIOError
from runtime.transport import StandupTransport

LISBON = ZoneInfo("Europe/Lisbon")


class FakeTransport(StandupTransport):
    """Records outbound messages; can be told to fail"""

    def __init__(self, members=None):
        self.direct_messages = []
        self.channel_posts = []
        self.members = members
        self.failing_users = set()
        self.fail_channel = False

    async def send_to_participant(self, user_id, text):
        if user_id in self.failing_users:
            raise TransientIOError()
        self.direct_messages.append((user_id, text))

    async def send_to_channel(self, text):
        if self.fail_channel:
            raise TransientIOError()
        self.channel_posts.append(text)

    async def is_channel_member(self, user_id):
        return self.members is None or user_id in self.members

    def messages_for(self, user_id):
        return [text for uid, text in self.direct_messages if uid == user_id]


class FrozenClock:
    """Callable now() that tests move by hand"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def db(tmp_path):
    return StandupDatabase(
        db_path=str(tmp_path / "standup.db"),
        admin_usernames={"alice"},
        default_timezone="Europe/Lisbon",
    )
