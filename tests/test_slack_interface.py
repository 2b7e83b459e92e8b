"""
Slack interface tests with a mocked Slack client: DM delivery, channel
membership, startup verification and event routing.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from interfaces.slack.core_slack_orchestration import SlackInterface
from runtime.config import StandupConfig
from runtime.errors import ConfigurationError, TransientIOError


class Pages:
    """Stands in for a paginated AsyncSlackResponse"""

    def __init__(self, *pages):
        self.pages = pages

    async def __aiter__(self):
        for page in self.pages:
            yield page


@pytest.fixture
def mock_client():
    client = AsyncMock()
    client.conversations_open.return_value = {"ok": True, "channel": {"id": "D1"}}
    client.chat_postMessage.return_value = {"ok": True, "ts": "1234567890.123456"}
    client.conversations_members.return_value = Pages({"members": ["U1", "U2"]}, {"members": ["U3"]})
    client.users_info.return_value = {"ok": True, "user": {"name": "bob", "tz": "Europe/Lisbon"}}
    client.auth_test.return_value = {"ok": True, "user_id": "UBOT"}
    client.conversations_info.return_value = {"ok": True, "channel": {"name": "standup", "is_member": True}}
    return client


@pytest.fixture
def slack(db, mock_client):
    app = MagicMock()
    app.client = mock_client
    config = StandupConfig(slack_bot_token="xoxb-test", slack_signing_secret="secret", channel_id="C1")
    return SlackInterface(config, db=db, app=app)


def test_direct_messages_reuse_dm_channel(slack, mock_client):
    async def scenario():
        await slack.send_to_participant("U1", "first")
        await slack.send_to_participant("U1", "second")

    asyncio.run(scenario())

    mock_client.conversations_open.assert_awaited_once_with(users="U1")
    assert mock_client.chat_postMessage.await_count == 2
    mock_client.chat_postMessage.assert_awaited_with(channel="D1", text="second", mrkdwn=True)


def test_channel_post_goes_to_standup_channel(slack, mock_client):
    asyncio.run(slack.send_to_channel("summary"))
    mock_client.chat_postMessage.assert_awaited_once_with(channel="C1", text="summary", mrkdwn=True)


def test_slack_failures_become_transient_errors(slack, mock_client):
    mock_client.chat_postMessage.side_effect = RuntimeError("ratelimited")

    with pytest.raises(TransientIOError):
        asyncio.run(slack.send_to_participant("U1", "hello"))
    with pytest.raises(TransientIOError):
        asyncio.run(slack.send_to_channel("hello"))


def test_channel_membership_is_cached(slack, mock_client):
    async def scenario():
        return [
            await slack.is_channel_member("U1"),
            await slack.is_channel_member("U3"),
            await slack.is_channel_member("U1"),
        ]

    assert asyncio.run(scenario()) == [True, True, True]
    assert mock_client.conversations_members.await_count == 1


def test_unknown_user_is_not_a_member(slack, mock_client):
    assert asyncio.run(slack.is_channel_member("U9")) is False


def test_membership_lookup_failure_denies_access(slack, mock_client):
    mock_client.conversations_members.side_effect = RuntimeError("channel_not_found")
    assert asyncio.run(slack.is_channel_member("U1")) is False


def test_verify_channel_access(slack, mock_client):
    asyncio.run(slack.verify_channel_access())
    assert slack.cache_service.member_cache == {"U1", "U2", "U3"}

    mock_client.conversations_info.return_value = {"ok": True, "channel": {"is_member": False}}
    with pytest.raises(ConfigurationError):
        asyncio.run(slack.verify_channel_access())

    mock_client.conversations_info.side_effect = RuntimeError("channel_not_found")
    with pytest.raises(ConfigurationError):
        asyncio.run(slack.verify_channel_access())


def test_only_human_direct_messages_are_routed(slack):
    slack.command_handler.handle_direct_message = AsyncMock()

    async def scenario():
        await slack._handle_message({"channel_type": "im", "user": "U1", "text": "  my answer "})
        await slack._handle_message({"channel_type": "im", "bot_id": "B1", "text": "echo"})
        await slack._handle_message({"channel_type": "im", "user": "U1", "subtype": "message_changed"})
        await slack._handle_message({"channel_type": "channel", "user": "U1", "text": "hi all"})
        await slack._handle_message({"channel_type": "im", "user": "U1", "text": "   "})

    asyncio.run(scenario())
    slack.command_handler.handle_direct_message.assert_awaited_once_with("U1", "my answer")


def test_slash_command_replies_ephemerally(slack, mock_client):
    slack.command_handler.handle_command = AsyncMock(return_value="👥 Subscribed Members:")
    respond = AsyncMock()

    asyncio.run(slack._handle_command({"user_id": "U1", "user_name": "b", "text": "members"}, respond))

    slack.command_handler.handle_command.assert_awaited_once_with("U1", "bob", "members")
    respond.assert_awaited_once_with(text="👥 Subscribed Members:", response_type="ephemeral")


def test_handle_falls_back_to_payload_name(slack, mock_client):
    mock_client.users_info.side_effect = RuntimeError("user_not_found")
    assert asyncio.run(slack.user_service.get_handle("U7", fallback="carol")) == "carol"
