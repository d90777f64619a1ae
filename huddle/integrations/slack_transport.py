"""
Slack Web API transport.

Posts as a persona by overriding the bot's username and avatar per message
(requires the ``chat:write.customize`` scope) and reads thread history via
``conversations.replies``.
"""

from typing import Optional

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from huddle.models.discussion import PostedMessage, ThreadMessage
from huddle.models.persona import Persona
from huddle.utils.logging import get_logger

logger = get_logger(__name__)


class ChatTransportError(Exception):
    """Raised when the chat platform rejects a request."""

    pass


class SlackTransport:
    """
    ChatTransport implementation over ``slack_sdk``'s AsyncWebClient.

    Args:
        token: Bot token (xoxb-...)
        client: Pre-built client (tests pass a mock)
    """

    def __init__(self, token: Optional[str] = None, client: Optional[AsyncWebClient] = None):
        if client is None and not token:
            raise ValueError("Slack bot token is required. Set SLACK_BOT_TOKEN.")
        self._client = client or AsyncWebClient(token=token)

    async def post_as_agent(
        self,
        channel: str,
        text: str,
        persona: Persona,
        thread_ts: Optional[str] = None,
    ) -> PostedMessage:
        """
        Raises:
            ChatTransportError: If Slack rejects the message
        """
        kwargs = {
            "channel": channel,
            "text": text,
            "username": persona.name,
        }
        if persona.avatar_url:
            kwargs["icon_url"] = persona.avatar_url
        if thread_ts:
            kwargs["thread_ts"] = thread_ts

        try:
            response = await self._client.chat_postMessage(**kwargs)
        except SlackApiError as e:
            error = e.response.get("error") if e.response is not None else str(e)
            raise ChatTransportError(f"chat.postMessage failed: {error}") from e

        return PostedMessage(channel=response["channel"], ts=response["ts"])

    async def get_thread_history(
        self, channel: str, thread_ts: str, limit: int = 10
    ) -> list[ThreadMessage]:
        """
        Latest ``limit`` messages of a thread, oldest first.

        Raises:
            ChatTransportError: If Slack rejects the request
        """
        try:
            response = await self._client.conversations_replies(
                channel=channel, ts=thread_ts, limit=200
            )
        except SlackApiError as e:
            error = e.response.get("error") if e.response is not None else str(e)
            raise ChatTransportError(f"conversations.replies failed: {error}") from e

        messages = [
            ThreadMessage(
                ts=str(message.get("ts", "")),
                text=message.get("text") or "",
                username=message.get("username"),
                user=message.get("user"),
                bot_id=message.get("bot_id"),
            )
            for message in response.get("messages", [])
        ]
        return messages[-limit:]

    async def get_bot_user_id(self) -> Optional[str]:
        """The authenticated bot's user id, or None if auth.test fails."""
        try:
            response = await self._client.auth_test()
        except SlackApiError as e:
            logger.warning("slack_auth_test_failed", error=str(e))
            return None
        return response.get("user_id")

    async def add_reaction(self, channel: str, ts: str, emoji: str) -> None:
        """
        React to a message. Reacting twice with the same emoji is not an error.

        Raises:
            ChatTransportError: If Slack rejects the request
        """
        try:
            await self._client.reactions_add(channel=channel, timestamp=ts, name=emoji.strip(":"))
        except SlackApiError as e:
            error = e.response.get("error") if e.response is not None else str(e)
            if error == "already_reacted":
                return
            raise ChatTransportError(f"reactions.add failed: {error}") from e

    async def join_channel(self, channel: str) -> None:
        """
        Raises:
            ChatTransportError: If Slack rejects the request
        """
        try:
            await self._client.conversations_join(channel=channel)
        except SlackApiError as e:
            error = e.response.get("error") if e.response is not None else str(e)
            raise ChatTransportError(f"conversations.join failed: {error}") from e
