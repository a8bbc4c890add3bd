"""
tests/test_delivery.py — Reminder Transport Tests
==================================================

Gateway transport against mocked discord.py objects; REST transport
against ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import discord
import httpx

from quietwatch.services.delivery import (
    GuildChannelDelivery,
    RestChannelDelivery,
    pick_channel,
)


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _text_channel(name: str) -> MagicMock:
    ch = MagicMock(spec=discord.TextChannel)
    ch.name = name
    ch.send = AsyncMock()
    return ch


def _client_with_channels(*names: str):
    guild = MagicMock()
    guild.name = "Test Guild"
    guild.text_channels = [_text_channel(n) for n in names]
    client = MagicMock()
    client.get_guild.return_value = guild
    return client, guild.text_channels


class TestPickChannel:
    def test_first_text_channel_by_position(self):
        channels = [
            {"id": "3", "type": 0, "name": "bot-spam", "position": 5},
            {"id": "2", "type": 2, "name": "bot-voice", "position": 0},
            {"id": "1", "type": 0, "name": "Bot-Commands", "position": 1},
            {"id": "4", "type": 0, "name": "general", "position": 0},
        ]
        assert pick_channel(channels, "bot")["id"] == "1"

    def test_none_when_no_match(self):
        assert pick_channel([{"id": "1", "type": 0, "name": "general"}], "bot") is None


class TestGuildChannelDelivery:
    def test_sends_to_first_matching_channel(self):
        client, channels = _client_with_channels("general", "bot-commands", "robots")
        transport = GuildChannelDelivery(client, 123, "bot")

        result = run_async(transport.deliver("42", "hello <@42>"))

        assert result.delivered is True
        assert result.channel_label == "bot-commands"
        channels[1].send.assert_awaited_once()
        assert channels[1].send.await_args.args[0] == "hello <@42>"
        channels[0].send.assert_not_awaited()
        channels[2].send.assert_not_awaited()

    def test_missing_guild(self):
        client = MagicMock()
        client.get_guild.return_value = None
        result = run_async(GuildChannelDelivery(client, 123).deliver("42", "hi"))
        assert result.delivered is False

    def test_no_matching_channel(self):
        client, _ = _client_with_channels("general", "memes")
        result = run_async(GuildChannelDelivery(client, 123).deliver("42", "hi"))
        assert result.delivered is False

    def test_discord_error_reported_as_failure(self):
        client, channels = _client_with_channels("bot")
        response = MagicMock(status=403, reason="Forbidden")
        channels[0].send.side_effect = discord.Forbidden(response, "Missing Access")

        result = run_async(GuildChannelDelivery(client, 123).deliver("42", "hi"))

        assert result.delivered is False


class TestRestChannelDelivery:
    @staticmethod
    def _transport(handler) -> RestChannelDelivery:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RestChannelDelivery("tok", "999", "bot", client=client)

    def test_lists_channels_then_posts(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "GET":
                return httpx.Response(200, json=[
                    {"id": "10", "type": 0, "name": "general", "position": 0},
                    {"id": "11", "type": 0, "name": "bot-chat", "position": 1},
                ])
            return httpx.Response(200, json={"id": "555"})

        result = run_async(self._transport(handler).deliver("42", "hey <@42>"))

        assert result.delivered is True
        assert result.channel_label == "bot-chat"
        get, post = seen
        assert get.url.path == "/api/v10/guilds/999/channels"
        assert get.headers["Authorization"] == "Bot tok"
        assert post.url.path == "/api/v10/channels/11/messages"
        body = json.loads(post.content)
        assert body["content"] == "hey <@42>"
        assert body["allowed_mentions"] == {"parse": [], "users": ["42"]}

    def test_http_error_reported_as_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=[{"id": "11", "type": 0, "name": "bot"}])
            return httpx.Response(403, json={"message": "Missing Permissions"})

        assert run_async(self._transport(handler).deliver("42", "hi")).delivered is False

    def test_no_matching_channel(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": "10", "type": 0, "name": "general"}])

        assert run_async(self._transport(handler).deliver("42", "hi")).delivered is False
