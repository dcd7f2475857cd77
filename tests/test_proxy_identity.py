"""Tests for ProxyIdentityResolver."""

import asyncio
from types import SimpleNamespace

import aiohttp
import discord
import pytest

from bridge_errors import ProxyResolutionFailed
from conftest import FakeClient, FakeResponse, FakeSession, FakeTextChannel, FakeWebhook
from proxy_identity import ProxyIdentityResolver, is_bridge_proxy_name
import settings_store as cfg


def _session_with_avatar(status=200):
    return FakeSession().route("GET", cfg.PROXY_DEFAULT_AVATAR_URL, FakeResponse(status, body=b"\x89PNG"))


class TestIsBridgeProxyName:
    def test_tagged(self):
        assert is_bridge_proxy_name("ChatPlug general") is True

    def test_untagged(self):
        assert is_bridge_proxy_name("Captain Hook") is False
        assert is_bridge_proxy_name("ChatPluggeneral") is False
        assert is_bridge_proxy_name(None) is False


class TestResolve:
    @pytest.mark.asyncio
    async def test_existing_proxy_is_idempotent(self):
        hook = FakeWebhook(id=77, token="abc", name="ChatPlug general")
        channel = FakeTextChannel(123, "general", webhooks=[FakeWebhook(id=5, token="x", name="GitHub"), hook])
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar())

        first = await resolver.resolve("123")
        second = await resolver.resolve("123")

        assert first == second
        assert first.proxy_id == "77"
        assert first.proxy_token == "abc"
        assert first.channel_id == "123"
        assert channel.create_calls == []

    @pytest.mark.asyncio
    async def test_creates_when_missing(self):
        channel = FakeTextChannel(123, "general", webhooks=[FakeWebhook(id=5, token="x", name="GitHub")])
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar())

        proxy = await resolver.resolve("123")

        assert len(channel.create_calls) == 1
        assert channel.create_calls[0]["name"] == "ChatPlug general"
        assert channel.create_calls[0]["avatar"] == b"\x89PNG"
        assert proxy.display_name == "ChatPlug general"
        assert proxy.display_name_prefix == "ChatPlug "

    @pytest.mark.asyncio
    async def test_first_recognized_wins(self):
        channel = FakeTextChannel(
            123,
            "general",
            webhooks=[
                FakeWebhook(id=1, token="t1", name="ChatPlug general"),
                FakeWebhook(id=2, token="t2", name="ChatPlug general (old)"),
            ],
        )
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar())
        assert (await resolver.resolve("123")).proxy_id == "1"

    @pytest.mark.asyncio
    async def test_concurrent_resolves_create_once(self):
        channel = FakeTextChannel(123, "general")
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar())

        a, b = await asyncio.gather(resolver.resolve("123"), resolver.resolve("123"))

        assert len(channel.create_calls) == 1
        assert a == b

    @pytest.mark.asyncio
    async def test_name_truncated(self):
        channel = FakeTextChannel(123, "x" * 200)
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar())
        proxy = await resolver.resolve("123")
        assert len(proxy.display_name) == 80
        assert proxy.display_name.startswith("ChatPlug ")

    @pytest.mark.asyncio
    async def test_avatar_download_failure_still_creates(self):
        channel = FakeTextChannel(123, "general")
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar(status=500))
        await resolver.resolve("123")
        assert channel.create_calls[0]["avatar"] is None

    @pytest.mark.asyncio
    async def test_create_failure_raises(self):
        channel = FakeTextChannel(123, "general", fail_create=True)
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar())
        with pytest.raises(ProxyResolutionFailed):
            await resolver.resolve("123")

    @pytest.mark.asyncio
    async def test_unknown_channel_raises(self):
        resolver = ProxyIdentityResolver(client=FakeClient([]), session=_session_with_avatar())
        with pytest.raises(ProxyResolutionFailed):
            await resolver.resolve("999")

    @pytest.mark.asyncio
    async def test_non_numeric_channel_raises(self):
        resolver = ProxyIdentityResolver(client=FakeClient([]), session=_session_with_avatar())
        with pytest.raises(ProxyResolutionFailed):
            await resolver.resolve("not-a-channel")


    @pytest.mark.asyncio
    async def test_channel_without_webhooks_raises(self):
        thread = SimpleNamespace(id=123, name="thread-1", type=discord.ChannelType.public_thread)
        resolver = ProxyIdentityResolver(client=FakeClient([thread]), session=_session_with_avatar())
        with pytest.raises(ProxyResolutionFailed, match="does not support webhooks"):
            await resolver.resolve("123")

    @pytest.mark.asyncio
    async def test_channel_locks_released(self):
        channel = FakeTextChannel(123, "general")
        resolver = ProxyIdentityResolver(client=FakeClient([channel]), session=_session_with_avatar())

        await asyncio.gather(resolver.resolve("123"), resolver.resolve("123"), return_exceptions=True)
        with pytest.raises(ProxyResolutionFailed):
            await resolver.resolve("999")

        assert resolver._locks == {}
        assert resolver._lock_users == {}


class FlakyWebhookClient(FakeClient):
    async def fetch_webhook(self, wid):
        raise aiohttp.ServerDisconnectedError()


class TestFetchProxyName:
    @pytest.mark.asyncio
    async def test_known(self):
        client = FakeClient(webhooks=[FakeWebhook(id=10, token=None, name="ChatPlug general")])
        resolver = ProxyIdentityResolver(client=client, session=FakeSession())
        assert await resolver.fetch_proxy_name("10") == "ChatPlug general"

    @pytest.mark.asyncio
    async def test_unknown_returns_none(self):
        resolver = ProxyIdentityResolver(client=FakeClient(), session=FakeSession())
        assert await resolver.fetch_proxy_name("10") is None

    @pytest.mark.asyncio
    async def test_transport_error_returns_none(self):
        resolver = ProxyIdentityResolver(client=FlakyWebhookClient(), session=FakeSession())
        assert await resolver.fetch_proxy_name("10") is None
