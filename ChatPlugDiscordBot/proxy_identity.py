from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import aiohttp
import discord

from bridge_errors import ProxyResolutionFailed
from bridge_models import ProxyIdentity
from logging_utils import log_debug, log_proxy, log_warn
import settings_store as cfg


def is_bridge_proxy_name(name: Optional[str]) -> bool:
    return str(name or "").startswith(cfg.PROXY_NAME_TAG)


def _proxy_name_for_channel(channel_name: str) -> str:
    return (cfg.PROXY_NAME_TAG + str(channel_name or "").strip())[: cfg.DISCORD_NAME_MAX_CHARS]


def _to_identity(channel_id: str, webhook: Any) -> ProxyIdentity:
    return ProxyIdentity(
        channel_id=str(channel_id),
        proxy_id=str(webhook.id),
        proxy_token=str(webhook.token or ""),
        display_name=str(webhook.name or ""),
        display_name_prefix=cfg.PROXY_NAME_TAG,
    )


class ProxyIdentityResolver:
    """
    Find (or create) the bridge webhook for a Discord channel.

    resolve-or-create runs under a per-channel lock so concurrent sends to a
    channel without a webhook create exactly one.
    """

    def __init__(self, *, client: discord.Client, session: aiohttp.ClientSession):
        self._client = client
        self._session = session
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._avatar_lock = asyncio.Lock()
        self._avatar_bytes: Optional[bytes] = None
        self._avatar_loaded = False

    async def _get_channel(self, channel_id: str):
        cid = int(channel_id)
        channel = self._client.get_channel(cid)
        if channel is None:
            channel = await self._client.fetch_channel(cid)
        return channel

    async def _default_avatar(self) -> Optional[bytes]:
        async with self._avatar_lock:
            if self._avatar_loaded:
                return self._avatar_bytes
            url = cfg.PROXY_DEFAULT_AVATAR_URL
            try:
                async with self._session.get(url) as resp:
                    if resp.status == 200:
                        self._avatar_bytes = await resp.read()
                    else:
                        log_warn(f"[PROXY] default avatar download returned HTTP {resp.status}; creating webhooks without avatar")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log_warn(f"[PROXY] default avatar download failed ({type(e).__name__}: {e}); creating webhooks without avatar")
            self._avatar_loaded = True
            return self._avatar_bytes

    async def resolve(self, channel_id: str) -> ProxyIdentity:
        cid = str(channel_id)
        try:
            int(cid)
        except ValueError as e:
            raise ProxyResolutionFailed(cid, "channel id is not numeric") from e

        lock = self._locks.setdefault(cid, asyncio.Lock())
        self._lock_users[cid] = self._lock_users.get(cid, 0) + 1
        try:
            async with lock:
                return await self._resolve_locked(cid)
        finally:
            self._lock_users[cid] -= 1
            if self._lock_users[cid] == 0:
                del self._lock_users[cid]
                self._locks.pop(cid, None)

    async def _resolve_locked(self, cid: str) -> ProxyIdentity:
        try:
            channel = await self._get_channel(cid)
        except discord.DiscordException as e:
            raise ProxyResolutionFailed(cid, f"channel lookup failed ({type(e).__name__}: {e})") from e
        if not hasattr(channel, "webhooks") or not hasattr(channel, "create_webhook"):
            raise ProxyResolutionFailed(cid, f"channel does not support webhooks ({type(channel).__name__})")
        try:
            webhooks = await channel.webhooks()
        except discord.DiscordException as e:
            raise ProxyResolutionFailed(cid, f"listing webhooks failed ({type(e).__name__}: {e})") from e

        recognized = [wh for wh in webhooks if is_bridge_proxy_name(getattr(wh, "name", None))]
        if len(recognized) > 1:
            log_debug(f"[PROXY] {len(recognized)} bridge webhooks in channel_id={cid}; using the first")
        if recognized:
            webhook = recognized[0]
            if not getattr(webhook, "token", None):
                raise ProxyResolutionFailed(cid, f"bridge webhook {webhook.id} has no token")
            return _to_identity(cid, webhook)

        name = _proxy_name_for_channel(getattr(channel, "name", "") or "")
        avatar = await self._default_avatar()
        try:
            webhook = await channel.create_webhook(name=name, avatar=avatar, reason="ChatPlug bridge proxy")
        except discord.DiscordException as e:
            raise ProxyResolutionFailed(cid, f"create_webhook failed ({type(e).__name__}: {e})") from e
        log_proxy(f"created webhook '{name}' for channel_id={cid}", event="proxy_created", channel_id=cid)
        return _to_identity(cid, webhook)

    async def fetch_proxy_name(self, proxy_id: str) -> Optional[str]:
        """Name of the webhook behind a message, or None when it cannot be fetched."""
        try:
            webhook = await self._client.fetch_webhook(int(proxy_id))
        except (discord.DiscordException, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            log_debug(f"[PROXY] fetch_webhook({proxy_id}) failed ({type(e).__name__})")
            return None
        if webhook is None:
            return None
        return str(getattr(webhook, "name", "") or "")
