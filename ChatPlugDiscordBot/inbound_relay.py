from __future__ import annotations

import asyncio
from typing import Any, Optional

from bridge_errors import HubError
from bridge_models import ATTACHMENT_KIND_IMAGE, AttachmentRef, NativePlatformEvent
from logging_utils import log_debug, log_error, log_inbound, log_warn
from proxy_identity import ProxyIdentityResolver, is_bridge_proxy_name
import settings_store as cfg


def _avatar_url(author: Any) -> str:
    avatar = getattr(author, "display_avatar", None)
    if avatar is None:
        return ""
    try:
        return str(avatar.with_size(cfg.AVATAR_MEDIUM_SIZE).url)
    except (AttributeError, ValueError):
        return str(getattr(avatar, "url", "") or "")


def event_from_message(message: Any) -> NativePlatformEvent:
    """Snapshot a discord.Message into the fields the relay needs."""
    author = message.author
    webhook_id = getattr(message, "webhook_id", None)
    attachments = tuple(
        AttachmentRef(source_url=str(a.url), kind=ATTACHMENT_KIND_IMAGE, origin_id=str(a.id))
        for a in (getattr(message, "attachments", None) or [])
    )
    return NativePlatformEvent(
        author_id=str(author.id),
        channel_id=str(message.channel.id),
        message_id=str(message.id),
        content=str(message.content or ""),
        author_username=str(getattr(author, "name", "") or ""),
        author_avatar_url=_avatar_url(author),
        proxy_id=str(webhook_id) if webhook_id else None,
        attachments=attachments,
    )


class InboundRelay:
    """
    Forward Discord messages to the hub.

    The discord.py handler only enqueues (``submit``); ``run`` drains the
    bounded queue so a slow hub never backs up the gateway.
    """

    def __init__(self, *, client, hub, resolver: ProxyIdentityResolver, queue_size: Optional[int] = None):
        self._client = client
        self._hub = hub
        self._resolver = resolver
        self.queue: "asyncio.Queue[NativePlatformEvent]" = asyncio.Queue(maxsize=int(queue_size or cfg.INBOUND_QUEUE_SIZE))

    def _own_user_id(self) -> str:
        user = getattr(self._client, "user", None)
        return str(getattr(user, "id", "") or "")

    async def submit(self, message: Any) -> None:
        event = event_from_message(message)
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            log_warn(
                f"[INBOUND] queue full ({self.queue.maxsize}); dropped message_id={event.message_id}",
                event="inbound_queue_full",
            )

    async def run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.handle_event(event)
            except Exception as e:
                log_error("[INBOUND] event dropped", error=e, event="handle_failed", message_id=event.message_id)
            finally:
                self.queue.task_done()

    async def is_loop_event(self, event: NativePlatformEvent) -> bool:
        if event.author_id and event.author_id == self._own_user_id():
            return True
        if event.proxy_id:
            name = await self._resolver.fetch_proxy_name(event.proxy_id)
            if name is not None and is_bridge_proxy_name(name):
                return True
        return False

    async def handle_event(self, event: NativePlatformEvent) -> bool:
        """Returns True when the event was forwarded to the hub."""
        if await self.is_loop_event(event):
            log_debug(f"[INBOUND] ignored own message_id={event.message_id}")
            return False
        try:
            await self._hub.send_message(
                content=event.content,
                origin_id=event.message_id,
                origin_thread_id=event.channel_id,
                username=event.author_username,
                author_origin_id=event.author_id,
                avatar_url=event.author_avatar_url,
                attachments=list(event.attachments),
            )
        except HubError as e:
            log_error("[INBOUND] event dropped", error=e, event="forward_failed", message_id=event.message_id)
            return False
        log_inbound(
            f"channel_id={event.channel_id} author={event.author_username!r} attachments={len(event.attachments)}",
            event="forwarded",
        )
        return True
