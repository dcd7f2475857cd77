from __future__ import annotations

import asyncio
import json
import tempfile
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Set

import aiohttp

from attachment_fetcher import AttachmentFetcher, attachment_filename
from bridge_errors import AttachmentError, ProxyResolutionFailed, UploadRequestFailed
from bridge_models import InboundHubMessage, ProxyIdentity
from logging_utils import log_debug, log_error, log_outbound, log_warn
from proxy_identity import ProxyIdentityResolver
import settings_store as cfg

_SUCCESS_STATUSES = (200, 204)


def webhook_execute_url(proxy: ProxyIdentity) -> str:
    return f"{cfg.DISCORD_API_BASE}/webhooks/{proxy.proxy_id}/{proxy.proxy_token}"


def build_payload(message: InboundHubMessage) -> Dict[str, str]:
    return {
        "content": str(message.body or ""),
        "username": str(message.author.username or "")[: cfg.DISCORD_NAME_MAX_CHARS],
        "avatar_url": str(message.author.avatar_url or ""),
    }


@dataclass
class UploadBody:
    """One message's multi-part body. Owns the spooled attachment files."""

    form: aiohttp.FormData
    payload: Dict[str, str]
    filenames: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    _files: List[Any] = field(default_factory=list, repr=False)

    def close(self) -> None:
        for f in self._files:
            f.close()
        self._files.clear()


class OutboundRelay:
    """
    Post hub messages into Discord through the channel's bridge webhook.

    Messages are dispatched in consumption order. Each one runs in its own
    task, serialized per destination channel, so a slow channel never holds
    up another one.
    """

    def __init__(self, *, resolver: ProxyIdentityResolver, fetcher: AttachmentFetcher, session: aiohttp.ClientSession):
        self._resolver = resolver
        self._fetcher = fetcher
        self._session = session
        self._lanes: Dict[str, asyncio.Lock] = {}
        self._lane_users: Dict[str, int] = {}
        self._inflight: Set[asyncio.Task] = set()

    async def run(self, messages: AsyncIterator[InboundHubMessage]) -> None:
        async for message in messages:
            self.dispatch(message)

    def dispatch(self, message: InboundHubMessage) -> asyncio.Task:
        cid = str(message.target_channel_id)
        lane = self._lanes.setdefault(cid, asyncio.Lock())
        self._lane_users[cid] = self._lane_users.get(cid, 0) + 1
        task = asyncio.create_task(self._run_in_lane(cid, lane, message))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_in_lane(self, cid: str, lane: asyncio.Lock, message: InboundHubMessage) -> bool:
        try:
            async with lane:
                return await self.relay(message)
        except Exception as e:
            log_error("[OUTBOUND] message dropped", error=e, event="relay_failed", channel_id=cid)
            return False
        finally:
            self._lane_users[cid] -= 1
            if self._lane_users[cid] == 0:
                del self._lane_users[cid]
                self._lanes.pop(cid, None)

    async def drain(self) -> None:
        """Wait for every dispatched message to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def build_upload(self, message: InboundHubMessage) -> UploadBody:
        payload = build_payload(message)
        form = aiohttp.FormData()
        form.add_field("payload_json", json.dumps(payload), content_type="application/json")
        upload = UploadBody(form=form, payload=payload)

        try:
            for attachment in message.attachments:
                url = attachment.source_url
                filename = attachment_filename(url)
                spool = tempfile.SpooledTemporaryFile(max_size=cfg.ATTACHMENT_SPOOL_BYTES)
                upload._files.append(spool)
                try:
                    size = await self._fetcher.fetch(url, spool)
                except AttachmentError as e:
                    upload._files.remove(spool)
                    spool.close()
                    upload.skipped.append(url)
                    log_warn(f"[OUTBOUND] attachment skipped {filename} ({type(e).__name__}: {e.reason})")
                    continue
                spool.seek(0)
                upload.filenames.append(filename)
                form.add_field(filename, spool, filename=filename, content_type="application/octet-stream")
                log_debug(f"[OUTBOUND] attachment ready {filename} ({size} bytes)")
        except BaseException:
            upload.close()
            raise
        return upload

    async def _post(self, proxy: ProxyIdentity, upload: UploadBody) -> None:
        try:
            async with self._session.post(webhook_execute_url(proxy), data=upload.form) as resp:
                if resp.status in _SUCCESS_STATUSES:
                    return
                body = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UploadRequestFailed(0, f"{type(e).__name__}: {e}") from e
        raise UploadRequestFailed(resp.status, body)

    async def relay(self, message: InboundHubMessage) -> bool:
        """Resolve, build and post one message. Failures are logged, never raised."""
        cid = str(message.target_channel_id)
        try:
            proxy = await self._resolver.resolve(cid)
        except ProxyResolutionFailed as e:
            log_error("[OUTBOUND] message dropped", error=e, event="proxy_resolution_failed", channel_id=cid)
            return False

        upload = await self.build_upload(message)
        try:
            if not upload.payload["content"].strip() and not upload.filenames:
                log_warn(f"[OUTBOUND] empty message skipped channel_id={cid}", event="empty_message", skipped=upload.skipped)
                return False
            try:
                await self._post(proxy, upload)
            except UploadRequestFailed as e:
                log_error(
                    f"[OUTBOUND] webhook upload failed channel_id={cid} status={e.status}",
                    event="upload_failed",
                    status=e.status,
                    body=e.body[:2000],
                )
                return False
        finally:
            upload.close()

        log_outbound(
            f"channel_id={cid} author={upload.payload['username']!r} files={len(upload.filenames)} skipped={len(upload.skipped)}",
            event="relayed",
        )
        return True
