"""Shared fakes for aiohttp sessions and discord.py objects."""

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import aiohttp
import discord
import pytest

import logging_utils
import settings_store as cfg


@pytest.fixture(autouse=True)
def isolated_runtime(tmp_path):
    logging_utils.configure_log_paths(
        bot_log_path=tmp_path / "logs" / "bot.jsonl",
        system_log_path=tmp_path / "logs" / "system.json",
    )
    cfg.init({})
    yield


# ---------------- aiohttp fakes ----------------


class FakeContent:
    def __init__(self, chunks: List[bytes]):
        self._chunks = list(chunks)

    async def iter_chunked(self, n):
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    def __init__(self, status: int = 200, *, body: bytes = b"", headers: Optional[Dict[str, str]] = None,
                 chunks: Optional[List[bytes]] = None, json_data: Any = None, raise_on_enter: Optional[BaseException] = None):
        self.status = status
        self.headers = dict(headers or {})
        self._body = body
        self.content = FakeContent(chunks if chunks is not None else ([body] if body else []))
        self._json = json_data
        self._raise = raise_on_enter

    async def read(self):
        return self._body

    async def text(self):
        return self._body.decode("utf-8", errors="replace")

    async def json(self, content_type=None):
        if self._json is None and self._body:
            return json.loads(self._body)
        return self._json

    async def __aenter__(self):
        if self._raise is not None:
            raise self._raise
        return self

    async def __aexit__(self, *args):
        return False


def form_parts(form: aiohttp.FormData) -> List[Dict[str, Any]]:
    """Flatten a FormData into [{name, filename, value}] (file values read as bytes)."""
    parts = []
    for type_options, _headers, value in form._fields:
        if hasattr(value, "read"):
            pos = value.tell()
            data = value.read()
            value.seek(pos)
        else:
            data = value
        parts.append({"name": type_options["name"], "filename": type_options.get("filename"), "value": data})
    return parts


WAIT_FOR_POST = object()


class FakeWebSocket:
    """Scripted ws_connect() result. ``WAIT_FOR_POST`` in the script blocks until the session posts."""

    def __init__(self, session: "FakeSession", script: List[Any]):
        self._session = session
        self._script = list(script)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False

    async def send_json(self, data):
        self._session.events.append(f"ws:{data.get('type')}")
        self._session.ws_sent.append(data)

    def __aiter__(self):
        return self

    async def __anext__(self):
        while self._script:
            item = self._script.pop(0)
            if item is WAIT_FOR_POST:
                await self._session.posted.wait()
                continue
            if isinstance(item, str):
                return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=item)
            return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(item))
        raise StopAsyncIteration


class FakeSession:
    """Route head/get/post calls to queued responses keyed by (method, url)."""

    def __init__(self, events: Optional[List[str]] = None, ws_script: Optional[List[Any]] = None):
        self.routes: Dict[tuple, List[FakeResponse]] = {}
        self.calls: List[tuple] = []
        self.posts: List[Dict[str, Any]] = []
        self.events = events if events is not None else []
        self.ws_script = list(ws_script or [])
        self.ws_sent: List[Dict[str, Any]] = []
        self.posted = asyncio.Event()
        self.closed = False

    def route(self, method: str, url: str, *responses: FakeResponse):
        self.routes.setdefault((method.upper(), url), []).extend(responses)
        return self

    def _next(self, method: str, url: str) -> FakeResponse:
        self.calls.append((method, url))
        queue = self.routes.get((method, url))
        if not queue:
            return FakeResponse(404, body=b"not routed")
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    def head(self, url, **kwargs):
        return self._next("HEAD", url)

    def get(self, url, **kwargs):
        return self._next("GET", url)

    def post(self, url, data=None, json=None, **kwargs):
        self.events.append("post")
        record = {"url": url, "json": json, "parts": form_parts(data) if isinstance(data, aiohttp.FormData) else None}
        self.posts.append(record)
        self.posted.set()
        return self._next("POST", url)

    def ws_connect(self, url, **kwargs):
        self.calls.append(("WS", url))
        return FakeWebSocket(self, self.ws_script)

    async def close(self):
        self.closed = True


# ---------------- discord.py fakes ----------------


class FakeWebhook(SimpleNamespace):
    pass


class FakeTextChannel:
    def __init__(self, channel_id: int, name: str, webhooks: Optional[List[FakeWebhook]] = None,
                 events: Optional[List[str]] = None, fail_create: bool = False):
        self.id = channel_id
        self.name = name
        self.type = discord.ChannelType.text
        self._webhooks = list(webhooks or [])
        self.events = events if events is not None else []
        self.fail_create = fail_create
        self.create_calls: List[Dict[str, Any]] = []

    async def webhooks(self):
        await asyncio.sleep(0)
        return list(self._webhooks)

    async def create_webhook(self, *, name, avatar=None, reason=None):
        self.events.append("create")
        self.create_calls.append({"name": name, "avatar": avatar, "reason": reason})
        await asyncio.sleep(0)
        if self.fail_create:
            raise discord.DiscordException("Missing Permissions")
        wh = FakeWebhook(id=9000 + len(self.create_calls), token=f"tok{len(self.create_calls)}", name=name)
        self._webhooks.append(wh)
        return wh


class FakeClient:
    def __init__(self, channels=(), *, user_id: int = 1, webhooks=(), guilds=()):
        self.channels = {c.id: c for c in channels}
        self.user = SimpleNamespace(id=user_id, name="ChatPlugBot")
        self.webhooks = {int(w.id): w for w in webhooks}
        self.guilds = list(guilds)
        self.fetch_webhook_calls: List[int] = []

    def get_channel(self, cid):
        return self.channels.get(int(cid))

    async def fetch_channel(self, cid):
        raise discord.DiscordException(f"unknown channel {cid}")

    async def fetch_webhook(self, wid):
        self.fetch_webhook_calls.append(int(wid))
        if int(wid) not in self.webhooks:
            raise discord.DiscordException("Unknown Webhook")
        return self.webhooks[int(wid)]


class FakeAsset:
    def __init__(self, url: str):
        self.url = url

    def with_size(self, size):
        return FakeAsset(f"{self.url}?size={size}")


def make_discord_message(*, message_id=500, channel_id=123, author_id=42, name="alice", content="hello",
                         webhook_id=None, attachments=()):
    return SimpleNamespace(
        id=message_id,
        channel=SimpleNamespace(id=channel_id),
        author=SimpleNamespace(id=author_id, name=name, display_avatar=FakeAsset(f"https://cdn.example/avatars/{author_id}.png")),
        content=content,
        webhook_id=webhook_id,
        attachments=[SimpleNamespace(id=aid, url=url) for aid, url in attachments],
    )


class FakeHub:
    def __init__(self, *, instance_id="inst1", config_values=None, messages=(), queries=(), fail_send=False):
        self.instance_id = instance_id
        self.config_values = list(config_values or [])
        self.messages = list(messages)
        self.queries = list(queries)
        self.fail_send = fail_send
        self.sent: List[Dict[str, Any]] = []
        self.search_responses: List[tuple] = []
        self.schema_requests: List[Any] = []
        self.connected = False
        self.closed = False

    async def connect(self):
        self.connected = True

    async def close(self):
        self.closed = True

    async def await_configuration(self, fields):
        self.schema_requests.append(list(fields))
        return list(self.config_values)

    async def send_message(self, **kwargs):
        from bridge_errors import ForwardToHubFailed

        if self.fail_send:
            raise ForwardToHubFailed(kwargs.get("origin_id", ""))
        self.sent.append(kwargs)

    async def set_search_response(self, query, results):
        self.search_responses.append((query, tuple(results)))

    async def subscribe_messages(self):
        for m in self.messages:
            yield m

    async def subscribe_search_requests(self):
        for q in self.queries:
            yield q
