"""Minimal ChatPlug hub client: GraphQL over HTTP plus graphql-ws subscriptions.

Uses aiohttp for both transports. Only the operations the Discord bridge needs
are implemented.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import aiohttp

from bridge_errors import ForwardToHubFailed, HubError
from bridge_models import AttachmentRef, ConfigurationField, HubAuthor, InboundHubMessage, SearchResult
from logging_utils import log_debug, log_warn

_WS_PROTOCOL = "graphql-ws"

MESSAGE_RECEIVED_SUBSCRIPTION = """
subscription ($instanceId: ID!) {
  messageReceived(instanceId: $instanceId) {
    targetThreadId
    message {
      body
      author { username avatarUrl }
      attachments { type sourceUrl originId }
    }
  }
}
"""

SEARCH_REQUESTED_SUBSCRIPTION = """
subscription ($instanceId: ID!) {
  threadSearchRequested(instanceId: $instanceId) { query }
}
"""

CONFIGURATION_RECEIVED_SUBSCRIPTION = """
subscription ($instanceId: ID!) {
  configurationReceived(instanceId: $instanceId) { fieldValues }
}
"""

SEND_MESSAGE_MUTATION = """
mutation ($instanceId: ID!, $input: MessageInput!) {
  sendMessage(instanceId: $instanceId, input: $input) { id }
}
"""

SET_SEARCH_RESPONSE_MUTATION = """
mutation ($instanceId: ID!, $query: String!, $threads: [ThreadSearchResultInput!]!) {
  setThreadSearchResponse(instanceId: $instanceId, query: $query, threads: $threads) { query }
}
"""

REQUEST_CONFIGURATION_MUTATION = """
mutation ($instanceId: ID!, $fields: [ConfigurationFieldInput!]!) {
  requestConfiguration(instanceId: $instanceId, fields: $fields) { fieldValues }
}
"""


def parse_hub_message(data: Dict[str, Any]) -> InboundHubMessage:
    """Convert a ``messageReceived`` payload into an InboundHubMessage."""
    msg = data.get("message") if isinstance(data.get("message"), dict) else {}
    author = msg.get("author") if isinstance(msg.get("author"), dict) else {}
    attachments: List[AttachmentRef] = []
    for a in msg.get("attachments") or []:
        if not isinstance(a, dict):
            continue
        url = str(a.get("sourceUrl") or "").strip()
        if not url:
            continue
        attachments.append(
            AttachmentRef(
                source_url=url,
                kind=str(a.get("type") or "IMAGE"),
                origin_id=str(a.get("originId") or ""),
            )
        )
    return InboundHubMessage(
        target_channel_id=str(data.get("targetThreadId") or ""),
        author=HubAuthor(
            username=str(author.get("username") or ""),
            avatar_url=str(author.get("avatarUrl") or ""),
        ),
        body=str(msg.get("body") or ""),
        attachments=tuple(attachments),
    )


def configuration_field_input(field: ConfigurationField) -> Dict[str, Any]:
    return {
        "name": field.name,
        "type": field.type,
        "hint": field.hint,
        "defaultValue": field.default_value,
        "optional": bool(field.optional),
        "mask": bool(field.mask),
    }


def search_result_input(result: SearchResult) -> Dict[str, str]:
    return {"name": result.display_name, "iconUrl": result.icon_url, "originId": result.origin_id}


class HubClient:
    def __init__(self, *, instance_id: str, http_endpoint: str, ws_endpoint: str, session: Optional[aiohttp.ClientSession] = None):
        self.instance_id = str(instance_id or "")
        self.http_endpoint = str(http_endpoint or "")
        self.ws_endpoint = str(ws_endpoint or "")
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        if not self.instance_id or not self.http_endpoint or not self.ws_endpoint:
            raise HubError("INSTANCE_ID, HTTP_ENDPOINT and WS_ENDPOINT must all be set")
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise HubError("hub client is not connected")
        return self._session

    # ---------------- HTTP (queries / mutations) ----------------

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = {"query": query, "variables": {"instanceId": self.instance_id, **(variables or {})}}
        try:
            async with self.session.post(self.http_endpoint, json=body) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise HubError(f"hub HTTP {resp.status}: {text[:300]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise HubError(f"hub request failed ({type(e).__name__}: {e})") from e
        if not isinstance(data, dict):
            raise HubError("hub returned a non-object response")
        if data.get("errors"):
            raise HubError(f"hub GraphQL errors: {json.dumps(data['errors'])[:300]}")
        return data.get("data") or {}

    async def send_message(
        self,
        *,
        content: str,
        origin_id: str,
        origin_thread_id: str,
        username: str,
        author_origin_id: str,
        avatar_url: str,
        attachments: Iterable[AttachmentRef] = (),
    ) -> None:
        message_input = {
            "body": content,
            "originId": origin_id,
            "originThreadId": origin_thread_id,
            "author": {"username": username, "originId": author_origin_id, "avatarUrl": avatar_url},
            "attachments": [
                {"type": a.kind, "originId": a.origin_id, "sourceUrl": a.source_url} for a in attachments
            ],
        }
        try:
            await self.execute(SEND_MESSAGE_MUTATION, {"input": message_input})
        except HubError as e:
            raise ForwardToHubFailed(origin_id, e) from e

    async def set_search_response(self, query: str, results: Iterable[SearchResult]) -> None:
        await self.execute(
            SET_SEARCH_RESPONSE_MUTATION,
            {"query": query, "threads": [search_result_input(r) for r in results]},
        )

    # ---------------- WebSocket (subscriptions) ----------------

    async def subscribe(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        ready: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield the ``data`` object of each subscription event until the hub completes it."""
        sub_id = str(next(self._ids))
        try:
            async with self.session.ws_connect(self.ws_endpoint, protocols=(_WS_PROTOCOL,), heartbeat=30) as ws:
                await ws.send_json({"type": "connection_init", "payload": {"instanceId": self.instance_id}})
                await ws.send_json(
                    {
                        "id": sub_id,
                        "type": "start",
                        "payload": {"query": query, "variables": {"instanceId": self.instance_id, **(variables or {})}},
                    }
                )
                async for msg in ws:
                    if msg.type != aiohttp.WSMsgType.TEXT:
                        if msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                            break
                        continue
                    frame = json.loads(msg.data)
                    kind = frame.get("type")
                    if kind == "connection_ack":
                        if ready is not None:
                            ready.set()
                        continue
                    if kind == "ka":
                        continue
                    if kind == "connection_error":
                        raise HubError(f"hub rejected subscription: {frame.get('payload')}")
                    if frame.get("id") != sub_id:
                        continue
                    if kind == "data":
                        payload = frame.get("payload") or {}
                        if payload.get("errors"):
                            log_warn(f"[HUB] subscription error payload: {json.dumps(payload['errors'])[:300]}")
                            continue
                        yield payload.get("data") or {}
                    elif kind == "error":
                        raise HubError(f"hub subscription error: {frame.get('payload')}")
                    elif kind == "complete":
                        break
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise HubError(f"hub subscription failed ({type(e).__name__}: {e})") from e
        log_debug(f"[HUB] subscription {sub_id} closed")

    async def subscribe_messages(self) -> AsyncIterator[InboundHubMessage]:
        async for data in self.subscribe(MESSAGE_RECEIVED_SUBSCRIPTION):
            payload = data.get("messageReceived")
            if isinstance(payload, dict):
                yield parse_hub_message(payload)

    async def subscribe_search_requests(self) -> AsyncIterator[str]:
        async for data in self.subscribe(SEARCH_REQUESTED_SUBSCRIPTION):
            payload = data.get("threadSearchRequested")
            if isinstance(payload, dict):
                yield str(payload.get("query") or "")

    async def await_configuration(self, fields: List[ConfigurationField]) -> List[str]:
        """Publish the configuration schema and block until the hub sends the field values."""
        ready = asyncio.Event()
        stream = self.subscribe(CONFIGURATION_RECEIVED_SUBSCRIPTION, ready=ready)
        first = asyncio.ensure_future(stream.__anext__())
        ready_wait = asyncio.ensure_future(ready.wait())
        try:
            # Publish only once the hub acknowledged the subscription, so the answer cannot be missed.
            await asyncio.wait({first, ready_wait}, return_when=asyncio.FIRST_COMPLETED)
            if not first.done():
                await self.execute(REQUEST_CONFIGURATION_MUTATION, {"fields": [configuration_field_input(f) for f in fields]})
            data = await first
        except StopAsyncIteration as e:
            raise HubError("hub closed the configuration subscription") from e
        finally:
            ready_wait.cancel()
            if not first.done():
                first.cancel()
                await asyncio.gather(first, return_exceptions=True)
            await stream.aclose()
        payload = data.get("configurationReceived") or {}
        return [str(v) for v in (payload.get("fieldValues") or [])]
