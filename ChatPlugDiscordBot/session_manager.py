from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiohttp
import discord

from attachment_fetcher import AttachmentFetcher
from bridge_config import is_configured, load_bridge_configuration, save_bridge_configuration
from bridge_errors import PlatformConnectFailed
from bridge_models import BridgeConfiguration, ConfigurationField
from channel_search import ChannelSearchResponder
from inbound_relay import InboundRelay
from logging_utils import log_error, log_info, log_warn
from outbound_relay import OutboundRelay
from proxy_identity import ProxyIdentityResolver
import settings_store as cfg


class BridgeState(enum.Enum):
    UNCONFIGURED = "unconfigured"
    AWAITING_CONFIG = "awaiting_config"
    CONFIGURED = "configured"
    CONNECTING = "connecting"
    RUNNING = "running"
    TERMINATED = "terminated"


CONFIGURATION_SCHEMA: List[ConfigurationField] = [
    ConfigurationField(
        name="botToken",
        type="STRING",
        hint="Your Discord bot token",
        default_value="",
        optional=False,
        mask=True,
    ),
]


def _default_client_factory(intents: discord.Intents) -> discord.Client:
    return discord.Client(intents=intents)


@dataclass
class BridgeContext:
    """Everything one bridge session shares. Passed explicitly to each component."""

    config_dir: Path
    hub: Any
    http: aiohttp.ClientSession
    client: Optional[discord.Client] = None


class BridgeSessionManager:
    def __init__(
        self,
        *,
        config_dir: Path,
        hub,
        client_factory: Optional[Callable[[discord.Intents], Any]] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config_dir = Path(config_dir)
        self.hub = hub
        self._client_factory = client_factory or _default_client_factory
        self._http = http_session
        self._owns_http = http_session is None
        self.state = BridgeState.UNCONFIGURED
        self.history: List[BridgeState] = []
        self.ctx: Optional[BridgeContext] = None

        self.resolver: Optional[ProxyIdentityResolver] = None
        self.outbound: Optional[OutboundRelay] = None
        self.inbound: Optional[InboundRelay] = None
        self.search: Optional[ChannelSearchResponder] = None
        self._gateway_task: Optional[asyncio.Task] = None
        self._loop_tasks: Dict[str, asyncio.Task] = {}

    def _transition(self, state: BridgeState) -> None:
        log_info(f"[SESSION] {self.state.value} -> {state.value}", event="state", state=state.value)
        self.state = state
        self.history.append(state)

    @property
    def instance_id(self) -> str:
        return str(getattr(self.hub, "instance_id", "") or "")

    # ---------------- Configuration ----------------

    async def bootstrap_configuration(self) -> BridgeConfiguration:
        """Ask the hub for the bot token when no configuration file exists, then load it."""
        if not is_configured(self.config_dir, self.instance_id):
            self._transition(BridgeState.AWAITING_CONFIG)
            log_warn("No configuration found; waiting for the hub to deliver the bot token.")
            values = await self.hub.await_configuration(CONFIGURATION_SCHEMA)
            save_bridge_configuration(self.config_dir, self.instance_id, values)
            log_info(f"Configuration saved for instance {self.instance_id}")
        self._transition(BridgeState.CONFIGURED)
        return load_bridge_configuration(self.config_dir, self.instance_id)

    # ---------------- Platform ----------------

    def _build_components(self, ctx: BridgeContext) -> None:
        self.resolver = ProxyIdentityResolver(client=ctx.client, session=ctx.http)
        self.outbound = OutboundRelay(resolver=self.resolver, fetcher=AttachmentFetcher(ctx.http), session=ctx.http)
        self.inbound = InboundRelay(client=ctx.client, hub=ctx.hub, resolver=self.resolver)
        self.search = ChannelSearchResponder(client=ctx.client, hub=ctx.hub)

    async def connect_platform(self, conf: BridgeConfiguration) -> None:
        self._transition(BridgeState.CONNECTING)
        intents = discord.Intents.default()
        intents.message_content = True
        client = self._client_factory(intents)
        self.ctx = BridgeContext(config_dir=self.config_dir, hub=self.hub, http=self._http_session(), client=client)
        self._build_components(self.ctx)

        inbound = self.inbound

        async def on_message(message) -> None:
            await inbound.submit(message)

        client.event(on_message)

        try:
            await client.login(conf.bot_token)
        except discord.DiscordException as e:
            raise PlatformConnectFailed(f"Discord login failed ({type(e).__name__}: {e})") from e

        self._gateway_task = asyncio.create_task(client.connect(reconnect=True), name="discord-gateway")
        ready_task = asyncio.create_task(client.wait_until_ready(), name="discord-ready")
        await asyncio.wait({self._gateway_task, ready_task}, return_when=asyncio.FIRST_COMPLETED)
        if not ready_task.done():
            ready_task.cancel()
            err = self._gateway_task.exception()
            raise PlatformConnectFailed(f"Discord gateway closed before ready ({type(err).__name__ if err else 'no error'}: {err})")

        user = getattr(client, "user", None)
        log_info(f"Logged in as {getattr(user, 'name', 'Unknown')} (id={getattr(user, 'id', '0')})")

    def _http_session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=cfg.HTTP_TIMEOUT_SECONDS))
        return self._http

    # ---------------- Running ----------------

    async def run_loops(self) -> None:
        """Run the relay and search loops until one of them (or the gateway) stops."""
        self._transition(BridgeState.RUNNING)
        self._loop_tasks = {
            "outbound": asyncio.create_task(self.outbound.run(self.hub.subscribe_messages()), name="outbound"),
            "inbound": asyncio.create_task(self.inbound.run(), name="inbound"),
            "search": asyncio.create_task(self.search.run(self.hub.subscribe_search_requests()), name="search"),
        }
        watched = set(self._loop_tasks.values())
        if self._gateway_task is not None:
            watched.add(self._gateway_task)
        done, _pending = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            name = task.get_name()
            if task.cancelled():
                log_warn(f"[SESSION] {name} loop cancelled")
                continue
            err = task.exception()
            if err is not None:
                log_error(f"[SESSION] {name} loop failed", error=err)
            else:
                log_warn(f"[SESSION] {name} loop ended")

    async def shutdown(self) -> None:
        for task in list(self._loop_tasks.values()):
            task.cancel()
        if self._loop_tasks:
            await asyncio.gather(*self._loop_tasks.values(), return_exceptions=True)
        if self.outbound is not None:
            await self.outbound.drain()
        client = self.ctx.client if self.ctx is not None else None
        if client is not None:
            await client.close()
        if self._gateway_task is not None:
            self._gateway_task.cancel()
            await asyncio.gather(self._gateway_task, return_exceptions=True)
        await self.hub.close()
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._transition(BridgeState.TERMINATED)

    async def run(self) -> None:
        """Full lifecycle. Configuration and connection errors propagate (fatal)."""
        try:
            await self.hub.connect()
            conf = await self.bootstrap_configuration()
            await self.connect_platform(conf)
            await self.run_loops()
        finally:
            await self.shutdown()

