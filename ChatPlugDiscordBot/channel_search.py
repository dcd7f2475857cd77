from __future__ import annotations

from typing import Any, AsyncIterator, List, Tuple

import discord

from bridge_errors import HubError
from bridge_models import SearchResult
from logging_utils import log_error, log_search
import settings_store as cfg


def guild_icon_url(guild: Any) -> str:
    icon = getattr(guild, "icon", None)
    icon_hash = str(getattr(icon, "key", icon) or "") if icon is not None else ""
    if not icon_hash:
        return ""
    return f"{cfg.DISCORD_CDN_BASE}/icons/{guild.id}/{icon_hash}.png"


def _is_text_channel(channel: Any) -> bool:
    return getattr(channel, "type", None) == discord.ChannelType.text


class ChannelSearchResponder:
    """Answer hub thread searches from the Discord client's guild cache."""

    def __init__(self, *, client, hub=None, limit: int = cfg.SEARCH_RESULT_LIMIT):
        self._client = client
        self._hub = hub
        self.limit = int(limit)

    def search(self, query: str) -> Tuple[SearchResult, ...]:
        q = str(query or "")
        results: List[SearchResult] = []
        for guild in list(getattr(self._client, "guilds", None) or []):
            guild_name = str(getattr(guild, "name", "") or "")
            icon_url = guild_icon_url(guild)
            for channel in list(getattr(guild, "channels", None) or []):
                if not _is_text_channel(channel):
                    continue
                channel_name = str(getattr(channel, "name", "") or "")
                # Case-sensitive substring match on either name.
                if q not in channel_name and q not in guild_name:
                    continue
                results.append(
                    SearchResult(
                        display_name=f"{guild_name} - {channel_name}",
                        icon_url=icon_url,
                        origin_id=str(channel.id),
                    )
                )
                if len(results) >= self.limit:
                    return tuple(results)
        return tuple(results)

    async def run(self, queries: AsyncIterator[str]) -> None:
        async for query in queries:
            try:
                results = self.search(query)
                await self._hub.set_search_response(query, results)
            except HubError as e:
                log_error(f"[SEARCH] response failed query={query!r}", error=e, event="search_response_failed")
                continue
            except Exception as e:
                log_error(f"[SEARCH] query failed query={query!r}", error=e, event="search_failed")
                continue
            log_search(f"query={query!r} results={len(results)}", event="search_answered")
