from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

# Hub attachment kinds. Inbound Discord attachments are always reported as images.
ATTACHMENT_KIND_IMAGE = "IMAGE"


@dataclass(frozen=True)
class AttachmentRef:
    source_url: str
    kind: str = ATTACHMENT_KIND_IMAGE
    origin_id: str = ""


@dataclass(frozen=True)
class HubAuthor:
    username: str
    avatar_url: str = ""


@dataclass(frozen=True)
class InboundHubMessage:
    """A hub message that should be posted into a Discord channel."""

    target_channel_id: str
    author: HubAuthor
    body: str = ""
    attachments: Tuple[AttachmentRef, ...] = ()


@dataclass(frozen=True)
class ProxyIdentity:
    """A Discord webhook the bridge posts through for one channel."""

    channel_id: str
    proxy_id: str
    proxy_token: str
    display_name: str
    display_name_prefix: str = "ChatPlug "


@dataclass(frozen=True)
class NativePlatformEvent:
    author_id: str
    channel_id: str
    message_id: str
    content: str = ""
    author_username: str = ""
    author_avatar_url: str = ""
    proxy_id: Optional[str] = None
    attachments: Tuple[AttachmentRef, ...] = ()


@dataclass(frozen=True)
class SearchResult:
    display_name: str
    icon_url: str
    origin_id: str


@dataclass(frozen=True)
class ConfigurationField:
    name: str
    hint: str
    type: str = "STRING"
    default_value: str = ""
    optional: bool = False
    mask: bool = False


@dataclass(frozen=True)
class BridgeConfiguration:
    bot_token: str = field(repr=False)
