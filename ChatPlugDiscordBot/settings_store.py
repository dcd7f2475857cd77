from __future__ import annotations

from typing import Any, Dict

# ---------------- Fixed bridge constants ----------------

# Webhooks whose name starts with this tag belong to the bridge.
PROXY_NAME_TAG: str = "ChatPlug "
# Discord limits webhook names and webhook usernames to 80 characters.
DISCORD_NAME_MAX_CHARS: int = 80
ATTACHMENT_MAX_BYTES: int = 8 * 1024 * 1024
SEARCH_RESULT_LIMIT: int = 30
# discord.py only accepts powers of two; 128px is the "medium" avatar.
AVATAR_MEDIUM_SIZE: int = 128

# ---------------- Runtime knobs (config/settings.json) ----------------

VERBOSE: bool = True

DISCORD_API_BASE: str = "https://discord.com/api"
DISCORD_CDN_BASE: str = "https://cdn.discordapp.com"
PROXY_DEFAULT_AVATAR_URL: str = "https://i.imgur.com/l2QP9Go.png"

INBOUND_QUEUE_SIZE: int = 1000
HTTP_TIMEOUT_SECONDS: float = 300.0
# Attachments are spooled in memory up to this size, then to a temp file.
ATTACHMENT_SPOOL_BYTES: int = 1024 * 1024


def _get_int(d: Dict[str, Any], key: str, default: int = 0) -> int:
    try:
        v = d.get(key, default)
        if v is None:
            return default
        if isinstance(v, bool):
            return int(v)
        if isinstance(v, (int, float)):
            return int(v)
        s = str(v).strip()
        if not s:
            return default
        return int(float(s))
    except (TypeError, ValueError):
        return default


def _get_str(d: Dict[str, Any], key: str, default: str) -> str:
    v = str(d.get(key) or "").strip()
    return v or default


def init(settings: Dict[str, Any]) -> None:
    """
    Initialize module-level configuration values from the loaded settings dict.

    Unknown keys are ignored; invalid values fall back to the defaults above.
    """
    global VERBOSE
    global DISCORD_API_BASE, DISCORD_CDN_BASE, PROXY_DEFAULT_AVATAR_URL
    global INBOUND_QUEUE_SIZE, HTTP_TIMEOUT_SECONDS, ATTACHMENT_SPOOL_BYTES

    VERBOSE = bool(settings.get("verbose", True))

    DISCORD_API_BASE = _get_str(settings, "discord_api_base", "https://discord.com/api").rstrip("/")
    DISCORD_CDN_BASE = _get_str(settings, "discord_cdn_base", "https://cdn.discordapp.com").rstrip("/")
    PROXY_DEFAULT_AVATAR_URL = _get_str(settings, "proxy_default_avatar_url", "https://i.imgur.com/l2QP9Go.png")

    INBOUND_QUEUE_SIZE = _get_int(settings, "inbound_queue_size", 1000)
    if INBOUND_QUEUE_SIZE <= 0:
        INBOUND_QUEUE_SIZE = 1000

    try:
        HTTP_TIMEOUT_SECONDS = float(settings.get("http_timeout_seconds", 300.0) or 300.0)
        if HTTP_TIMEOUT_SECONDS <= 0:
            HTTP_TIMEOUT_SECONDS = 300.0
    except (TypeError, ValueError):
        HTTP_TIMEOUT_SECONDS = 300.0

    ATTACHMENT_SPOOL_BYTES = max(0, _get_int(settings, "attachment_spool_bytes", 1024 * 1024))
