"""
ChatPlugDiscordBot (ChatPlug hub <-> Discord bridge)
----------------------------------------------------
Relays messages between a ChatPlug hub instance and Discord:
  - hub -> Discord: posts through one "ChatPlug <channel>" webhook per channel,
    with the hub author's name/avatar and the message attachments
  - Discord -> hub: forwards channel messages, ignoring the bot's own messages
    and anything posted through the bridge webhooks (no echo loops)
  - answers hub thread searches from the Discord guild/channel cache

Config (standalone, local-only):
  - environment: INSTANCE_ID, HTTP_ENDPOINT, WS_ENDPOINT (optional config/.env overrides)
  - config/settings.json             (non-secret knobs, optional)
  - config/config.<INSTANCE_ID>.json (bot token, written on first run from the hub)

Outputs (standalone, local-only):
  - logs/Botlogs/chatplugdiscordlogs.json  (JSONL)
  - config/systemlogs.json                 (JSON array)
"""

from __future__ import annotations

import asyncio
from pathlib import Path

_BOT_DIR = Path(__file__).resolve().parent
_CONFIG_DIR = _BOT_DIR / "config"


def main() -> int:
    from bridge_config import hub_environment, is_configured, load_settings_and_env
    from bridge_errors import BridgeError
    from hub_client import HubClient
    from logging_utils import log_error, log_info, setup_console_logging, startup_banner
    from runtime_proof import build_runtime_proof_lines
    from session_manager import BridgeSessionManager
    import settings_store as cfg

    settings, env = load_settings_and_env(_CONFIG_DIR)
    cfg.init(settings)
    setup_console_logging(verbose=cfg.VERBOSE)

    hub_env = hub_environment(env)
    proof_lines = build_runtime_proof_lines(
        script_path=Path(__file__).resolve(),
        config_dir=_CONFIG_DIR,
        instance_id=hub_env.instance_id,
        http_endpoint=hub_env.http_endpoint,
        ws_endpoint=hub_env.ws_endpoint,
        configured=bool(hub_env.instance_id) and is_configured(_CONFIG_DIR, hub_env.instance_id),
        extra={"discord_api": cfg.DISCORD_API_BASE},
    )
    startup_banner(proof_lines, bot_name="ChatPlugDiscordBot")

    if not hub_env.instance_id:
        log_error("Missing INSTANCE_ID. Set it in the environment or ChatPlugDiscordBot/config/.env")
        return 2

    hub = HubClient(
        instance_id=hub_env.instance_id,
        http_endpoint=hub_env.http_endpoint,
        ws_endpoint=hub_env.ws_endpoint,
    )
    manager = BridgeSessionManager(config_dir=_CONFIG_DIR, hub=hub)

    log_info("Starting ChatPlugDiscordBot...")
    try:
        asyncio.run(manager.run())
    except KeyboardInterrupt:
        log_info("Interrupted; shutting down.")
        return 0
    except BridgeError as e:
        log_error("Bridge stopped", error=e)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
