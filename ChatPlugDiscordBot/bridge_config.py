from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

from bridge_errors import ConfigInvalid, ConfigMissing
from bridge_models import BridgeConfiguration


@dataclass(frozen=True)
class HubEnvironment:
    instance_id: str
    http_endpoint: str
    ws_endpoint: str


def _load_env_file(path: Path) -> Dict[str, str]:
    out: Dict[str, str] = {}
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                k, _, v = line.partition("=")
                k = k.strip()
                v = v.strip().strip('"').strip("'")
                if not k:
                    continue
                out[k] = v
    except FileNotFoundError:
        return out
    return out


def _load_settings_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def load_settings_and_env(config_dir: Path) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """
    Return (settings, env).

    settings: config/settings.json (non-secret knobs, optional)
    env: OS environment, overridden by an optional config/.env file
    """
    settings = _load_settings_json(config_dir / "settings.json")
    env: Dict[str, str] = dict(os.environ)
    env.update(_load_env_file(config_dir / ".env"))
    return settings, env


def hub_environment(env: Dict[str, str]) -> HubEnvironment:
    return HubEnvironment(
        instance_id=str(env.get("INSTANCE_ID") or "").strip(),
        http_endpoint=str(env.get("HTTP_ENDPOINT") or "").strip(),
        ws_endpoint=str(env.get("WS_ENDPOINT") or "").strip(),
    )


# ---------------- Per-instance bridge configuration ----------------


def bridge_config_path(config_dir: Path, instance_id: str) -> Path:
    return config_dir / f"config.{instance_id}.json"


def is_configured(config_dir: Path, instance_id: str) -> bool:
    return bridge_config_path(config_dir, instance_id).exists()


def load_bridge_configuration(config_dir: Path, instance_id: str) -> BridgeConfiguration:
    path = bridge_config_path(config_dir, instance_id)
    try:
        raw = json.loads(path.read_text(encoding="utf-8") or "{}")
    except FileNotFoundError as e:
        raise ConfigMissing(f"configuration file not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigInvalid(f"configuration file unreadable: {path} ({type(e).__name__}: {e})") from e
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"configuration file is not a JSON object: {path}")
    token = str(raw.get("botToken") or "").strip()
    if not token:
        raise ConfigInvalid(f"botToken missing in {path}")
    return BridgeConfiguration(bot_token=token)


def save_bridge_configuration(config_dir: Path, instance_id: str, field_values: List[str]) -> BridgeConfiguration:
    """Persist the values submitted through the hub. The first field is the bot token."""
    values = list(field_values or [])
    token = str(values[0] if values else "").strip()
    if not token:
        raise ConfigInvalid("hub delivered an empty bot token")
    conf = BridgeConfiguration(bot_token=token)
    path = bridge_config_path(config_dir, instance_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = Path(str(path) + ".tmp")
    tmp.write_text(json.dumps({"botToken": conf.bot_token}, indent=1), encoding="utf-8")
    tmp.replace(path)
    return conf
