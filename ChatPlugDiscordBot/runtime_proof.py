from __future__ import annotations

import os
import platform
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional


def _or_unset(value: str) -> str:
    v = str(value or "")
    if not v:
        return "(unset)"
    return v


def build_runtime_proof_lines(
    *,
    script_path: Path,
    config_dir: Path,
    instance_id: str,
    http_endpoint: str,
    ws_endpoint: str,
    configured: bool,
    extra: Optional[Dict[str, Any]] = None,
) -> List[str]:
    extra = dict(extra or {})
    lines: List[str] = []
    lines.append(f"cwd: {os.getcwd()}")
    lines.append(f"script: {str(script_path)}")
    lines.append(f"python: {sys.executable}")
    lines.append(f"python_version: {platform.python_version()}")
    lines.append(f"platform: {platform.platform()}")
    lines.append(f"config_dir: {str(config_dir)}")
    lines.append(f"instance_id: {_or_unset(instance_id)}")
    lines.append(f"hub_http: {_or_unset(http_endpoint)}")
    lines.append(f"hub_ws: {_or_unset(ws_endpoint)}")
    lines.append(f"configured: {'yes' if configured else 'no (awaiting hub configuration)'}")
    for k, v in extra.items():
        if v is None:
            continue
        lines.append(f"{k}: {v}")
    return lines
