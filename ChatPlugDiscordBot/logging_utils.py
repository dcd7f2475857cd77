from __future__ import annotations

import builtins as _builtins
import json
import logging
import os
import re as _re
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import colorama
from colorama import Fore as _F
from colorama import Style as _S

_BOT_DIR = Path(__file__).resolve().parent

_BOT_LOG_PATH = _BOT_DIR / "logs" / "Botlogs" / "chatplugdiscordlogs.json"
_SYSTEM_LOG_PATH = _BOT_DIR / "config" / "systemlogs.json"
_SYSTEM_LOG_KEEP = 500

_CONSOLE_LOCK = threading.RLock()
_FILE_LOCK = threading.RLock()
_VERBOSE_CONSOLE: bool = True

colorama.init(autoreset=True)

_TAG_COLORS: Dict[str, str] = {
    "INFO": _F.GREEN,
    "WARN": _F.YELLOW,
    "ERROR": _F.RED,
    "DEBUG": _F.WHITE,
    "OUTBOUND": _F.MAGENTA,
    "INBOUND": _F.CYAN,
    "SEARCH": _F.BLUE,
    "PROXY": _F.YELLOW,
}


def configure_log_paths(*, bot_log_path: Optional[Path] = None, system_log_path: Optional[Path] = None) -> None:
    """Redirect file logs (tests point these at a tmp dir)."""
    global _BOT_LOG_PATH, _SYSTEM_LOG_PATH
    if bot_log_path is not None:
        _BOT_LOG_PATH = Path(bot_log_path)
    if system_log_path is not None:
        _SYSTEM_LOG_PATH = Path(system_log_path)


def _redact(text: str) -> str:
    # Webhook tokens must never end up in console or file logs.
    return _re.sub(r"(/webhooks/\d+/)[A-Za-z0-9_\-\.]+", r"\1***", text)


def _ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def _append_json_line(path: Path, entry: Dict[str, Any]) -> None:
    try:
        _ensure_parent_dir(path)
        if "timestamp" not in entry:
            entry["timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%S")
        with _FILE_LOCK:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
    except OSError as e:
        _builtins.print(f"[WARN] bot log write failed ({type(e).__name__}: {e})", file=sys.stderr)


def write_bot_log(entry: Dict[str, Any]) -> None:
    _append_json_line(_BOT_LOG_PATH, entry)


def write_system_log(entry: Dict[str, Any]) -> None:
    try:
        _ensure_parent_dir(_SYSTEM_LOG_PATH)
        entry = dict(entry)
        if "timestamp" not in entry:
            entry["timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%S")
        with _FILE_LOCK:
            logs: List[Dict[str, Any]] = []
            try:
                with open(_SYSTEM_LOG_PATH, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                    if isinstance(loaded, list):
                        logs = loaded
            except (FileNotFoundError, json.JSONDecodeError):
                logs = []
            logs.append(entry)
            logs = logs[-_SYSTEM_LOG_KEEP:]
            tmp = Path(str(_SYSTEM_LOG_PATH) + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(logs, f, indent=2, ensure_ascii=False, default=str)
            os.replace(str(tmp), str(_SYSTEM_LOG_PATH))
    except OSError as e:
        _builtins.print(f"[WARN] system log write failed ({type(e).__name__}: {e})", file=sys.stderr)


def setup_console_logging(*, verbose: bool) -> None:
    global _VERBOSE_CONSOLE
    _VERBOSE_CONSOLE = bool(verbose)

    logging.basicConfig(level=logging.WARNING, handlers=[logging.StreamHandler(sys.stdout)], force=True)
    # Prevent discord.py from attaching its own handlers (avoids duplicate log lines).
    for logger_name in ("discord", "discord.client", "discord.gateway", "discord.http"):
        lg = logging.getLogger(logger_name)
        lg.handlers.clear()
        lg.setLevel(logging.ERROR)
        lg.propagate = False


def startup_banner(lines: List[str], *, bot_name: str = "ChatPlugDiscordBot") -> None:
    bar = "=" * 55
    with _CONSOLE_LOCK:
        _builtins.print(_F.WHITE + bar + _S.RESET_ALL)
        _builtins.print(f"{_F.GREEN}[START]{_S.RESET_ALL} {_F.WHITE}{bot_name}{_S.RESET_ALL}")
        for line in lines:
            _builtins.print(f"{_F.WHITE}{line}{_S.RESET_ALL}")
        _builtins.print(_F.WHITE + bar + _S.RESET_ALL + "\n")


def _tag_print(tag: str, msg: str) -> None:
    color = _TAG_COLORS.get(tag, _F.WHITE)
    try:
        with _CONSOLE_LOCK:
            _builtins.print(f"{color}[{tag}]{_S.RESET_ALL} {_F.WHITE}{msg}{_S.RESET_ALL}", flush=True)
    except UnicodeEncodeError:
        safe = msg.encode("ascii", errors="replace").decode("ascii")
        _builtins.print(f"[{tag}] {safe}", flush=True)


def _log(level: str, tag: str, msg: str, event: Optional[str], fields: Dict[str, Any]) -> Dict[str, Any]:
    msg = _redact(str(msg))
    _tag_print(tag, msg)
    entry: Dict[str, Any] = {"level": level, "message": msg}
    if tag != level:
        entry["tag"] = tag
    if event:
        entry["event"] = event
    if fields:
        entry.update(fields)
    write_bot_log(entry)
    return entry


def log_debug(msg: str, *, event: Optional[str] = None, **fields: Any) -> None:
    if not _VERBOSE_CONSOLE:
        return
    _log("DEBUG", "DEBUG", msg, event, fields)


def log_info(msg: str, *, event: Optional[str] = None, **fields: Any) -> None:
    _log("INFO", "INFO", msg, event, fields)


def log_warn(msg: str, *, event: Optional[str] = None, **fields: Any) -> None:
    _log("WARN", "WARN", msg, event, fields)


def log_error(msg: str, *, error: Optional[BaseException] = None, event: Optional[str] = None, **fields: Any) -> None:
    if error is not None:
        msg = f"{msg} ({type(error).__name__}: {error})"
        fields = dict(fields)
        fields["error_type"] = type(error).__name__
        fields["error_message"] = _redact(str(error))
    entry = _log("ERROR", "ERROR", msg, event, fields)
    if error is not None:
        write_system_log(entry)


def log_outbound(msg: str, *, event: Optional[str] = None, **fields: Any) -> None:
    _log("INFO", "OUTBOUND", msg, event, fields)


def log_inbound(msg: str, *, event: Optional[str] = None, **fields: Any) -> None:
    _log("INFO", "INBOUND", msg, event, fields)


def log_search(msg: str, *, event: Optional[str] = None, **fields: Any) -> None:
    _log("INFO", "SEARCH", msg, event, fields)


def log_proxy(msg: str, *, event: Optional[str] = None, **fields: Any) -> None:
    _log("INFO", "PROXY", msg, event, fields)
