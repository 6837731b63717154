from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Dict

from .settings_schema import SETTINGS_VALIDATOR

from .paths import get_default_settings_paths, get_logs_dir

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
    "save_settings",
    "update_settings",
]

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "site": {
        "database_path": None,
        "theme_root": None,
        "theme_dir": None,
        "plugins_dir": None,
    },
    "server": {
        "api_key": None,
        "uploads_dir": None,
        "public_base_url": None,
    },
    "restore": {
        "strict": False,
        "theme_name": "backup-theme",
        "plugin_extensions": [".php", ".py"],
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8757,
        "auth_failure_status": 200,
        "cors_origins": [],
    },
    "client": {
        "interval_s": 86400,
        "connect_timeout_s": 15,
        "read_timeout_s": 300,
        "output_root": None,
        "projects": [],
    },
}


def _merge_section(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for key, fallback in default.items():
        value = payload.get(key)
        if isinstance(fallback, dict):
            merged[key] = _merge_section(fallback, value if isinstance(value, dict) else {})
        elif isinstance(fallback, list):
            merged[key] = list(value) if isinstance(value, list) else list(fallback)
        else:
            merged[key] = payload.get(key, fallback)
    merged.update({key: value for key, value in payload.items() if key not in default})
    return merged


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    return _merge_section(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    try:
        version = int(settings.get("version") or 0)
    except (TypeError, ValueError):
        version = 0
    if version < 1:
        # Early installs kept the key at the top level.
        legacy_key = settings.pop("api_key", None)
        server = settings.get("server")
        if not isinstance(server, dict):
            server = settings["server"] = {}
        if legacy_key and not server.get("api_key"):
            server["api_key"] = legacy_key
    settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    logs_dir = get_logs_dir(working_dir)
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        with open(logs_dir / "settings_unknown.json", "w", encoding="utf-8") as handle:
            json.dump({"ts": time.time(), "unknown": unknown}, handle, ensure_ascii=False, indent=2)
    except OSError:
        return


def _read_first_settings_file(working_dir: Path) -> Dict[str, Any]:
    for candidate in get_default_settings_paths(working_dir):
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except (OSError, json.JSONDecodeError):
            continue
        if isinstance(loaded, dict):
            return loaded
    return {}


def load_settings(working_dir: Path) -> Dict[str, Any]:
    """Return settings.json merged over :data:`DEFAULT_SETTINGS`."""

    settings = merge_defaults(_apply_migrations(_read_first_settings_file(working_dir)))
    settings.setdefault("working_dir", str(working_dir))
    _log_unknown_keys(settings, working_dir)
    return settings


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    payload = merge_defaults(_apply_migrations(dict(settings)))
    payload.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".part")
    with open(partial, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    os.replace(partial, path)


def update_settings(working_dir: Path, section: str, **values: Any) -> Dict[str, Any]:
    """Update keys inside one settings *section* and persist the result."""

    current = load_settings(working_dir)
    block = current.get(section)
    if not isinstance(block, dict):
        block = {}
    block.update(values)
    current[section] = block
    save_settings(current, working_dir)
    return current
