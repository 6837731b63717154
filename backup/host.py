"""Theme and plugin activation for the hosted site."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol

from .errors import RestoreError

LOGGER = logging.getLogger("sitebackup.backup.host")

DEFAULT_THEME = "default"


class SiteHost(Protocol):
    """Operations the restore path needs from the site being restored."""

    def active_theme(self) -> str: ...

    def activate_theme(self, name: str) -> None: ...

    def activate_plugin(self, relative_path: str) -> None: ...

    def snapshot(self) -> Dict[str, Any]: ...

    def restore_state(self, state: Dict[str, Any]) -> None: ...


class FileSiteHost:
    """Keep the active theme and plugin list in a JSON state file.

    ``{"theme": "<dir under theme_root>", "plugins": ["<path under plugins_dir>", ...]}``
    """

    def __init__(self, state_path: Path, *, theme_root: Path, plugins_dir: Path) -> None:
        self._state_path = Path(state_path)
        self._theme_root = Path(theme_root)
        self._plugins_dir = Path(plugins_dir)
        self._lock = Lock()

    # ------------------------------------------------------------------
    def _load(self) -> Dict[str, Any]:
        try:
            with self._state_path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            data = {}
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable site state %s: %s", self._state_path, exc)
            data = {}
        if not isinstance(data, dict):
            data = {}
        theme = data.get("theme")
        plugins = data.get("plugins")
        return {
            "theme": theme if isinstance(theme, str) and theme else DEFAULT_THEME,
            "plugins": [str(item) for item in plugins] if isinstance(plugins, list) else [],
        }

    def _save(self, state: Dict[str, Any]) -> None:
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        partial = self._state_path.with_name(self._state_path.name + ".part")
        with partial.open("w", encoding="utf-8") as handle:
            json.dump(state, handle, ensure_ascii=False, indent=2)
        os.replace(partial, self._state_path)

    # ------------------------------------------------------------------
    def active_theme(self) -> str:
        return str(self._load()["theme"])

    def active_plugins(self) -> List[str]:
        return list(self._load()["plugins"])

    def activate_theme(self, name: str) -> None:
        if not (self._theme_root / name).is_dir():
            raise RestoreError(f"theme {name!r} not found under {self._theme_root}")
        with self._lock:
            state = self._load()
            state["theme"] = name
            self._save(state)

    def activate_plugin(self, relative_path: str) -> None:
        relative = relative_path.replace("\\", "/").lstrip("/")
        if not (self._plugins_dir / relative).is_file():
            raise RestoreError(f"plugin {relative!r} not found under {self._plugins_dir}")
        with self._lock:
            state = self._load()
            if relative not in state["plugins"]:
                state["plugins"].append(relative)
            self._save(state)

    def snapshot(self) -> Dict[str, Any]:
        state = self._load()
        return {"theme": state["theme"], "plugins": list(state["plugins"])}

    def restore_state(self, state: Dict[str, Any]) -> None:
        with self._lock:
            self._save({"theme": state.get("theme") or DEFAULT_THEME, "plugins": list(state.get("plugins") or [])})


__all__ = ["DEFAULT_THEME", "FileSiteHost", "SiteHost"]
