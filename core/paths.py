from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

__all__ = [
    "ensure_working_dir_structure",
    "get_data_dir",
    "get_default_settings_paths",
    "get_logs_dir",
    "get_plugins_dir",
    "get_site_db_path",
    "get_site_dir",
    "get_theme_root",
    "get_uploads_dir",
    "resolve_working_dir",
    "safe_label",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_HOME_ENV = "SITEBACKUP_HOME"


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        try:
            if test_file.exists():
                test_file.unlink()
        except OSError:  # pragma: no cover - cleanup only
            pass
        return False


def resolve_working_dir(candidate: Optional[str] = None) -> Path:
    """Resolve the SiteBackup working directory, creating it if required.

    Order: explicit *candidate*, ``$SITEBACKUP_HOME``, the current directory.
    """

    for value in (candidate, os.environ.get(_HOME_ENV)):
        if not value or not str(value).strip():
            continue
        path = _expand_path(str(value))
        if _ensure_writable_dir(path):
            return path
    return Path.cwd().resolve()


def get_data_dir(working_dir: Path) -> Path:
    return working_dir / "data"


def get_site_db_path(working_dir: Path) -> Path:
    return get_data_dir(working_dir) / "site.db"


def get_site_dir(working_dir: Path) -> Path:
    return working_dir / "site"


def get_theme_root(working_dir: Path) -> Path:
    return get_site_dir(working_dir) / "themes"


def get_plugins_dir(working_dir: Path) -> Path:
    return get_site_dir(working_dir) / "plugins"


def get_uploads_dir(working_dir: Path) -> Path:
    return working_dir / "uploads"


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


_SAFE_LABEL_PATTERN = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_label(label: str, *, default: str = "site") -> str:
    """Return a filesystem-safe single path segment for *label*."""

    cleaned = _SAFE_LABEL_PATTERN.sub("_", str(label).strip()).strip(".")
    return cleaned or default


def ensure_working_dir_structure(working_dir: Path) -> None:
    for directory in (
        working_dir,
        get_data_dir(working_dir),
        get_theme_root(working_dir),
        get_plugins_dir(working_dir),
        get_uploads_dir(working_dir),
        get_logs_dir(working_dir),
    ):
        directory.mkdir(parents=True, exist_ok=True)


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for settings.json files."""

    return [working_dir / "settings.json", _PROJECT_ROOT / "settings.json"]
