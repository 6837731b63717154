"""Client-side poller that pulls site backups into timestamped folders."""
from __future__ import annotations

from .config import ClientConfig, ProjectConfig
from .fetch import BackupClient, ProjectResult, format_timestamp
from .runner import PollRunner

__all__ = [
    "BackupClient",
    "ClientConfig",
    "PollRunner",
    "ProjectConfig",
    "ProjectResult",
    "format_timestamp",
]
