"""API key authentication for the backup endpoints."""
from __future__ import annotations

from typing import Callable, Optional

from fastapi import Header, HTTPException, Query, status

KeyCheck = Callable[[Optional[str]], bool]


class APIKeyAuth:
    """Dependency enforcing the stored API key.

    The key is read from the ``key`` query parameter, which is what download
    clients send, or from the ``X-API-Key`` header. Comparison is left to
    *check*, normally ``BackupService.authenticate``.
    """

    def __init__(self, check: KeyCheck, *, configured: bool = True) -> None:
        self._check = check
        self._configured = configured

    def __call__(
        self,
        key: Optional[str] = Query(None),
        x_api_key: Optional[str] = Header(None),
    ) -> str:
        if not self._configured:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="API key is not configured.",
            )
        provided = key if key is not None else x_api_key
        if not self._check(provided):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid API key",
            )
        return provided or ""
