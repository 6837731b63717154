"""FastAPI application exposing site backup downloads and restore uploads."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from backup import BackupService
from backup.errors import AuthError

from .auth import APIKeyAuth
from .models import ArtifactResult, AuthFailureResponse, HealthResponse, RestoreResponse

LOGGER = logging.getLogger("sitebackup.api")

UNEXPECTED_FAILURE = "An exception occurred during the backup process."


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    service: BackupService
    app_version: str = "dev"
    auth_failure_status: int = status.HTTP_200_OK
    cors_origins: Sequence[str] = field(default_factory=list)


def create_app(config: APIServerConfig) -> FastAPI:
    """Create a FastAPI application bound to the given configuration."""

    app = FastAPI(
        title="SiteBackup API",
        version=config.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    allowed_origins: List[str] = [origin for origin in config.cors_origins if origin]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    service = config.service
    auth_dependency = APIKeyAuth(service.authenticate, configured=bool(service.config.api_key))
    public_base_url = service.config.public_base_url

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response is not None else 500
            client = request.client.host if request.client else "-"
            LOGGER.info(
                "%s %s -> %s (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                client,
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid parameters", "details": exc.errors()},
        )

    @app.get("/backup/v1/health", response_model=HealthResponse)
    def health_check(_: str = Depends(auth_dependency)) -> HealthResponse:
        return HealthResponse(
            ok=True,
            version=config.app_version,
            time_utc=datetime.now(timezone.utc).isoformat(),
        )

    @app.get("/backup/v1/download")
    def download(request: Request, key: Optional[str] = Query(None)) -> JSONResponse:
        def url_for(name: str) -> str:
            if public_base_url:
                return f"{public_base_url}/{name}"
            return str(request.url_for("download_artifact", name=name))

        try:
            manifest = service.create_backup(key, url_for=url_for)
        except AuthError as exc:
            body = AuthFailureResponse(error=str(exc))
            return JSONResponse(
                status_code=config.auth_failure_status,
                content=body.model_dump(exclude_none=True),
            )
        except Exception as exc:
            LOGGER.exception("Backup request failed")
            service.log_exception(f"Exception encountered: {exc}")
            body = AuthFailureResponse(error=UNEXPECTED_FAILURE, details=str(exc))
            return JSONResponse(content=body.model_dump(exclude_none=True))
        content = {
            result.key: ArtifactResult(**result.to_payload()).model_dump(exclude_none=True)
            for result in manifest
        }
        return JSONResponse(content=content)

    @app.get("/backup/v1/files/{name}", name="download_artifact")
    def download_artifact(name: str) -> FileResponse:
        path = service.artifact_path(name)
        if path is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="unknown artifact")
        return FileResponse(path, filename=name)

    @app.post("/backup/v1/upload", response_model=RestoreResponse)
    def upload(
        backup_files: List[UploadFile] = File(...),
        _: str = Depends(auth_dependency),
    ) -> RestoreResponse:
        uploads = [(item.filename or "", item.file) for item in backup_files]
        result = service.restore_upload(uploads)
        return RestoreResponse(**result.to_payload())

    @app.get("/backup/v1/logs", response_class=PlainTextResponse)
    def logs(_: str = Depends(auth_dependency)) -> PlainTextResponse:
        return PlainTextResponse(service.read_log())

    return app


__all__ = [
    "APIServerConfig",
    "create_app",
]
