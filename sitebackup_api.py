"""CLI entry-point to launch the site backup HTTP API."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import uvicorn

from api import __version__ as API_VERSION
from api.server import APIServerConfig, create_app
from backup import BackupService, ServerConfig
from core.logging_utils import configure_console_logging, configure_json_logging, redact_secret
from core.paths import ensure_working_dir_structure, resolve_working_dir
from core.settings import load_settings, update_settings

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8757


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the site backup API service.")
    parser.add_argument("--home", default=None, help="Working directory (default $SITEBACKUP_HOME or cwd)")
    parser.add_argument("--host", default=None, help="Bind host (default from settings.json)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default from settings.json)")
    parser.add_argument("--api-key", dest="api_key", default=None, help="Override the API key for this session")
    parser.add_argument(
        "--set-api-key",
        dest="set_api_key",
        default=None,
        help="Store a new API key in settings.json and exit.",
    )
    parser.add_argument(
        "--cors",
        action="append",
        dest="cors",
        default=None,
        help="Allowed CORS origin (repeatable).",
    )
    parser.add_argument("--json-log", action="store_true", help="Also write JSON-lines logs under logs/.")
    return parser.parse_args(argv)


def resolve_api_settings(args: argparse.Namespace) -> tuple[Path, str, int, int, List[str], ServerConfig]:
    working_dir = resolve_working_dir(args.home)
    settings = load_settings(working_dir)
    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}

    host = str(args.host or api_settings.get("host") or DEFAULT_HOST)
    port = args.port or api_settings.get("port") or DEFAULT_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        port = DEFAULT_PORT
    try:
        failure_status = int(api_settings.get("auth_failure_status") or 200)
    except (TypeError, ValueError):
        failure_status = 200

    cors = list(args.cors or api_settings.get("cors_origins") or [])
    server_config = ServerConfig.from_settings(settings, working_dir, api_key=args.api_key)
    return working_dir, host, port, failure_status, cors, server_config


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_console_logging()
    args = parse_args(argv)

    if args.set_api_key is not None:
        working_dir = resolve_working_dir(args.home)
        update_settings(working_dir, "server", api_key=args.set_api_key)
        logging.info("Stored API key %s in %s", redact_secret(args.set_api_key), Path(working_dir) / "settings.json")
        return 0

    working_dir, host, port, failure_status, cors, server_config = resolve_api_settings(args)
    ensure_working_dir_structure(working_dir)
    if args.json_log:
        configure_json_logging(working_dir)

    if not server_config.api_key:
        logging.warning("API key is not configured; every backup request will be rejected.")

    config = APIServerConfig(
        service=BackupService(server_config),
        app_version=API_VERSION,
        auth_failure_status=failure_status,
        cors_origins=cors,
    )
    app = create_app(config)

    print(f"API listening on http://{host}:{port}", flush=True)

    uvicorn_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(uvicorn_config)
    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
