"""CLI entry-point for the backup poller."""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from client import BackupClient, ClientConfig, PollRunner
from core.logging_utils import configure_console_logging, configure_json_logging
from core.paths import ensure_working_dir_structure, resolve_working_dir
from core.settings import load_settings


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Poll site backup servers and download their artifacts.")
    parser.add_argument("--home", default=None, help="Working directory (default $SITEBACKUP_HOME or cwd)")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between sweeps (default from settings.json)")
    parser.add_argument("--output", default=None, help="Root folder for downloaded backups")
    parser.add_argument("--json-log", action="store_true", help="Also write JSON-lines logs under logs/.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_console_logging()
    args = parse_args(argv)

    working_dir = resolve_working_dir(args.home)
    ensure_working_dir_structure(working_dir)
    if args.json_log:
        configure_json_logging(working_dir, filename="sitebackup_client.log.jsonl")

    settings = load_settings(working_dir)
    config = ClientConfig.from_settings(settings, working_dir, output_root=args.output, interval_s=args.interval)
    if not config.projects:
        logging.error("No client projects configured in %s", working_dir / "settings.json")
        return 2

    client = BackupClient(config)
    runner = PollRunner(client)
    try:
        if args.once:
            results = runner.run_once()
            return 0 if all(result.ok for result in results) else 1
        print(f"Polling {len(config.projects)} project(s) every {runner.interval_s:.0f}s", flush=True)
        runner.run_forever()
    except KeyboardInterrupt:
        runner.stop()
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
