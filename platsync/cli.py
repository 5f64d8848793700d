from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .client import AdminServiceConfig, connect
from .inputs import ConfigError, InputError
from .pipeline import run_reconciliation
from .report import OutputError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Add a supported OS platform to Configuration Manager package programs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Update every package in the package list")
    run_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.xml"),
        help="XML configuration declaring the TargetPlatform.",
    )
    run_parser.add_argument(
        "--packages",
        type=Path,
        default=Path("packages.csv"),
        help="CSV package list with a PackageName column.",
    )
    run_parser.add_argument(
        "--out-dir",
        type=Path,
        default=Path("out"),
        help="Directory that will receive the report and execution log.",
    )
    run_parser.add_argument(
        "--site-server",
        help="AdminService host; defaults to PLATSYNC_SITE_SERVER.",
    )
    run_parser.add_argument(
        "--site-code",
        help="Expected site code; defaults to PLATSYNC_SITE_CODE.",
    )
    run_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every AdminService request.",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        def client_factory():
            config = AdminServiceConfig.from_env(
                site_server=args.site_server, site_code=args.site_code
            )
            return connect(config)

        try:
            run_reconciliation(
                config_path=args.config,
                packages_path=args.packages,
                out_dir=args.out_dir,
                client_factory=client_factory,
                log_level=logging.DEBUG if args.verbose else logging.INFO,
            )
        except (ConfigError, InputError, OutputError):
            return 1
        # A run aborted during bootstrap still exits cleanly.
        return 0

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover - exercised via CLI entry point
    raise SystemExit(main())
