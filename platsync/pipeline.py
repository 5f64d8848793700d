"""High-level orchestration for a supported-platform update run."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Callable, Iterator, List

from .client import BootstrapError, PackageManagementClient, PlatformNotFoundError
from .inputs import ConfigError, InputError, load_requests, load_target
from .models import OutcomeRecord
from .reconcile import reconcile, summarise
from .report import OutputError, execution_timestamp, report_paths, write_csv

LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


@dataclass(slots=True)
class RunResult:
    report_path: Path
    log_path: Path
    records: List[OutcomeRecord]


@contextmanager
def transcript(log_path: Path, *, level: int = logging.INFO) -> Iterator[None]:
    """Mirror every log line to the console and to ``log_path`` while active."""

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as exc:
        raise OutputError(f"Unable to open log {log_path}: {exc}") from exc

    console_handler = logging.StreamHandler()
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        handler.setLevel(level)

    root = logging.getLogger()
    previous_level = root.level
    root.setLevel(min(level, logging.INFO))
    root.addHandler(file_handler)
    root.addHandler(console_handler)
    try:
        yield
    finally:
        root.removeHandler(console_handler)
        root.removeHandler(file_handler)
        file_handler.close()
        root.setLevel(previous_level)


def run_reconciliation(
    *,
    config_path: Path,
    packages_path: Path,
    out_dir: Path,
    client_factory: Callable[[], PackageManagementClient],
    timestamp: str | None = None,
    log_level: int = logging.INFO,
) -> RunResult | None:
    """Run one batch; returns ``None`` when the session could not be bootstrapped."""

    report_path, log_path = report_paths(out_dir, timestamp or execution_timestamp())

    with transcript(log_path, level=log_level):
        LOGGER.info("Execution log: %s", log_path)
        try:
            try:
                api = client_factory()
            except BootstrapError as exc:
                LOGGER.error("Aborting before processing any package: %s", exc)
                return None

            platform_name = load_target(config_path)
            try:
                target = api.resolve_platform(platform_name)
            except PlatformNotFoundError as exc:
                raise ConfigError(f"Target platform {platform_name!r} is unknown: {exc}") from exc
            LOGGER.info(
                "Target platform %s (%s %s - %s)",
                target.name,
                target.platform,
                target.min_version,
                target.max_version,
            )

            requests = load_requests(packages_path)
            records = reconcile(requests, target, api)
            write_csv(report_path, records)
        except (ConfigError, InputError, OutputError) as exc:
            LOGGER.error("%s", exc)
            raise

        for status, count in sorted(summarise(records).items()):
            LOGGER.info("%s: %d", status, count)
        LOGGER.info("Report written to %s", report_path)

    return RunResult(report_path=report_path, log_path=log_path, records=records)
