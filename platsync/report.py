"""CSV report output for reconciliation outcomes."""
from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Iterable, Tuple

from .models import REPORT_COLUMNS, OutcomeRecord

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
REPORT_PREFIX = "PackageUpdateReport"
LOG_PREFIX = "PackageUpdateLog"


class OutputError(RuntimeError):
    """Raised when the report cannot be written."""


def execution_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def report_paths(out_dir: Path, timestamp: str) -> Tuple[Path, Path]:
    """Return the report and log paths for one execution."""

    return (
        out_dir / f"{REPORT_PREFIX}_{timestamp}.csv",
        out_dir / f"{LOG_PREFIX}_{timestamp}.log",
    )


def write_csv(path: Path, records: Iterable[OutcomeRecord]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(REPORT_COLUMNS))
            writer.writeheader()
            for record in records:
                writer.writerow(record.as_dict())
    except OSError as exc:
        raise OutputError(f"Unable to write report {path}: {exc}") from exc
