"""Utilities for reading the run configuration and the package list."""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import List

from lxml import etree

from .models import METADATA_COLUMNS, PackageRequest

LOGGER = logging.getLogger(__name__)

PACKAGE_NAME_COLUMN = "PackageName"
TARGET_PLATFORM_ELEMENT = "TargetPlatform"


class ConfigError(RuntimeError):
    """Raised when the configuration document is missing or malformed."""


class InputError(RuntimeError):
    """Raised when the package list cannot be read."""


def load_target(path: Path) -> str:
    """Return the target platform name declared in the XML configuration."""

    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        tree = etree.parse(str(path))
    except (etree.XMLSyntaxError, OSError) as exc:
        raise ConfigError(f"Unable to parse configuration {path}: {exc}") from exc

    element = tree.getroot().find(f".//{{*}}{TARGET_PLATFORM_ELEMENT}")
    if element is None or not (element.text or "").strip():
        raise ConfigError(f"Missing {TARGET_PLATFORM_ELEMENT} in {path}")
    return element.text.strip()


def _sniff_delimiter(sample: str) -> str:
    """Detect a CSV delimiter, defaulting to comma when uncertain."""

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;")
        return dialect.delimiter
    except csv.Error:
        return ";" if sample.count(";") > sample.count(",") else ","


def normalise_row(row: dict[str, str]) -> PackageRequest:
    values = {
        field: (row.get(column) or "").strip() for field, column in METADATA_COLUMNS
    }
    return PackageRequest(
        package_name=(row.get(PACKAGE_NAME_COLUMN) or "").strip(), **values
    )


def load_requests(path: Path) -> List[PackageRequest]:
    try:
        with path.open(newline="", encoding="utf-8-sig") as handle:
            sample = handle.read(1024)
            handle.seek(0)
            reader = csv.DictReader(handle, delimiter=_sniff_delimiter(sample))
            if reader.fieldnames is None:
                raise InputError(f"Package list {path} is empty")
            reader.fieldnames = [name.strip() for name in reader.fieldnames]
            if PACKAGE_NAME_COLUMN not in reader.fieldnames:
                raise InputError(f"Missing {PACKAGE_NAME_COLUMN} column in {path}")

            requests: List[PackageRequest] = []
            for line_no, row in enumerate(reader, start=2):
                request = normalise_row(row)
                if not request.package_name:
                    LOGGER.warning("Skipping row %d of %s: no package name", line_no, path)
                    continue
                requests.append(request)
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise InputError(f"Unable to read package list {path}: {exc}") from exc

    LOGGER.info("Loaded %d package(s) from %s", len(requests), path)
    return requests
