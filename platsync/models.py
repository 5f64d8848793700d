"""Data models used by the supported-platform reconciliation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NamedTuple, Optional, Tuple

STATUS_UPDATED = "Updated"
STATUS_ALREADY_UPDATED = "AlreadyUpdatedWithTarget"
STATUS_UPDATE_FAILED = "UpdateFailed"
STATUS_NOT_FOUND = "NotFound"
STATUS_NO_PROGRAMS = ""

NO_PROGRAMS_NAME = "Not Found"

# Metadata field name -> report/CSV column, in report order.
METADATA_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("description", "Description"),
    ("package_id", "PackageID"),
    ("manufacturer", "Manufacturer"),
    ("source_site", "SourceSite"),
    ("package_size", "PackageSize"),
    ("no_of_programs", "NoOfPrograms"),
    ("package_source_path", "PackageSourcePath"),
    ("pkg_source_flag", "PkgSourceFlag"),
    ("priority", "Priority"),
    ("object_path", "ObjectPath"),
    ("source_date", "SourceDate"),
    ("transform_analysis_date", "TransformAnalysisDate"),
    ("source_version", "SourceVersion"),
    ("stored_pkg_version", "StoredPkgVersion"),
    ("last_refresh_time", "LastRefreshTime"),
)

METADATA_FIELDS = tuple(field for field, _ in METADATA_COLUMNS)

REPORT_COLUMNS = (
    "PackageName",
    "ProgramName",
    "Status",
    *(column for _, column in METADATA_COLUMNS),
)


def is_blank(value: Any) -> bool:
    """Return True for values that should be backfilled from the package list."""

    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def as_text(value: Any) -> str:
    if is_blank(value):
        return ""
    return str(value)


@dataclass(frozen=True, slots=True)
class PackageRequest:
    """One row of the input package list."""

    package_name: str
    description: str = ""
    package_id: str = ""
    manufacturer: str = ""
    source_site: str = ""
    package_size: str = ""
    no_of_programs: str = ""
    package_source_path: str = ""
    pkg_source_flag: str = ""
    priority: str = ""
    object_path: str = ""
    source_date: str = ""
    transform_analysis_date: str = ""
    source_version: str = ""
    stored_pkg_version: str = ""
    last_refresh_time: str = ""


@dataclass(frozen=True, slots=True)
class TargetSpec:
    """The OS constraint every program should carry after the run."""

    name: str
    platform: str
    min_version: str
    max_version: str
    os_name: str = ""

    def as_constraint(self) -> "ProgramOSConstraint":
        return ProgramOSConstraint(
            max_version=self.max_version,
            min_version=self.min_version,
            platform=self.platform,
            name=self.os_name,
        )


class ProgramOSConstraint(NamedTuple):
    max_version: str
    min_version: str
    platform: str
    name: str = ""

    def matches(self, target: TargetSpec) -> bool:
        return (
            self.platform == target.platform
            and self.min_version == target.min_version
            and self.max_version == target.max_version
        )


@dataclass(frozen=True, slots=True)
class Package:
    """A package as reported by the management system."""

    name: str
    package_id: str
    description: Any = None
    manufacturer: Any = None
    source_site: Any = None
    package_size: Any = None
    no_of_programs: Any = None
    package_source_path: Any = None
    pkg_source_flag: Any = None
    priority: Any = None
    object_path: Any = None
    source_date: Any = None
    transform_analysis_date: Any = None
    source_version: Any = None
    stored_pkg_version: Any = None
    last_refresh_time: Any = None


@dataclass(frozen=True, slots=True)
class Program:
    package_id: str
    name: str
    flags: int = 0


@dataclass(frozen=True, slots=True)
class OutcomeRecord:
    package_name: str
    program_name: str
    status: str
    description: str = ""
    package_id: str = ""
    manufacturer: str = ""
    source_site: str = ""
    package_size: str = ""
    no_of_programs: str = ""
    package_source_path: str = ""
    pkg_source_flag: str = ""
    priority: str = ""
    object_path: str = ""
    source_date: str = ""
    transform_analysis_date: str = ""
    source_version: str = ""
    stored_pkg_version: str = ""
    last_refresh_time: str = ""

    def as_dict(self) -> dict[str, str]:
        row = {
            "PackageName": self.package_name,
            "ProgramName": self.program_name,
            "Status": self.status,
        }
        for field, column in METADATA_COLUMNS:
            row[column] = getattr(self, field)
        return row


def merge_metadata(
    request: PackageRequest, package: Optional[Package] = None
) -> dict[str, str]:
    """Combine package metadata with the request's fallback values.

    A value from the management system is kept whenever it is non-blank; the
    request only fills the gaps. Zero and ``False`` count as real values.
    """

    merged: dict[str, str] = {}
    for field in METADATA_FIELDS:
        value = getattr(package, field) if package is not None else None
        if is_blank(value):
            value = getattr(request, field)
        merged[field] = as_text(value)
    return merged
