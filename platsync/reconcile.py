"""Classify each requested package's programs and add the target platform where missing."""
from __future__ import annotations

from collections import Counter
import logging
from typing import Iterable, List, Optional

from .client import ManagementApiError, PackageLookupError, PackageManagementClient
from .models import (
    NO_PROGRAMS_NAME,
    STATUS_ALREADY_UPDATED,
    STATUS_NO_PROGRAMS,
    STATUS_NOT_FOUND,
    STATUS_UPDATE_FAILED,
    STATUS_UPDATED,
    OutcomeRecord,
    Package,
    PackageRequest,
    Program,
    ProgramOSConstraint,
    TargetSpec,
    merge_metadata,
)

LOGGER = logging.getLogger(__name__)


def constraint_matches(constraints: Iterable[ProgramOSConstraint], target: TargetSpec) -> bool:
    return any(constraint.matches(target) for constraint in constraints)


def build_record(
    request: PackageRequest,
    status: str,
    program_name: str,
    package: Optional[Package] = None,
) -> OutcomeRecord:
    return OutcomeRecord(
        package_name=request.package_name,
        program_name=program_name,
        status=status,
        **merge_metadata(request, package),
    )


def evaluate_program(
    package: Package,
    program: Program,
    target: TargetSpec,
    api: PackageManagementClient,
) -> str:
    """Return the status for one program, updating it when the target is missing."""

    # The program itself was listed, so an unreadable OS list is a failed update,
    # not a missing program; nothing is written without knowing what is there.
    try:
        constraints = api.get_supported_operating_systems(package, program)
    except ManagementApiError as exc:
        LOGGER.error(
            "Unable to read supported platforms of program %s in package %s: %s",
            program.name,
            package.name,
            exc,
        )
        return STATUS_UPDATE_FAILED

    if constraint_matches(constraints, target):
        LOGGER.info(
            "Program %s in package %s already supports %s",
            program.name,
            package.name,
            target.name,
        )
        return STATUS_ALREADY_UPDATED

    try:
        api.add_supported_platform(package, program, target.name)
    except ManagementApiError as exc:
        LOGGER.error(
            "Failed to add %s to program %s in package %s: %s",
            target.name,
            program.name,
            package.name,
            exc,
        )
        return STATUS_UPDATE_FAILED

    LOGGER.info(
        "Added %s to program %s in package %s", target.name, program.name, package.name
    )
    return STATUS_UPDATED


def reconcile_request(
    request: PackageRequest,
    target: TargetSpec,
    api: PackageManagementClient,
) -> list[OutcomeRecord]:
    try:
        package = api.find_package(request.package_name)
    except PackageLookupError as exc:
        LOGGER.error("Lookup of package %s failed: %s", request.package_name, exc)
        package = None

    if package is None:
        LOGGER.warning("Package %s not found", request.package_name)
        return [build_record(request, STATUS_NOT_FOUND, "")]

    try:
        programs = api.list_programs(package)
    except PackageLookupError as exc:
        LOGGER.error("Unable to list programs of package %s: %s", package.name, exc)
        programs = []

    if not programs:
        LOGGER.warning("Package %s has no programs", package.name)
        return [build_record(request, STATUS_NO_PROGRAMS, NO_PROGRAMS_NAME, package)]

    return [
        build_record(
            request, evaluate_program(package, program, target, api), program.name, package
        )
        for program in programs
    ]


def reconcile(
    requests: Iterable[PackageRequest],
    target: TargetSpec,
    api: PackageManagementClient,
) -> list[OutcomeRecord]:
    records: List[OutcomeRecord] = []
    for request in requests:
        LOGGER.info("Processing package %s", request.package_name)
        records.extend(reconcile_request(request, target, api))
    return records


def summarise(records: Iterable[OutcomeRecord]) -> Counter:
    """Tally records by status; blank status is reported as "NoPrograms"."""

    return Counter(record.status or "NoPrograms" for record in records)
