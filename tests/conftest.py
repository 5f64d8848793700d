import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from platsync.client import PlatformNotFoundError
from platsync.models import Package, Program, TargetSpec


class FakeClient:
    """In-memory stand-in for the AdminService that records every mutation."""

    def __init__(self, target: TargetSpec):
        self.target = target
        self.packages = {}
        self.programs = {}
        self.constraints = {}
        self.failures = {}
        self.mutations = []

    def add_package(self, name, *, programs=(), package_id=None, **metadata):
        package = Package(
            name=name,
            package_id=package_id or f"PS1{len(self.packages) + 1:05d}",
            **metadata,
        )
        self.packages[name] = package
        self.programs[package.package_id] = [
            Program(package_id=package.package_id, name=program) for program in programs
        ]
        return package

    def set_constraints(self, package, program_name, constraints):
        self.constraints[(package.package_id, program_name)] = list(constraints)

    def fail_update(self, package, program_name, exc):
        self.failures[(package.package_id, program_name)] = exc

    def find_package(self, name):
        return self.packages.get(name)

    def list_programs(self, package):
        return list(self.programs.get(package.package_id, []))

    def get_supported_operating_systems(self, package, program):
        return list(self.constraints.get((package.package_id, program.name), []))

    def add_supported_platform(self, package, program, platform_name):
        self.mutations.append((package.name, program.name, platform_name))
        key = (package.package_id, program.name)
        if key in self.failures:
            raise self.failures[key]
        self.constraints.setdefault(key, []).append(self.resolve_platform(platform_name).as_constraint())

    def resolve_platform(self, name):
        if name != self.target.name:
            raise PlatformNotFoundError(f"Platform {name!r} is not a supported platform")
        return self.target


@pytest.fixture
def target():
    return TargetSpec(
        name="All Windows 11 (64-bit)",
        platform="x64",
        min_version="10.00.22000.0",
        max_version="10.00.99999.9999",
        os_name="Win NT",
    )


@pytest.fixture
def fake_api(target):
    return FakeClient(target)
