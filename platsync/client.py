"""Configuration Manager AdminService access for package and program data."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Any, Dict, List, Optional, Protocol

import requests
import urllib3

from .inputs import ConfigError
from .models import Package, Program, ProgramOSConstraint, TargetSpec

LOGGER = logging.getLogger(__name__)

# SMS_Program.ProgramFlags bit: "This program can run on any platform".
PROGRAM_FLAG_ANY_PLATFORM = 0x08000000

_PACKAGE_PROPERTIES = {
    "description": "Description",
    "manufacturer": "Manufacturer",
    "source_site": "SourceSite",
    "package_size": "PackageSize",
    "no_of_programs": "NumOfPrograms",
    "package_source_path": "PkgSourcePath",
    "pkg_source_flag": "PkgSourceFlag",
    "priority": "Priority",
    "object_path": "ObjectPath",
    "source_date": "SourceDate",
    "transform_analysis_date": "TransformAnalysisDate",
    "source_version": "SourceVersion",
    "stored_pkg_version": "StoredPkgVersion",
    "last_refresh_time": "LastRefreshTime",
}


class ManagementApiError(RuntimeError):
    """Base class for failures reported by the management endpoint."""


class BootstrapError(ManagementApiError):
    """Raised when the site code or provider host cannot be resolved."""


class PackageLookupError(ManagementApiError, LookupError):
    """Raised when a package or its programs cannot be looked up."""


class MutationError(ManagementApiError):
    """Raised when a program update is rejected or cannot be sent."""


class PlatformNotFoundError(MutationError):
    """Raised when a platform name is unknown to the management system."""


@dataclass(frozen=True)
class AdminServiceConfig:
    """Runtime configuration for the AdminService connection."""

    site_server: str
    site_code: str | None = None
    username: str | None = None
    password: str | None = None
    verify_ssl: bool = True
    timeout: float = 30.0

    @property
    def base_url(self) -> str:
        return f"https://{self.site_server}/AdminService/"

    @classmethod
    def from_env(
        cls, *, site_server: str | None = None, site_code: str | None = None
    ) -> "AdminServiceConfig":
        server = site_server or os.getenv("PLATSYNC_SITE_SERVER", "")
        if not server:
            raise BootstrapError(
                "No site server configured; set PLATSYNC_SITE_SERVER or pass --site-server"
            )
        return cls(
            site_server=server,
            site_code=site_code or os.getenv("PLATSYNC_SITE_CODE") or None,
            username=os.getenv("PLATSYNC_USERNAME") or None,
            password=os.getenv("PLATSYNC_PASSWORD") or None,
            verify_ssl=os.getenv("PLATSYNC_VERIFY_SSL", "true").lower() == "true",
            timeout=_timeout_from_env(),
        )


def _timeout_from_env() -> float:
    raw = os.getenv("PLATSYNC_TIMEOUT", "30")
    try:
        timeout = float(raw)
    except ValueError as exc:
        raise ConfigError(f"PLATSYNC_TIMEOUT must be a number of seconds, got {raw!r}") from exc
    if timeout <= 0:
        raise ConfigError(f"PLATSYNC_TIMEOUT must be positive, got {raw!r}")
    return timeout


class PackageManagementClient(Protocol):
    """Operations the reconciliation needs from the management system."""

    def find_package(self, name: str) -> Optional[Package]:
        ...

    def list_programs(self, package: Package) -> List[Program]:
        ...

    def get_supported_operating_systems(
        self, package: Package, program: Program
    ) -> List[ProgramOSConstraint]:
        ...

    def add_supported_platform(
        self, package: Package, program: Program, platform_name: str
    ) -> None:
        ...

    def resolve_platform(self, name: str) -> TargetSpec:
        ...


def _quote(value: str) -> str:
    """Render a string literal for an OData filter or key."""

    return "'" + value.replace("'", "''") + "'"


def _path_key(value: str) -> str:
    """Render a quoted key for a URL path, percent-encoding reserved characters."""

    return requests.utils.quote(_quote(value), safe="'")


def _error_detail(exc: requests.exceptions.RequestException) -> str:
    response = getattr(exc, "response", None)
    if response is not None and response.text:
        return f"{exc}: {response.text.strip()}"
    return str(exc)


def _rows(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        value = payload.get("value")
        if isinstance(value, list):
            return [row for row in value if isinstance(row, dict)]
        if value is None and payload:
            return [payload]
    return []


def _to_package(row: Dict[str, Any]) -> Package:
    return Package(
        name=row.get("Name") or "",
        package_id=row.get("PackageID") or "",
        **{field: row.get(prop) for field, prop in _PACKAGE_PROPERTIES.items()},
    )


def _to_constraint(row: Dict[str, Any]) -> ProgramOSConstraint:
    return ProgramOSConstraint(
        max_version=row.get("MaxVersion") or "",
        min_version=row.get("MinVersion") or "",
        platform=row.get("Platform") or "",
        name=row.get("Name") or "",
    )


class AdminServiceClient:
    """Talks to the AdminService WMI route of one site's SMS Provider."""

    def __init__(
        self,
        config: AdminServiceConfig,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._platforms: Dict[str, TargetSpec] = {}
        self.site_code: str | None = config.site_code
        self.provider_host: str | None = None

        self._session.headers.update({"Accept": "application/json"})
        self._session.verify = config.verify_ssl
        if config.username:
            self._session.auth = (config.username, config.password or "")
        if not config.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _request(
        self,
        method: str,
        route: str,
        *,
        params: Dict[str, str] | None = None,
        payload: Dict[str, Any] | None = None,
        error: type[ManagementApiError] = ManagementApiError,
    ) -> Any:
        url = self._config.base_url + route
        LOGGER.debug("%s %s %s", method, url, params or "")
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=payload,
                timeout=self._config.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise error(f"{method} {route} failed: {_error_detail(exc)}") from exc

        if not response.text:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise error(f"{method} {route} returned a non-JSON response") from exc

    def _query(
        self,
        route: str,
        filter_expr: str,
        *,
        error: type[ManagementApiError] = ManagementApiError,
    ) -> List[Dict[str, Any]]:
        return _rows(self._request("GET", route, params={"$filter": filter_expr}, error=error))

    def resolve_site(self) -> None:
        """Resolve the site code and provider host serving this site server."""

        rows = self._query(
            "wmi/SMS_ProviderLocation", "ProviderForLocalSite eq true", error=BootstrapError
        )
        if not rows:
            raise BootstrapError(
                f"No SMS Provider location reported by {self._config.site_server}"
            )

        location = rows[0]
        site_code = (location.get("SiteCode") or "").strip()
        provider_host = (location.get("Machine") or "").strip()
        if not site_code:
            raise BootstrapError("Unable to determine the site code")
        if self._config.site_code and self._config.site_code.upper() != site_code.upper():
            raise BootstrapError(
                f"Configured site code {self._config.site_code} does not match "
                f"provider site {site_code}"
            )
        if not provider_host:
            raise BootstrapError(f"Unable to determine the SMS Provider for site {site_code}")

        self.site_code = site_code
        self.provider_host = provider_host
        LOGGER.info("Connected to site %s through provider %s", site_code, provider_host)

    def find_package(self, name: str) -> Optional[Package]:
        rows = self._query(
            "wmi/SMS_Package", f"Name eq {_quote(name)}", error=PackageLookupError
        )
        if not rows:
            return None
        if len(rows) > 1:
            LOGGER.warning(
                "%d packages are named %s; using %s",
                len(rows),
                name,
                rows[0].get("PackageID"),
            )
        return _to_package(rows[0])

    def list_programs(self, package: Package) -> List[Program]:
        rows = self._query(
            "wmi/SMS_Program",
            f"PackageID eq {_quote(package.package_id)}",
            error=PackageLookupError,
        )
        return [
            Program(
                package_id=row.get("PackageID") or package.package_id,
                name=row.get("ProgramName") or "",
                flags=int(row.get("ProgramFlags") or 0),
            )
            for row in rows
        ]

    def _program_route(self, package: Package, program: Program) -> str:
        return (
            f"wmi/SMS_Program(PackageID={_path_key(package.package_id)},"
            f"ProgramName={_path_key(program.name)})"
        )

    def _program_instance(
        self,
        package: Package,
        program: Program,
        error: type[ManagementApiError],
    ) -> Dict[str, Any]:
        # SupportedOperatingSystems is lazy and only returned for single instances.
        rows = _rows(self._request("GET", self._program_route(package, program), error=error))
        if not rows:
            raise error(f"Program {program.name} not found in package {package.name}")
        return rows[0]

    def get_supported_operating_systems(
        self, package: Package, program: Program
    ) -> List[ProgramOSConstraint]:
        instance = self._program_instance(package, program, PackageLookupError)
        return [
            _to_constraint(row)
            for row in instance.get("SupportedOperatingSystems") or []
            if isinstance(row, dict)
        ]

    def resolve_platform(self, name: str) -> TargetSpec:
        if name in self._platforms:
            return self._platforms[name]

        rows = self._query(
            "wmi/SMS_SupportedPlatforms",
            f"DisplayText eq {_quote(name)}",
            error=PlatformNotFoundError,
        )
        if not rows:
            raise PlatformNotFoundError(f"Platform {name!r} is not a supported platform")

        row = rows[0]
        target = TargetSpec(
            name=name,
            platform=row.get("OSPlatform") or "",
            min_version=row.get("OSMinVersion") or "",
            max_version=row.get("OSMaxVersion") or "",
            os_name=row.get("OSName") or "",
        )
        self._platforms[name] = target
        return target

    def add_supported_platform(
        self, package: Package, program: Program, platform_name: str
    ) -> None:
        target = self.resolve_platform(platform_name)
        instance = {
            key: value
            for key, value in self._program_instance(package, program, MutationError).items()
            if not key.startswith("@odata")
        }
        constraint = target.as_constraint()
        instance["SupportedOperatingSystems"] = [
            *(instance.get("SupportedOperatingSystems") or []),
            {
                "MaxVersion": constraint.max_version,
                "MinVersion": constraint.min_version,
                "Name": constraint.name,
                "Platform": constraint.platform,
            },
        ]
        instance["ProgramFlags"] = (
            int(instance.get("ProgramFlags") or 0) & ~PROGRAM_FLAG_ANY_PLATFORM
        )
        self._request(
            "PUT",
            self._program_route(package, program),
            payload=instance,
            error=MutationError,
        )


def connect(
    config: AdminServiceConfig, session: requests.Session | None = None
) -> AdminServiceClient:
    """Build a client and resolve the site it is bound to."""

    client = AdminServiceClient(config, session=session)
    client.resolve_site()
    return client
