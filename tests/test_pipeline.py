import csv
from pathlib import Path

import pytest

from platsync import cli
from platsync.client import BootstrapError, PlatformNotFoundError
from platsync.inputs import ConfigError
from platsync.models import ProgramOSConstraint
from platsync.pipeline import run_reconciliation

STAMP = "20240329_140509"


@pytest.fixture
def workspace(tmp_path: Path):
    config = tmp_path / "config.xml"
    config.write_text(
        "<Configuration><TargetPlatform>All Windows 11 (64-bit)</TargetPlatform></Configuration>",
        encoding="utf-8",
    )
    packages = tmp_path / "packages.csv"
    packages.write_text(
        "Description,PackageName,Manufacturer\n"
        "CSV one,App1,Contoso\n"
        "CSV two,App2,Contoso\n"
        "CSV three,App3,Contoso\n"
        "CSV four,App4,Contoso\n",
        encoding="utf-8",
    )
    return config, packages, tmp_path / "out"


def seed(fake_api):
    app2 = fake_api.add_package("App2", programs=["Install"])
    fake_api.set_constraints(
        app2, "Install", [ProgramOSConstraint("10.00.99999.9999", "10.00.22000.0", "x64")]
    )
    fake_api.add_package("App3", programs=["Install"], description="API three")
    app4 = fake_api.add_package("App4", programs=["Install"])
    fake_api.fail_update(app4, "Install", PlatformNotFoundError("platform catalogue rejected the update"))


def test_run_writes_report_and_log(workspace, fake_api):
    config, packages, out_dir = workspace
    seed(fake_api)

    result = run_reconciliation(
        config_path=config,
        packages_path=packages,
        out_dir=out_dir,
        client_factory=lambda: fake_api,
        timestamp=STAMP,
    )

    assert result.report_path == out_dir / f"PackageUpdateReport_{STAMP}.csv"
    assert result.log_path == out_dir / f"PackageUpdateLog_{STAMP}.log"

    with result.report_path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert [(r["PackageName"], r["ProgramName"], r["Status"]) for r in rows] == [
        ("App1", "", "NotFound"),
        ("App2", "Install", "AlreadyUpdatedWithTarget"),
        ("App3", "Install", "Updated"),
        ("App4", "Install", "UpdateFailed"),
    ]
    assert rows[0]["Description"] == "CSV one"
    assert rows[2]["Description"] == "API three"
    assert rows[3]["Manufacturer"] == "Contoso"

    log_text = result.log_path.read_text(encoding="utf-8")
    assert "App4" in log_text
    assert "platform catalogue rejected the update" in log_text
    assert "Report written to" in log_text


def test_bootstrap_failure_aborts_before_reading_inputs(tmp_path: Path):
    def failing_factory():
        raise BootstrapError("Unable to determine the site code")

    result = run_reconciliation(
        config_path=tmp_path / "missing.xml",
        packages_path=tmp_path / "missing.csv",
        out_dir=tmp_path,
        client_factory=failing_factory,
        timestamp=STAMP,
    )

    assert result is None
    assert not (tmp_path / f"PackageUpdateReport_{STAMP}.csv").exists()
    log_text = (tmp_path / f"PackageUpdateLog_{STAMP}.log").read_text(encoding="utf-8")
    assert "Unable to determine the site code" in log_text


def test_unknown_target_platform_is_a_configuration_error(workspace, fake_api):
    config, packages, out_dir = workspace
    config.write_text(
        "<Configuration><TargetPlatform>Windows 99</TargetPlatform></Configuration>",
        encoding="utf-8",
    )

    with pytest.raises(ConfigError):
        run_reconciliation(
            config_path=config,
            packages_path=packages,
            out_dir=out_dir,
            client_factory=lambda: fake_api,
            timestamp=STAMP,
        )
    assert fake_api.mutations == []


def test_cli_exits_cleanly_when_site_server_is_unknown(workspace, monkeypatch):
    config, packages, out_dir = workspace
    monkeypatch.delenv("PLATSYNC_SITE_SERVER", raising=False)

    code = cli.main(
        ["run", "--config", str(config), "--packages", str(packages), "--out-dir", str(out_dir)]
    )

    assert code == 0
    assert list(out_dir.glob("PackageUpdateReport_*.csv")) == []
    assert len(list(out_dir.glob("PackageUpdateLog_*.log"))) == 1


def test_cli_runs_batch_and_reports_input_errors(workspace, monkeypatch, fake_api):
    config, packages, out_dir = workspace
    seed(fake_api)
    monkeypatch.setattr(cli, "connect", lambda config: fake_api)

    args = ["run", "--config", str(config), "--out-dir", str(out_dir), "--site-server", "cm01"]
    assert cli.main(args + ["--packages", str(packages)]) == 0
    assert len(fake_api.mutations) == 2

    assert cli.main(args + ["--packages", str(out_dir / "nope.csv")]) == 1


def test_cli_reports_malformed_timeout_as_error(workspace, monkeypatch):
    config, packages, out_dir = workspace
    monkeypatch.setenv("PLATSYNC_SITE_SERVER", "cm01")
    monkeypatch.setenv("PLATSYNC_TIMEOUT", "30s")

    code = cli.main(
        ["run", "--config", str(config), "--packages", str(packages), "--out-dir", str(out_dir)]
    )

    assert code == 1
    log_text = next(out_dir.glob("PackageUpdateLog_*.log")).read_text(encoding="utf-8")
    assert "PLATSYNC_TIMEOUT must be a number of seconds" in log_text
