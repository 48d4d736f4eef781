import json
from pathlib import Path
import subprocess
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]


def _run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "rxn_calib.cli", *args],
        capture_output=True,
        text=True,
        cwd=REPO_ROOT,
    )


def test_cli_help_top_level() -> None:
    result = _run_cli("--help")
    assert result.returncode == 0
    assert "usage:" in result.stdout.lower()


def test_cli_help_subcommands() -> None:
    for subcommand in ("cfg", "evaluate", "likelihood", "limits"):
        result = _run_cli(subcommand, "--help")
        assert result.returncode == 0
        assert "usage:" in result.stdout.lower()


def test_cli_evaluate_prints_measurements() -> None:
    result = _run_cli("evaluate", "--params", "1.0", "2.0")

    assert result.returncode == 0, result.stderr
    payload = json.loads(result.stdout)
    assert payload["ok"] is True
    assert payload["measurements"][:2] == [2.0, 4.5]


def test_cli_limits_reports_bounds() -> None:
    result = _run_cli("limits", "bisection.kmax=10.0")

    assert result.returncode == 0, result.stderr
    payload = json.loads(result.stdout)
    assert payload["parameter"] == "k_ign"
    assert payload["kmax"] == 10.0
    assert 0.0 < payload["kmin"] < 0.05


def test_cli_reports_config_errors() -> None:
    result = _run_cli("evaluate", "--config-name", "missing")

    assert result.returncode == 1
