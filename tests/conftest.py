from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


def pytest_configure() -> None:
    src_path = str(REPO_ROOT / "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)
    # CLI tests run the package in a subprocess.
    existing = os.environ.get("PYTHONPATH", "")
    if src_path not in existing.split(os.pathsep):
        os.environ["PYTHONPATH"] = os.pathsep.join(filter(None, [src_path, existing]))


@pytest.fixture
def config_dir() -> Path:
    return REPO_ROOT / "configs"
