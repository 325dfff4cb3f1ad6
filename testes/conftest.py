import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from fakes import FakeAssets, FakeSource, FakeStore


@pytest.fixture(autouse=True)
def isolated_reports(tmp_path, monkeypatch):
    """Every test writes its reports/ files under its own tmp directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def assets():
    return FakeAssets()


@pytest.fixture
def source():
    return FakeSource()
