"""Shared test fixtures for pytestgen tests."""

import sys
from pathlib import Path

import pytest

# Add src to path so tests can import pytestgen
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture(autouse=True)
def _no_debug_env(monkeypatch):
    """Keep a developer's DEBUG_GENERATED from leaking into tests."""
    monkeypatch.delenv("DEBUG_GENERATED", raising=False)
