"""Pytest configuration and fixtures for LockGuard tests."""
import sys
from pathlib import Path

import pytest

# Add the repository root to the path so lockguard imports without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from lockguard.analysis import LockGuardAnalyzer  # noqa: E402
from lockguard.detector import DeadlockDetector  # noqa: E402
from lockguard.options import Options  # noqa: E402


@pytest.fixture
def options():
    """Default analysis options."""
    return Options()


@pytest.fixture
def analyzer(options):
    """Create a new LockGuardAnalyzer instance for testing."""
    return LockGuardAnalyzer(options)


@pytest.fixture
def detector(options):
    return DeadlockDetector(options)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Make sure flags from the calling shell do not leak into a test."""
    monkeypatch.delenv("LOCKGUARD_FLAGS", raising=False)
    monkeypatch.delenv("LOCKGUARD_LOG", raising=False)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow (deselect with '-m \"not slow\"')"
    )
