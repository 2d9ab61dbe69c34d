"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from memocards.clock import FixedClock
from memocards.config import get_settings
from memocards.engine import FlashcardEngine
from memocards.scheduler import SM2Scheduler
from memocards.state_store import CardStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (file-backed store)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Keep MEMOCARDS_* variables from the host out of every test."""
    for key in list(os.environ):
        if key.startswith("MEMOCARDS_"):
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    """Clock pinned to 2024-01-01 00:00 UTC."""
    return FixedClock(T0)


@pytest.fixture
def scheduler():
    return SM2Scheduler()


@pytest.fixture
def store(clock):
    """Empty in-memory card store."""
    card_store = CardStore("sqlite://", clock=clock)
    yield card_store
    card_store.close()


@pytest.fixture
def engine(store, scheduler, clock):
    return FlashcardEngine(store, scheduler, clock)


@pytest.fixture
def db_file_url(tmp_path):
    """URL of a not-yet-created SQLite file."""
    return f"sqlite:///{tmp_path / 'cards.db'}"
