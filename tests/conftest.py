"""Pytest configuration and fixtures for the Workguard test suite."""
import sys
from pathlib import Path

import pytest

# Ensure the package is importable without an editable install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from workguard.clock import ManualClock  # noqa: E402
from workguard.config import DispatcherConfig  # noqa: E402
from workguard.dispatcher import ErrorDispatcher  # noqa: E402
from workguard.metrics import REGISTRY  # noqa: E402
from workguard.notifications import CollectingNotifier  # noqa: E402
from workguard.storage import MemoryResourceStore  # noqa: E402


# ============================================================================
# CLOCK / DISPATCHER FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    """Virtual clock; advance with ``await clock.advance(seconds)``."""
    return ManualClock()


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def dispatcher_config():
    return DispatcherConfig()


@pytest.fixture
def dispatcher(dispatcher_config, clock, notifier):
    dispatcher = ErrorDispatcher(dispatcher_config, clock, notifier)
    yield dispatcher
    dispatcher.dispose()


@pytest.fixture
def store():
    return MemoryResourceStore()


# ============================================================================
# METRIC HELPERS
# ============================================================================

@pytest.fixture
def metric_value():
    """Read a sample from the workguard registry (0.0 when absent)."""
    def _read(name, **labels):
        value = REGISTRY.get_sample_value(name, labels)
        return value or 0.0
    return _read
