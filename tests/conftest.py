"""Test configuration and fixtures."""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "tests"))

from config.settings import RiskSettings  # noqa: E402
from edgefinder.risk import RiskLimits, RiskManager  # noqa: E402
from edgefinder.storage import MemoryJournal  # noqa: E402
from edgefinder.strategies import StrategyStateStore  # noqa: E402
from edgefinder.utils.alerts import MemoryAlertSink  # noqa: E402
from helpers import Clock  # noqa: E402


@pytest.fixture
def clock():
    """Manually advanced UTC clock starting at T0."""
    return Clock()


@pytest.fixture
def state():
    return StrategyStateStore()


@pytest.fixture
def risk_settings():
    """Defaults: bankroll 10000, 2% per bet, event cap 400."""
    return RiskSettings(correlation_rules=[])


@pytest.fixture
def limits(risk_settings):
    return RiskLimits.from_settings(risk_settings)


@pytest.fixture
def risk_manager(clock):
    return RiskManager(clock=clock)


@pytest.fixture
def journal():
    return MemoryJournal()


@pytest.fixture
def alerts():
    return MemoryAlertSink()
