"""Shared pytest fixtures for mcp-daylog tests."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from mcp_daylog.config import DaylogConfig
from mcp_daylog.engine import DaylogEngine


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, hour: int, minute: int = 0) -> None:
        self.now = self.now.replace(hour=hour, minute=minute)


class SequentialIds:
    """Deterministic plan id factory: P1, P2, ..."""

    def __init__(self, prefix: str = "P", start: int = 1):
        self.prefix = prefix
        self.counter = start

    def __call__(self) -> str:
        value = f"{self.prefix}{self.counter}"
        self.counter += 1
        return value


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_project):
    """Create a test configuration."""
    return DaylogConfig(
        project_name="test-project",
        project_root=temp_project,
    )


@pytest.fixture
def clock():
    """Clock fixed at 8am on the test date."""
    return FixedClock(datetime(2026, 3, 14, 8, 0))


@pytest.fixture
def ids():
    return SequentialIds()


@pytest.fixture
def engine(config, clock, ids):
    """Create a test engine with a fixed clock and predictable plan ids."""
    return DaylogEngine(config, clock=clock, id_factory=ids)


@pytest.fixture
def journal(engine):
    """Date of an empty journal created through the engine."""
    engine.create_journal("2026-03-14")
    return "2026-03-14"
