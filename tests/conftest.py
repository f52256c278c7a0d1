"""
Shared pytest fixtures for cadence tests.

This module provides:
- Registry cleanup for test isolation
- A controllable clock so schedules and lock TTLs are deterministic
"""

import pytest

from cadence.scheduling import clear_registry


class FakeClock:
    """Callable clock returning a settable unix timestamp."""

    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set(self, now: float) -> None:
        self.now = now


@pytest.fixture(autouse=True)
def clean_registry():
    """Clear the @scheduled registry before and after each test."""
    clear_registry()
    yield
    clear_registry()


@pytest.fixture
def make_clock():
    """Factory for FakeClock instances."""
    return FakeClock
