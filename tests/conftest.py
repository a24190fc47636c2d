"""
Shared fixtures: one channel owned by ``u1`` with two fields, an in-memory
store holding it and a telemetry fake with no readings.
"""

import pytest

from fakes import FakeStore, FakeTelemetry, make_channel


@pytest.fixture
def channel():
    return make_channel()


@pytest.fixture
def store(channel):
    return FakeStore(channels=[channel])


@pytest.fixture
def telemetry():
    return FakeTelemetry()
