"""Shared fixtures for runtime tests."""

import pytest


@pytest.fixture
def spy():
    """Spy listener that records every payload it receives.

    Returns:
        A callable spy function with a `calls` attribute.
    """
    calls = []

    def listener(data=None):
        calls.append(data)

    listener.calls = calls
    return listener
