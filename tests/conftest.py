import pytest

from spool.runtime import context


@pytest.fixture(autouse=True)
def isolated_runtime_context():
    """Reset runtime context defaults around every test.

    Ensures a test that leaks a RuntimeContext (e.g. by failing inside a
    ``with`` block) cannot change defaults seen by other tests.
    """
    tokens = [
        (context.default_timeout, context.default_timeout.set(None)),
        (context.poll_interval, context.poll_interval.set(0.01)),
        (context.scheduler, context.scheduler.set(None)),
    ]
    yield
    for var, token in reversed(tokens):
        var.reset(token)
