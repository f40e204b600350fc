"""Shared pytest fixtures for wabridge tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import (  # noqa: E402
    PHONE,
    FakeSessionEngine,
    RecordingDispatcher,
    TimerFactory,
    make_options,
)
from wabridge.sessions.connection import Connection  # noqa: E402
from wabridge.sessions.engine import InMemoryAuthStateStore  # noqa: E402


@pytest.fixture
def engine():
    return FakeSessionEngine()


@pytest.fixture
def auth_store():
    return InMemoryAuthStateStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def timers():
    return TimerFactory()


@pytest.fixture
def make_connection(engine, auth_store, dispatcher, timers):
    """Build a Connection wired to fakes. Stops every worker on teardown."""
    created: list[Connection] = []

    def _make(phone_number: str = PHONE, on_close=None, **option_overrides) -> Connection:
        connection = Connection(
            phone_number,
            make_options(**option_overrides),
            engine=engine,
            auth_store=auth_store,
            dispatcher=dispatcher,
            on_close=on_close,
            render_qr=lambda qr: f"data:image/png;base64,QR({qr})",
            timer_factory=timers,
        )
        created.append(connection)
        return connection

    yield _make

    for connection in created:
        connection.stop()
