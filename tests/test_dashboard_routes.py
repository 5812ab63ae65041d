import asyncio

import pytest

from web.dashboard import create_app, increment_command_count, set_markov_bridge
from web.dashboard import state


class StubBridge:
    def __init__(self, initialized=True):
        self.initialized = initialized

    def status(self):
        return {"initialized": self.initialized, "alive": self.initialized, "busy": False,
                "current_task": None, "last_progress": None}


@pytest.fixture(autouse=True)
def reset_state():
    yield
    set_markov_bridge(None)
    state.commands_executed = 0


def get_status(app):
    async def request():
        response = await app.test_client().get("/api/markov/status")
        return response.status_code, await response.get_json()

    return asyncio.run(request())


def test_status_without_engine():
    set_markov_bridge(None)
    status_code, body = get_status(create_app())
    assert status_code == 503
    assert body["initialized"] is False


def test_status_reports_engine_state():
    increment_command_count()
    increment_command_count()
    status_code, body = get_status(create_app(StubBridge()))

    assert status_code == 200
    assert body["initialized"] is True
    assert body["busy"] is False
    assert body["commands_executed"] == 2
    assert body["uptime_seconds"] >= 0


def test_status_when_engine_down():
    status_code, body = get_status(create_app(StubBridge(initialized=False)))
    assert status_code == 503
    assert body["alive"] is False
