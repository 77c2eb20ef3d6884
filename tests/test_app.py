import asyncio

import pytest

from app import create_app
from classes.Controller import SessionController
from conftest import FakeClock, FakeCountdown, FakeGateway
from state import Failure, FailureKind, RemoteStatusSnapshot, StartOk


class InlineRuntime:
    """Drives the controller on a private loop in the calling thread."""

    def __init__(self, gateway):
        self.loop = asyncio.new_event_loop()
        self.gateway = gateway
        self.resets = 0
        self.controller = self._new_controller()
        self.call(self.controller.load)

    def _new_controller(self):
        return SessionController(self.gateway, countdown=FakeCountdown(), clock=FakeClock())

    def call(self, fn, *args, timeout=None):
        async def invoke():
            result = fn(*args)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        return self.loop.run_until_complete(invoke())

    def view(self):
        return self.controller.view()

    def reset(self):
        self.resets += 1
        self.call(self.controller.close)
        self.controller = self._new_controller()
        self.call(self.controller.load)
        return self.controller

    def close(self):
        self.loop.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def runtime(gateway):
    rt = InlineRuntime(gateway)
    yield rt
    rt.close()


@pytest.fixture
def client(runtime):
    app = create_app(runtime)
    app.config["TESTING"] = True
    return app.test_client()


def test_dashboard_lists_zones(client):
    response = client.get("/")

    assert response.status_code == 200
    page = response.get_data(as_text=True)
    assert "Front Lawn" in page
    assert "System is Idle" in page
    assert 'name="minutes"' not in page


def test_selecting_a_zone_shows_duration_input(client, runtime):
    response = client.post("/zones/select", data={"zone": "2"}, follow_redirects=True)

    assert runtime.controller.selected_zone == 2
    assert 'name="minutes"' in response.get_data(as_text=True)


def test_unknown_zone_is_404(client):
    assert client.post("/zones/select", data={"zone": "9"}).status_code == 404


def test_start_and_stop(client, runtime, gateway):
    client.post("/zones/select", data={"zone": "1"})

    client.post("/session/start", data={"minutes": "5"})
    data = client.get("/api/session").get_json()
    assert data["status"] == "active"
    assert data["zone_name"] == "Front Lawn"
    assert data["remaining"] == {"minutes": 5, "seconds": 0}

    client.post("/session/stop")
    assert client.get("/api/session").get_json()["status"] == "inactive"
    assert gateway.count("stop") == 1


def test_invalid_duration_is_flashed_without_a_call(client, gateway):
    client.post("/zones/select", data={"zone": "1"})

    response = client.post("/session/start", data={"minutes": "61"}, follow_redirects=True)

    assert "Please enter duration in whole minutes only. Max 60 min." in response.get_data(as_text=True)
    assert gateway.count("start") == 0


def test_start_without_zone_is_rejected(client):
    assert client.post("/session/start", data={"minutes": "5"}).status_code == 400


def test_conflict_message_in_status_card(client, gateway):
    gateway.start_results = [StartOk(zone=2, duration_seconds=45)]
    client.post("/zones/select", data={"zone": "1"})
    client.post("/session/start", data={"minutes": "5"})

    page = client.get("/partial/status").get_data(as_text=True)

    assert "Error, system already active on zone 2" in page
    assert "Back Lawn" in page


def test_error_card_offers_reset(client, runtime, gateway):
    gateway.start_results = [Failure(FailureKind.HARDWARE, "Hardware communication error: Command Failed")]
    client.post("/zones/select", data={"zone": "1"})
    client.post("/session/start", data={"minutes": "5"})

    page = client.get("/partial/status").get_data(as_text=True)
    assert "Error: Hardware communication error: Command Failed" in page
    assert "Reset" in page

    gateway.status_results = [RemoteStatusSnapshot("inactive", "")]
    client.post("/session/reset")
    assert runtime.resets == 1
    assert client.get("/api/session").get_json()["status"] == "inactive"


def test_retry_recovers_from_error(client, gateway):
    gateway.start_results = [Failure(FailureKind.TIMEOUT, "Request timed out after 8 seconds")]
    client.post("/zones/select", data={"zone": "1"})
    client.post("/session/start", data={"minutes": "5"})
    assert "Retry" in client.get("/partial/status").get_data(as_text=True)

    gateway.status_results = [RemoteStatusSnapshot("active", "", zone=3, duration=120)]
    client.post("/session/refresh")

    data = client.get("/api/session").get_json()
    assert data["status"] == "active"
    assert data["zone_name"] == "Garden"


def test_superscript_duration_is_a_validation_message(client, gateway):
    client.post("/zones/select", data={"zone": "1"})

    response = client.post("/session/start", data={"minutes": "²"}, follow_redirects=True)

    assert response.status_code == 200
    assert "Please enter duration in whole minutes only. Max 60 min." in response.get_data(as_text=True)
    assert gateway.count("start") == 0
