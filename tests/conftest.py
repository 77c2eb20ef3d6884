import pytest

from classes.ZoneDirectory import ZoneDirectory
from state import RemoteStatusSnapshot, StartOk, StopOk, Zone

START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now=START_MS):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


class FakeCountdown:
    """Stand-in for CountdownClock that records restarts instead of scheduling jobs."""

    def __init__(self):
        self.end_timestamp = None
        self.restarts = []
        self.stops = 0

    @property
    def running(self):
        return self.end_timestamp is not None

    def restart(self, end_timestamp):
        self.end_timestamp = end_timestamp
        self.restarts.append(end_timestamp)

    def stop(self):
        if self.end_timestamp is not None:
            self.stops += 1
        self.end_timestamp = None


class FakeGateway:
    """Scripted gateway: each operation returns the next queued result."""

    def __init__(self, status=None, zones=None, start=None, stop=None):
        self.status_results = list(status or [RemoteStatusSnapshot("inactive", "System is idle")])
        self.zones = zones if zones is not None else ZoneDirectory(
            [Zone(1, "Front Lawn"), Zone(2, "Back Lawn"), Zone(3, "Garden")]
        )
        self.start_results = list(start or [])
        self.stop_results = list(stop or [StopOk("System stopped")])
        self.calls = []
        self.closed = False
        self.gate = None  # asyncio.Event that holds start/stop until set

    def _next(self, queue):
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def query_status(self):
        self.calls.append(("status",))
        return self._next(self.status_results)

    async def list_zones(self):
        self.calls.append(("zones",))
        return self.zones

    async def start(self, zone, minutes):
        self.calls.append(("start", zone, minutes))
        if self.gate is not None:
            await self.gate.wait()
        if self.start_results:
            return self._next(self.start_results)
        return StartOk(zone=zone, duration_seconds=minutes * 60)

    async def stop(self):
        self.calls.append(("stop",))
        if self.gate is not None:
            await self.gate.wait()
        return self._next(self.stop_results)

    async def aclose(self):
        self.closed = True

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def countdown():
    return FakeCountdown()


@pytest.fixture
def make_controller(clock, countdown):
    from classes.Controller import SessionController

    def _make(gateway):
        return SessionController(gateway, countdown=countdown, clock=clock)

    return _make
