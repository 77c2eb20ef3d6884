import asyncio
import logging
import re

from classes.Countdown import CountdownClock, now_ms, split_remaining
from classes.ZoneDirectory import ZoneDirectory
from gateway_client import SEE_LOGS
from state import Failure, FailureKind, Session, SessionStatus, SessionView

MIN_MINUTES = 1
MAX_MINUTES = 60
DURATION_HINT = "Please enter duration in whole minutes only. Max 60 min."
IDLE_MESSAGE = "System is idle"
ACTIVE_MESSAGE = "System active"


class InvalidDurationError(ValueError):
    pass


class CommandRejectedError(RuntimeError):
    pass


def conflict_message(zone) -> str:
    return f"Error, system already active on zone {zone}"


def parse_duration(value) -> int:
    """Whole minutes in 1..60, from a form string or a number. Anything else raises InvalidDurationError."""
    if isinstance(value, bool) or value is None:
        raise InvalidDurationError(DURATION_HINT)
    if isinstance(value, str):
        value = value.strip()
        if not re.fullmatch(r"-?\d+", value, re.ASCII):
            raise InvalidDurationError(DURATION_HINT)
        value = int(value)
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidDurationError(DURATION_HINT)
        value = int(value)
    elif not isinstance(value, int):
        raise InvalidDurationError(DURATION_HINT)

    if not MIN_MINUTES <= value <= MAX_MINUTES:
        raise InvalidDurationError(DURATION_HINT)
    return value


class SessionController:
    """
    Owns the page's Session and is the only thing that changes it.

    Every input (user command, gateway completion, countdown tick) runs on the
    same event loop, so a transition is never interleaved with another one.
    While a start or stop call is outstanding the session sits in LOADING and
    further commands are rejected.
    """

    def __init__(self, gateway, countdown=None, clock=now_ms, scheduler=None, tick_seconds=1.0, logger=None):
        self.logger = logger or logging.getLogger(__name__)

        self.gateway = gateway
        self.clock = clock
        self.session = Session()
        self.zones = ZoneDirectory()
        self.selected_zone = None

        self._command = None  # "start" | "stop"
        self._query = None  # "load" | "status"
        self._detached = False

        self.countdown = countdown or CountdownClock(
            self.expire_if_due, scheduler=scheduler, interval=tick_seconds, clock=clock, logger=self.logger
        )

    @property
    def busy(self) -> bool:
        return self._command is not None or self._query is not None

    # ----------------------------
    # State changes
    # ----------------------------
    def _set(self, **changes):
        previous = self.session
        self.session = previous.evolve(**changes)
        current = self.session

        if current.status is SessionStatus.ACTIVE:
            if current.end_timestamp != self.countdown.end_timestamp or not self.countdown.running:
                self.countdown.restart(current.end_timestamp)
        else:
            self.countdown.stop()

        if current.status is not previous.status:
            self.logger.info(
                "Session %s -> %s (zone=%s): %s",
                previous.status.value, current.status.value, current.zone, current.message,
            )

    def _set_idle(self, message=IDLE_MESSAGE):
        self._set(status=SessionStatus.IDLE, message=message, zone=None, end_timestamp=None)

    def _adopt(self, zone, seconds, message):
        self._set(
            status=SessionStatus.ACTIVE,
            message=message,
            zone=int(zone),
            end_timestamp=self.clock() + int(seconds) * 1000,
        )
        self.selected_zone = int(zone)

    def _fail(self, failure: Failure):
        # zone/end_timestamp stay as they were so the last run is still visible
        self.logger.warning("Session error (%s): %s", failure.kind.value, failure.message)
        self._set(status=SessionStatus.ERROR, message=failure.message)

    def _crash(self, action):
        self.logger.exception("Unexpected error during %s", action)
        if self._detached:
            return
        self._fail(Failure(FailureKind.SERVER, f"Unexpected error during {action}, {SEE_LOGS}"))

    def _apply_snapshot(self, snapshot):
        if isinstance(snapshot, Failure):
            self._fail(snapshot)
        elif snapshot.system_status == "error":
            self._fail(Failure(FailureKind.SERVER, snapshot.message or "Controller reported an error"))
        elif snapshot.system_status == "active" and snapshot.zone is not None and (snapshot.duration or 0) > 0:
            # started somewhere else, or still running from before this page loaded
            self._adopt(snapshot.zone, snapshot.duration, ACTIVE_MESSAGE)
        else:
            self._set_idle()

    def _claim(self, slot, name):
        if self._detached:
            raise CommandRejectedError("Controller is detached")
        outstanding = self._command or self._query
        if outstanding is not None:
            raise CommandRejectedError(f"Another command is in progress ({outstanding})")
        setattr(self, slot, name)

    # ----------------------------
    # Inputs
    # ----------------------------
    async def load(self) -> Session:
        """Fetch zone list and remote status together and settle the initial session."""
        self._claim("_query", "load")
        try:
            snapshot, zones = await asyncio.gather(self.gateway.query_status(), self.gateway.list_zones())
            if self._detached:
                return self.session

            if not isinstance(zones, Failure):
                self.zones = zones
            self._apply_snapshot(snapshot)
            if isinstance(zones, Failure):
                self._fail(zones)
        except Exception:
            self._crash("load")
        finally:
            self._query = None
        return self.session

    async def refresh(self) -> Session:
        self._claim("_query", "status")
        try:
            snapshot = await self.gateway.query_status()
            if not self._detached:
                self._apply_snapshot(snapshot)
        except Exception:
            self._crash("status query")
        finally:
            self._query = None
        return self.session

    async def start(self, zone, minutes) -> Session:
        minutes = parse_duration(minutes)
        zone = int(zone)
        if self.session.status not in (SessionStatus.IDLE, SessionStatus.ERROR):
            raise CommandRejectedError(f"Cannot start while session is {self.session.status.value}")
        self._claim("_command", "start")
        try:
            self._set(status=SessionStatus.LOADING, message=f"Starting zone {zone}...")
            result = await self.gateway.start(zone, minutes)
            if self._detached:
                return self.session

            if isinstance(result, Failure) and result.kind is FailureKind.ZONE_CONFLICT:
                await self._resolve_conflict(zone, result.message)
            elif isinstance(result, Failure):
                self._fail(result)
            elif result.zone != zone and result.duration_seconds > 0:
                self.logger.warning("Asked for zone %s but controller is running zone %s", zone, result.zone)
                self._adopt(result.zone, result.duration_seconds, conflict_message(result.zone))
            elif result.zone != zone:
                # no usable end time for the other zone's run, ask the controller what it is doing
                await self._resolve_conflict(zone, f"zone {result.zone} reported without remaining time")
            else:
                self._set(
                    status=SessionStatus.ACTIVE,
                    message=ACTIVE_MESSAGE,
                    zone=zone,
                    end_timestamp=self.clock() + minutes * 60000,
                )
        except Exception:
            self._crash(f"start of zone {zone}")
        finally:
            self._command = None
        return self.session

    async def _resolve_conflict(self, zone, reason):
        self.logger.warning("Start of zone %s not granted: %s", zone, reason)
        snapshot = await self.gateway.query_status()
        if self._detached:
            return
        if (
            not isinstance(snapshot, Failure)
            and snapshot.system_status == "active"
            and snapshot.zone is not None
            and (snapshot.duration or 0) > 0
        ):
            message = ACTIVE_MESSAGE if snapshot.zone == zone else conflict_message(snapshot.zone)
            self._adopt(snapshot.zone, snapshot.duration, message)
        else:
            self._apply_snapshot(snapshot)

    async def stop(self) -> Session:
        if self.session.status not in (SessionStatus.ACTIVE, SessionStatus.ERROR):
            raise CommandRejectedError(f"Cannot stop while session is {self.session.status.value}")
        self._claim("_command", "stop")
        try:
            if self.session.zone is None:
                message = "Stopping system..."
            else:
                message = f"Stopping zone {self.session.zone}..."
            self._set(status=SessionStatus.LOADING, message=message)
            result = await self.gateway.stop()
            if self._detached:
                return self.session
            if isinstance(result, Failure):
                self._fail(result)
            else:
                self._set_idle()
        except Exception:
            self._crash("stop")
        finally:
            self._command = None
        return self.session

    async def expire_if_due(self):
        """Countdown tick: the run is over locally, so go idle and tell the controller to stop."""
        session = self.session
        if session.status is not SessionStatus.ACTIVE or session.end_timestamp is None:
            return
        if session.end_timestamp - self.clock() > 0:
            return

        self.logger.info("Run on zone %s reached its end time", session.zone)
        self._set_idle()
        # a status query in flight does not count against the one start/stop slot
        if self._command is not None:
            return

        self._command = "stop"
        try:
            result = await self.gateway.stop()
            if not self._detached and isinstance(result, Failure):
                self._fail(result)
        except Exception:
            self._crash("stop after expiry")
        finally:
            self._command = None

    def select_zone(self, zone_id) -> bool:
        zone_id = int(zone_id or 0)
        if zone_id == 0:
            self.selected_zone = None
            return True
        if zone_id not in self.zones:
            return False
        self.selected_zone = zone_id
        return True

    def view(self) -> SessionView:
        session = self.session
        minutes, seconds = 0, 0
        if session.status in (SessionStatus.ACTIVE, SessionStatus.LOADING):
            minutes, seconds = split_remaining(session.end_timestamp, self.clock())
        return SessionView(
            status=session.status,
            message=session.message,
            zone=session.zone,
            zone_name=self.zones.name_for(session.zone),
            minutes=minutes,
            seconds=seconds,
            busy=self.busy,
            selected_zone=self.selected_zone,
            zones=self.zones.zones,
        )

    async def close(self):
        """Page teardown: late responses are dropped and the countdown stops."""
        if self._detached:
            return
        self._detached = True
        self.countdown.stop()
        await self.gateway.aclose()
        self.logger.debug("Session controller detached")
