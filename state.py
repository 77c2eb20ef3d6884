from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union


class SessionStatus(str, Enum):
    IDLE = "inactive"
    LOADING = "loading"
    ACTIVE = "active"
    ERROR = "error"


class FailureKind(str, Enum):
    NETWORK = "NetworkFailure"
    TIMEOUT = "Timeout"
    ZONE_CONFLICT = "ZoneConflict"
    VALIDATION = "ValidationFailure"
    SERVER = "ServerFailure"
    HARDWARE = "HardwareFailure"


@dataclass(frozen=True)
class Zone:
    id: int
    name: str


@dataclass(frozen=True)
class Session:
    status: SessionStatus = SessionStatus.LOADING
    message: str = "Waiting for controller..."
    zone: Optional[int] = None
    end_timestamp: Optional[int] = None  # epoch millis

    def evolve(self, **changes) -> "Session":
        return replace(self, **changes)


@dataclass(frozen=True)
class RemoteStatusSnapshot:
    system_status: str  # "active" | "inactive" | "error"
    message: str = ""
    zone: Optional[int] = None
    duration: Optional[int] = None  # seconds remaining


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    ok: bool = False


@dataclass(frozen=True)
class StartOk:
    zone: int
    duration_seconds: int
    ok: bool = True


@dataclass(frozen=True)
class StopOk:
    message: str = ""
    ok: bool = True


CommandResult = Union[StartOk, StopOk, Failure]


@dataclass(frozen=True)
class SessionView:
    """Read-only copy of the controller state handed to request threads."""

    status: SessionStatus
    message: str
    zone: Optional[int]
    zone_name: Optional[str]
    minutes: int
    seconds: int
    busy: bool
    selected_zone: Optional[int]
    zones: tuple = ()

    @property
    def duration_input_visible(self) -> bool:
        return self.selected_zone is not None

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "zone": self.zone,
            "zone_name": self.zone_name,
            "remaining": {"minutes": self.minutes, "seconds": self.seconds},
            "busy": self.busy,
            "selected_zone": self.selected_zone,
            "zones": [{"zone": z.id, "name": z.name} for z in self.zones],
        }
