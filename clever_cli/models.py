"""Domain records shared by the Clever CLI components."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Self


class DeploymentState(Enum):
    """Lifecycle of a deployment as seen by the CLI.

    Non-terminal states are ordered by ``rank``. FAILED and CANCELLED are
    terminal and reachable from any non-terminal state.
    """

    INITIATED = "initiated"
    PUBLISHED = "published"
    QUEUED = "queued"
    BUILDING = "building"
    DEPLOYING = "deploying"
    RUNNING = "running"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def rank(self: Self) -> int:
        return _RANKS[self]

    @property
    def is_terminal(self: Self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_cancellable(self: Self) -> bool:
        return self in CANCELLABLE_STATES


_RANKS = {
    DeploymentState.INITIATED: 0,
    DeploymentState.PUBLISHED: 1,
    DeploymentState.QUEUED: 2,
    DeploymentState.BUILDING: 3,
    DeploymentState.DEPLOYING: 4,
    DeploymentState.RUNNING: 5,
    # Terminal failures rank above every state so they always move forward.
    DeploymentState.FAILED: 6,
    DeploymentState.CANCELLED: 6,
}

TERMINAL_STATES = frozenset({
    DeploymentState.RUNNING,
    DeploymentState.FAILED,
    DeploymentState.CANCELLED,
})

CANCELLABLE_STATES = frozenset({
    DeploymentState.QUEUED,
    DeploymentState.BUILDING,
    DeploymentState.DEPLOYING,
})

# Remote state names reported by the platform.
REMOTE_STATES: Dict[str, DeploymentState] = {
    "queued": DeploymentState.QUEUED,
    "pending": DeploymentState.QUEUED,
    "waiting": DeploymentState.QUEUED,
    "building": DeploymentState.BUILDING,
    "build": DeploymentState.BUILDING,
    "deploying": DeploymentState.DEPLOYING,
    "deploy": DeploymentState.DEPLOYING,
    "wip": DeploymentState.DEPLOYING,
    "running": DeploymentState.RUNNING,
    "ok": DeploymentState.RUNNING,
    "success": DeploymentState.RUNNING,
    "failed": DeploymentState.FAILED,
    "fail": DeploymentState.FAILED,
    "error": DeploymentState.FAILED,
    "cancelled": DeploymentState.CANCELLED,
    "canceled": DeploymentState.CANCELLED,
}


def map_remote_state(remote_state: Optional[str]) -> Optional[DeploymentState]:
    """Map a platform state string onto ``DeploymentState``.

    Returns None for unknown or empty states.
    """
    if not remote_state:
        return None
    return REMOTE_STATES.get(remote_state.strip().lower())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Application:
    """An application hosted on the platform."""

    id: str
    name: str
    org_id: Optional[str] = None
    alias: Optional[str] = None
    region: str = "par"
    instance_type: Optional[str] = None
    deploy_url: Optional[str] = None

    def to_dict(self: Self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Application":
        """Build an application from a registry entry or an API payload."""
        return cls(
            id=data.get("id") or data["app_id"],
            name=data.get("name", ""),
            org_id=data.get("org_id") or data.get("ownerId"),
            alias=data.get("alias"),
            region=data.get("region") or data.get("zone") or "par",
            instance_type=data.get("instance_type") or data.get("type"),
            deploy_url=data.get("deploy_url") or data.get("deployUrl"),
        )

    @property
    def label(self: Self) -> str:
        return self.alias or self.name or self.id


@dataclass(frozen=True)
class RevisionHandle:
    """A published source snapshot the platform is going to build."""

    revision: str
    deployment_id: str
    branch: str = ""


@dataclass
class Deployment:
    """A deployment tracked by ``DeploymentDriver``."""

    app_id: str
    id: Optional[str] = None
    revision: Optional[str] = None
    state: DeploymentState = DeploymentState.INITIATED
    started_at: datetime = field(default_factory=utcnow)
    observed_at: Optional[datetime] = None


@dataclass(frozen=True)
class DeploymentSummary:
    """One row of the activity report."""

    id: str
    revision: Optional[str]
    state: Optional[DeploymentState]
    raw_state: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    cause: Optional[str] = None

    @property
    def state_label(self: Self) -> str:
        return self.state.value if self.state else self.raw_state


class LogSource(Enum):
    """Where a log line comes from."""

    BUILD = "build"
    RUNTIME = "runtime"
    GAP = "gap"


@dataclass(frozen=True, order=True)
class LogEntry:
    """A single log line; ordered by sequence token.

    Gap markers have no token of their own.
    """

    token: Optional[int]
    timestamp: Optional[datetime] = field(default=None, compare=False)
    source: LogSource = field(default=LogSource.RUNTIME, compare=False)
    message: str = field(default="", compare=False)

    @property
    def is_gap(self: Self) -> bool:
        return self.source is LogSource.GAP


def gap_marker(after: Optional[int], resumed_at: Optional[int], reason: str) -> LogEntry:
    """Build the marker entry emitted when records could not be delivered."""
    return LogEntry(
        token=None,
        timestamp=utcnow(),
        source=LogSource.GAP,
        message=f"LogGapDetected: {reason} (last delivered: {after}, resuming at: {resumed_at})",
    )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings or epoch milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
