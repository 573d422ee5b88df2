from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class GeneratorKind(str, Enum):
    """Known per-cycle value generators.

    FieldSpec.generator stays a plain string so unknown kinds can be loaded
    and degrade to a fallback literal instead of failing.
    """

    RANDOM = "random"
    TIMESTAMP = "timestamp"
    COUNTER = "counter"
    UUID = "uuid"
    FIXED = "fixed"


class FieldTarget(str, Enum):
    HEADER = "header"
    BODY = "body"


class SessionScope(str, Enum):
    """How long one authenticated session lives.

    per_cycle: a fresh session per cycle, shared by that cycle's A and B
    per_run: one session reused across every cycle of the run
    """

    PER_CYCLE = "per_cycle"
    PER_RUN = "per_run"


class CancelMode(str, Enum):
    """What happens to in-flight A/B requests when a run is stopped.

    drain: let them finish and record their real outcome
    abort: cancel them; each is recorded as a cancelled failure
    """

    DRAIN = "drain"
    ABORT = "abort"


class ErrorKind(str, Enum):
    CONFIG = "config"
    TRANSPORT = "transport"
    AUTH = "auth"
    SERVER = "server"
    INVALID_REQUEST = "invalid_request"
    CANCELLED = "cancelled"


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class StopReason(str, Enum):
    MAX_REACHED = "max_reached"
    CLIENT_CONSTRUCTION_FAILED = "client_construction_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RequestTemplate:
    """One configured HTTP call. Per-cycle copies are made with replace()."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None


@dataclass(frozen=True)
class AuthCredential:
    username: str
    password: str
    realm: str | None = None
    nonce: str | None = None


@dataclass(frozen=True)
class FieldSpec:
    name: str
    generator: str
    target: FieldTarget = FieldTarget.HEADER
    value: str | None = None


@dataclass(frozen=True)
class CycleFields:
    header_fields: dict[str, str]
    body_fields: dict[str, str]


@dataclass(frozen=True)
class DigestChallenge:
    realm: str
    nonce: str
    opaque: str | None = None
    algorithm: str = "MD5"


@dataclass(frozen=True)
class RequestOutcome:
    """Terminal result of one dispatched request."""

    label: str
    method: str
    url: str
    duration_ms: int
    status_code: int | None = None
    error_kind: ErrorKind | None = None
    error_type: str | None = None
    message: str | None = None

    @property
    def success(self) -> bool:
        return (
            self.error_kind is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
        )


@dataclass(frozen=True)
class AggregateStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class RunConfig:
    request_a: RequestTemplate
    request_b: RequestTemplate
    delay_between_a_and_b_ms: int = 100
    delay_between_a_requests_ms: int = 1000
    max_requests: int | None = None
    digest_auth: AuthCredential | None = None
    generated_fields: tuple[FieldSpec, ...] = ()
    session_scope: SessionScope = SessionScope.PER_CYCLE
    cancel_mode: CancelMode = CancelMode.DRAIN
    timeout_seconds: float = 30.0
    user_agent: str = "RemoteTask-HTTP-Client/1.0"
    verify_tls: bool = False
    ca_bundle: str | None = None


@dataclass
class RunResult:
    stats: AggregateStats
    stop_reason: StopReason
    cycles: int
    started_at_monotonic: float
    ended_at_monotonic: float
    metrics_report: dict[str, Any] | None = None

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at_monotonic - self.started_at_monotonic)

    @property
    def throughput_rps(self) -> float:
        duration = self.duration_seconds
        return (self.stats.total / duration) if duration > 0 else 0.0
