from __future__ import annotations

import asyncio
import signal
import time
from typing import Awaitable, Callable

import httpx

from remotetask.core.digest import DigestSession
from remotetask.core.fields import FieldGenerator, apply_cycle_fields
from remotetask.core.metrics import LatencyMetrics
from remotetask.core.models import (
    CancelMode,
    ErrorKind,
    RequestOutcome,
    RequestTemplate,
    RunConfig,
    RunResult,
    SchedulerState,
    SessionScope,
    StopReason,
)
from remotetask.core.stats import StatsAggregator
from remotetask.exceptions import AuthError, ConfigurationError, TransportError, ValidationError
from remotetask.logger import Logger, session_logger

SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD"})

SessionFactory = Callable[[RunConfig], DigestSession]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class Scheduler:
    """Drives repeated A-then-B cycles with controlled timing.

    Each cycle:
      - generates the cycle's field values and applies them to copies of A and B
      - waits until ``delay_between_a_requests_ms`` has passed since the
        previous A dispatch (never bursts to catch up)
      - dispatches A, waits ``delay_between_a_and_b_ms`` from A's dispatch,
        dispatches B on the same session, then waits for both

    A and B run as independent tasks; only their dispatch order and offset
    are guaranteed, not their completion order.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        logger: Logger | None = None,
        session_factory: SessionFactory | None = None,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
        field_generator: FieldGenerator | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or session_logger
        self._session_factory = session_factory or (lambda cfg: DigestSession.from_config(cfg, logger=self._logger))
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._fields = field_generator or FieldGenerator(config.generated_fields)

        self._stats = StatsAggregator(logger=self._logger)
        self._metrics = LatencyMetrics(logger=self._logger)
        self._stop_event = asyncio.Event()
        self._state = SchedulerState.IDLE
        self._stop_reason: StopReason | None = None
        self._in_flight: list[asyncio.Task[RequestOutcome]] = []

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def stop_reason(self) -> StopReason | None:
        return self._stop_reason

    @property
    def stats(self) -> StatsAggregator:
        return self._stats

    def stop(self) -> None:
        """Request a cooperative stop; honoured between cycles.

        In abort mode the current cycle's in-flight requests are cancelled
        too, and each is recorded as a cancelled failure.
        """
        if self._stop_event.is_set():
            return
        self._logger.warning("run.stop_requested", cancel_mode=self._config.cancel_mode.value)
        self._stop_event.set()
        if self._config.cancel_mode == CancelMode.ABORT:
            for task in self._in_flight:
                if not task.done():
                    task.cancel()

    async def run(self) -> RunResult:
        if self._state != SchedulerState.IDLE:
            raise RuntimeError("scheduler can only be run once")
        self._validate_config()

        config = self._config
        self._state = SchedulerState.RUNNING
        started = self._clock()

        self._logger.info(
            "run.start",
            request_a=f"{config.request_a.method} {config.request_a.url}",
            request_b=f"{config.request_b.method} {config.request_b.url}",
            delay_between_a_and_b_ms=config.delay_between_a_and_b_ms,
            delay_between_a_requests_ms=config.delay_between_a_requests_ms,
            max_requests=config.max_requests,
            digest_auth=config.digest_auth is not None,
            generated_fields=[spec.name for spec in config.generated_fields],
            session_scope=config.session_scope.value,
            cancel_mode=config.cancel_mode.value,
        )

        cycles = 0
        reason: StopReason | None = None
        last_a_dispatch: float | None = None
        shared_session: DigestSession | None = None

        try:
            if config.session_scope == SessionScope.PER_RUN:
                shared_session = await self._open_session(config.request_a)
                if shared_session is None:
                    reason = StopReason.CLIENT_CONSTRUCTION_FAILED

            while reason is None:
                if self._stop_event.is_set():
                    reason = StopReason.CANCELLED
                    break
                if config.max_requests is not None and cycles >= config.max_requests:
                    self._logger.info("run.max_reached", max_requests=config.max_requests)
                    reason = StopReason.MAX_REACHED
                    break

                cycle = cycles + 1
                fields = self._fields.for_cycle(cycle)
                request_a = apply_cycle_fields(config.request_a, fields)
                request_b = apply_cycle_fields(config.request_b, fields)
                self._logger.debug(
                    "cycle.start",
                    cycle=cycle,
                    header_fields=fields.header_fields,
                    body_fields=fields.body_fields,
                )

                if last_a_dispatch is not None:
                    await self._wait_for_spacing(last_a_dispatch)
                if self._stop_event.is_set():
                    reason = StopReason.CANCELLED
                    break

                session = shared_session
                if session is None:
                    session = await self._open_session(request_a)
                    if session is None:
                        reason = StopReason.CLIENT_CONSTRUCTION_FAILED
                        break

                cycles = cycle
                try:
                    last_a_dispatch = await self._run_cycle(cycle, session, request_a, request_b)
                finally:
                    if session is not shared_session:
                        await session.aclose()
        finally:
            if shared_session is not None:
                await shared_session.aclose()
            self._state = SchedulerState.STOPPED

        self._stop_reason = reason
        ended = self._clock()
        stats = await self._stats.snapshot()
        metrics_report = await self._metrics.build_report()

        self._logger.info(
            "run.end",
            stop_reason=reason.value,
            cycles=cycles,
            total=stats.total,
            successful=stats.successful,
            failed=stats.failed,
            duration_seconds=round(max(0.0, ended - started), 3),
        )
        self._stats.log_summary(stats)

        return RunResult(
            stats=stats,
            stop_reason=reason,
            cycles=cycles,
            started_at_monotonic=started,
            ended_at_monotonic=ended,
            metrics_report=metrics_report,
        )

    async def run_until_signalled(self) -> RunResult:
        """Run with SIGINT/SIGTERM mapped to a cooperative stop()."""
        loop = asyncio.get_running_loop()

        def _handle_signal(signum: int, _frame) -> None:  # pragma: no cover
            self._logger.warning("run.signal", signum=signum)
            loop.call_soon_threadsafe(self.stop)

        with _SignalHandlers(_handle_signal, logger=self._logger):
            return await self.run()

    def _validate_config(self) -> None:
        config = self._config
        for key in ("delay_between_a_and_b_ms", "delay_between_a_requests_ms", "max_requests"):
            value = getattr(config, key)
            if value is not None and value < 0:
                raise ConfigurationError(f"{key} must be >= 0", details={"key": key, "value": value})

    async def _wait_for_spacing(self, last_a_dispatch: float) -> None:
        required = self._config.delay_between_a_requests_ms / 1000.0
        elapsed = self._clock() - last_a_dispatch
        if elapsed < required:
            remaining = required - elapsed
            self._logger.debug("cycle.spacing_wait", wait_ms=int(remaining * 1000))
            await self._sleep(remaining)

    async def _open_session(self, request: RequestTemplate) -> DigestSession | None:
        try:
            return self._session_factory(self._config)
        except ConfigurationError as exc:
            outcome = RequestOutcome(
                label="session",
                method=request.method,
                url=request.url,
                duration_ms=0,
                error_kind=ErrorKind.CONFIG,
                error_type="client_construction_failed",
                message=f"Failed to create HTTP client: {exc}",
            )
            await self._record(outcome)
            self._logger.error(
                "session.create_failed",
                error=str(exc),
                recovery="Check verify_tls/ca_bundle settings",
            )
            return None

    async def _run_cycle(
        self,
        cycle: int,
        session: DigestSession,
        request_a: RequestTemplate,
        request_b: RequestTemplate,
    ) -> float:
        """Dispatch A, then B after the offset; return A's dispatch instant."""
        recorded: set[str] = set()
        dispatched: list[tuple[str, RequestTemplate]] = [("A", request_a)]

        a_dispatched_at = self._clock()
        task_a = asyncio.create_task(self._dispatch("A", cycle, request_a, session, recorded))
        self._in_flight = [task_a]

        offset = self._config.delay_between_a_and_b_ms / 1000.0
        remaining = offset - (self._clock() - a_dispatched_at)
        if remaining > 0:
            await self._sleep(remaining)

        aborting = self._stop_event.is_set() and self._config.cancel_mode == CancelMode.ABORT
        if aborting:
            self._logger.info("cycle.b_skipped", cycle=cycle)
        else:
            task_b = asyncio.create_task(self._dispatch("B", cycle, request_b, session, recorded))
            self._in_flight.append(task_b)
            dispatched.append(("B", request_b))

        try:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        finally:
            self._in_flight = []

        # A task cancelled before its first step never ran its own handler.
        for label, request in dispatched:
            if label not in recorded:
                outcome = self._failure(label, request, self._clock(), ErrorKind.CANCELLED, "cancelled", "cancelled")
                await self._record(outcome, cycle)
        return a_dispatched_at

    async def _dispatch(
        self,
        label: str,
        cycle: int,
        request: RequestTemplate,
        session: DigestSession,
        recorded: set[str],
    ) -> RequestOutcome:
        start = self._clock()
        try:
            _validate_request(request)
            response = await session.send(request.method, request.url, request.body, request.headers)
        except asyncio.CancelledError:
            recorded.add(label)
            outcome = self._failure(label, request, start, ErrorKind.CANCELLED, "cancelled", "cancelled")
            await self._record(outcome, cycle)
            raise
        except ValidationError as exc:
            outcome = self._failure(label, request, start, ErrorKind.INVALID_REQUEST, "invalid_request", exc.message)
        except AuthError as exc:
            outcome = self._failure(label, request, start, ErrorKind.AUTH, "auth_rejected", str(exc))
        except TransportError as exc:
            error_type = _classify_exception(exc.cause) if exc.cause is not None else "network_error"
            outcome = self._failure(label, request, start, ErrorKind.TRANSPORT, error_type, _describe(exc.cause or exc))
        except Exception as exc:
            outcome = self._failure(label, request, start, ErrorKind.TRANSPORT, type(exc).__name__, str(exc))
        else:
            outcome = self._from_response(label, request, start, response)

        recorded.add(label)
        await self._record(outcome, cycle)
        return outcome

    def _from_response(
        self,
        label: str,
        request: RequestTemplate,
        start: float,
        response: httpx.Response,
    ) -> RequestOutcome:
        duration_ms = _elapsed_ms(self._clock, start)
        error_type = _classify_http_error(response.status_code)
        if error_type is None:
            return RequestOutcome(
                label=label,
                method=request.method,
                url=request.url,
                duration_ms=duration_ms,
                status_code=response.status_code,
            )
        return RequestOutcome(
            label=label,
            method=request.method,
            url=request.url,
            duration_ms=duration_ms,
            status_code=response.status_code,
            error_kind=ErrorKind.SERVER,
            error_type=error_type,
            message=(
                f"{request.method} request to {request.url} failed with status: "
                f"{response.status_code} in {duration_ms}ms"
            ),
        )

    def _failure(
        self,
        label: str,
        request: RequestTemplate,
        start: float,
        kind: ErrorKind,
        error_type: str,
        error: str,
    ) -> RequestOutcome:
        duration_ms = _elapsed_ms(self._clock, start)
        return RequestOutcome(
            label=label,
            method=request.method,
            url=request.url,
            duration_ms=duration_ms,
            error_kind=kind,
            error_type=error_type,
            message=f"{request.method} request to {request.url} failed with error: {error} in {duration_ms}ms",
        )

    async def _record(self, outcome: RequestOutcome, cycle: int | None = None) -> None:
        await self._stats.record(outcome)
        await self._metrics.record(outcome)

        if outcome.success:
            self._logger.info(
                "request.ok",
                cycle=cycle,
                label=outcome.label,
                method=outcome.method,
                url=outcome.url,
                status_code=outcome.status_code,
                duration_ms=outcome.duration_ms,
            )
        else:
            self._logger.error(
                "request.failed",
                cycle=cycle,
                label=outcome.label,
                method=outcome.method,
                url=outcome.url,
                status_code=outcome.status_code,
                duration_ms=outcome.duration_ms,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                error_type=outcome.error_type,
                error=outcome.message,
            )


# ---------------------------------------------------------------------------
# Helpers: request validation and outcome classification
# ---------------------------------------------------------------------------

def _validate_request(request: RequestTemplate) -> None:
    if request.method not in SUPPORTED_METHODS:
        raise ValidationError(
            "UNSUPPORTED_METHOD",
            f"Unsupported HTTP method: {request.method}",
            {"supported": sorted(SUPPORTED_METHODS)},
        )
    if request.method == "POST" and request.body is None:
        raise ValidationError("MISSING_BODY", "POST request requires a body", {"url": request.url})


def _describe(exc: BaseException) -> str:
    # httpx timeouts often carry an empty message.
    return str(exc) or type(exc).__name__


def _elapsed_ms(clock: Clock, start: float) -> int:
    return max(0, int((clock() - start) * 1000))


def _classify_http_error(status_code: int) -> str | None:
    """Map an HTTP status code to a canonical error_type, or None if 2xx."""
    if 200 <= status_code < 300:
        return None
    if 300 <= status_code < 400:
        return "redirect"
    if status_code == 401:
        return "auth_unauthorized"
    if status_code == 403:
        return "auth_forbidden"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    if 500 <= status_code < 600:
        return "server_error"
    return f"http_{status_code}"


def _classify_exception(exc: BaseException) -> str:
    """Map a network-level exception to a canonical error_type."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "network_connect"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "network_protocol"
    if isinstance(exc, httpx.InvalidURL):
        return "invalid_url"
    if isinstance(exc, httpx.HTTPError):
        return "network_error"
    return type(exc).__name__


class _SignalHandlers:
    def __init__(self, handler, *, logger: Logger) -> None:
        self._handler = handler
        self._logger = logger
        self._previous: dict[int, object] = {}

    def __enter__(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handler)
            except (ValueError, OSError) as exc:
                # Only the main thread may install handlers.
                self._logger.debug("run.signal_unavailable", signum=int(signum), error=str(exc))
        return self

    def __exit__(self, exc_type, exc, tb):
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)  # type: ignore[arg-type]
        return False
