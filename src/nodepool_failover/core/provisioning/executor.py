from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Protocol

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from nodepool_failover.core.exceptions import AttemptFailure, ConfigurationError
from nodepool_failover.core.logging import get_logger

from .candidates import Candidate, build_candidates
from .events import AttemptEvent, AttemptEventSink, AttemptEventType, NullAttemptSink
from .models import (
    AttemptLog,
    AttemptOutcome,
    Exhausted,
    NodePoolParameters,
    Provisioned,
    ProvisioningRequest,
    ProvisioningResult,
)

tracer = trace.get_tracer(__name__)
logger = get_logger(__name__)


class ProvisioningOperation(Protocol):
    """Creates the node pool for one request.

    Returns the raw success payload. Any exception means the attempt failed;
    its text is the diagnostic kept in the attempt log.
    """

    async def __call__(
        self, request: ProvisioningRequest, *, timeout: float | None = None
    ) -> str: ...


class EngineState(str, Enum):
    PENDING = "pending"
    TRYING = "trying"
    PROVISIONED = "provisioned"
    EXHAUSTED = "exhausted"


def coerce_parameters(parameters: NodePoolParameters | Mapping[str, Any]) -> NodePoolParameters:
    if isinstance(parameters, NodePoolParameters):
        return parameters
    try:
        return NodePoolParameters.model_validate(dict(parameters))
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "parameters"
        raise ConfigurationError(field, first.get("msg", str(exc))) from exc


def _check_order(candidates: Sequence[Candidate]) -> None:
    if not candidates:
        raise ConfigurationError("candidates", "at least one candidate is required")
    seen: set[str] = set()
    previous = 0
    for candidate in candidates:
        if not candidate.sku.strip():
            raise ConfigurationError("candidates", f"rank {candidate.rank} has an empty SKU")
        if candidate.rank <= previous:
            raise ConfigurationError("candidates", "candidate ranks must be strictly increasing")
        if candidate.sku.lower() in seen:
            raise ConfigurationError("candidates", f"SKU '{candidate.sku}' is listed twice")
        seen.add(candidate.sku.lower())
        previous = candidate.rank


class FallbackExecutor:
    def __init__(
        self,
        operation: ProvisioningOperation,
        sink: AttemptEventSink | None = None,
        attempt_timeout: float | None = None,
    ) -> None:
        self.operation = operation
        self.sink = sink or NullAttemptSink()
        self.attempt_timeout = attempt_timeout
        self._state = EngineState.PENDING

    @property
    def state(self) -> EngineState:
        return self._state

    def _transition(self, new_state: EngineState, **fields: Any) -> None:
        logger.debug(
            "fallback.state", old=self._state.value, new=new_state.value, **fields
        )
        self._state = new_state

    def _emit(self, event: AttemptEvent) -> None:
        try:
            self.sink.emit(event)
        except Exception:
            logger.exception("fallback.sink_failed", event_type=event.type.value)

    async def run(
        self,
        candidates: Sequence[Candidate],
        parameters: NodePoolParameters | Mapping[str, Any],
    ) -> ProvisioningResult:
        self._state = EngineState.PENDING
        _check_order(candidates)
        fixed = coerce_parameters(parameters)
        log = AttemptLog()

        with tracer.start_as_current_span("fallback_run") as span:
            span.set_attributes(
                {
                    "fallback.candidates": [c.sku for c in candidates],
                    "fallback.cluster_name": fixed.cluster_name,
                    "fallback.pool_name": fixed.pool_name,
                }
            )

            for candidate in candidates:
                self._transition(EngineState.TRYING, sku=candidate.sku, rank=candidate.rank)
                request = fixed.for_candidate(candidate)
                self._emit(
                    AttemptEvent(AttemptEventType.STARTED, candidate=candidate, attempts=len(log))
                )

                outcome = await self._attempt(request)
                log.record(candidate, outcome)

                if outcome.succeeded:
                    self._emit(
                        AttemptEvent(
                            AttemptEventType.SUCCEEDED,
                            candidate=candidate,
                            outcome=outcome,
                            attempts=len(log),
                        )
                    )
                    self._emit(
                        AttemptEvent(
                            AttemptEventType.PROVISIONED, candidate=candidate, attempts=len(log)
                        )
                    )
                    self._transition(EngineState.PROVISIONED, sku=candidate.sku)
                    span.set_attributes(
                        {"fallback.selected_sku": candidate.sku, "fallback.attempts": len(log)}
                    )
                    span.set_status(Status(StatusCode.OK))
                    return Provisioned(candidate=candidate, output=outcome.output, log=log)

                self._emit(
                    AttemptEvent(
                        AttemptEventType.FAILED,
                        candidate=candidate,
                        outcome=outcome,
                        attempts=len(log),
                    )
                )

            self._emit(AttemptEvent(AttemptEventType.EXHAUSTED, attempts=len(log)))
            self._transition(EngineState.EXHAUSTED, tried=log.tried)
            span.set_attributes({"fallback.attempts": len(log)})
            span.set_status(Status(StatusCode.ERROR, f"All SKU attempts failed: {log.tried}"))
            return Exhausted(log=log)

    async def _attempt(self, request: ProvisioningRequest) -> AttemptOutcome:
        with tracer.start_as_current_span("fallback_attempt") as span:
            span.set_attributes(
                {"attempt.sku": request.candidate.sku, "attempt.rank": request.candidate.rank}
            )
            start = time.perf_counter()
            try:
                output = await self.operation(request, timeout=self.attempt_timeout)
            except Exception as exc:
                elapsed = (time.perf_counter() - start) * 1000.0
                failure = AttemptFailure(
                    request.sku, str(exc) or type(exc).__name__, error_type=type(exc).__name__
                )
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, failure.message))
                return AttemptOutcome.failure(
                    failure.diagnostic, failure.error_type, duration_ms=elapsed
                )
            elapsed = (time.perf_counter() - start) * 1000.0
            span.set_status(Status(StatusCode.OK))
            return AttemptOutcome.success(output if isinstance(output, str) else str(output), elapsed)


async def provision_node_pool(
    operation: ProvisioningOperation,
    parameters: NodePoolParameters | Mapping[str, Any],
    primary: str | None,
    secondary: str | None = None,
    tertiary: str | None = None,
    *,
    sink: AttemptEventSink | None = None,
    attempt_timeout: float | None = None,
) -> Provisioned:
    """Build the candidate list and run it; raises ExhaustionError when every SKU fails."""
    candidates = build_candidates(primary, secondary, tertiary)
    executor = FallbackExecutor(operation, sink=sink, attempt_timeout=attempt_timeout)
    result = await executor.run(candidates, parameters)
    return result.unwrap()
