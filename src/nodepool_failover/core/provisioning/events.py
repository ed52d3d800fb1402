from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from prometheus_client import Counter, Histogram

from nodepool_failover.core.logging import get_logger

from .candidates import Candidate
from .models import AttemptOutcome


class AttemptEventType(str, Enum):
    STARTED = "attempt_started"
    SUCCEEDED = "attempt_succeeded"
    FAILED = "attempt_failed"
    PROVISIONED = "provisioned"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class AttemptEvent:
    type: AttemptEventType
    candidate: Candidate | None = None
    outcome: AttemptOutcome | None = None
    attempts: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "event": self.type.value,
            "attempts": self.attempts,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.candidate is not None:
            data["sku"] = self.candidate.sku
            data["rank"] = self.candidate.rank
        if self.outcome is not None:
            data["status"] = self.outcome.status.value
            data["duration_ms"] = round(self.outcome.duration_ms, 3)
            if not self.outcome.succeeded:
                data["error_type"] = self.outcome.error_type
                data["diagnostic"] = self.outcome.output
        return data


class AttemptEventSink(Protocol):
    def emit(self, event: AttemptEvent) -> None: ...


class NullAttemptSink:
    def emit(self, event: AttemptEvent) -> None:
        return None


class RecordingAttemptSink:
    """Keeps every event in memory; handy for callers that render their own report."""

    def __init__(self) -> None:
        self.events: list[AttemptEvent] = []

    def emit(self, event: AttemptEvent) -> None:
        self.events.append(event)


class LoggingAttemptSink:
    def __init__(self, logger_name: str = "nodepool_failover.attempts") -> None:
        self.logger = get_logger(logger_name)

    def emit(self, event: AttemptEvent) -> None:
        payload = event.to_dict()
        name = f"fallback.{payload.pop('event')}"
        if event.type is AttemptEventType.FAILED:
            self.logger.warning(name, **payload)
        elif event.type is AttemptEventType.EXHAUSTED:
            self.logger.error(name, **payload)
        else:
            self.logger.info(name, **payload)


attempt_counter = Counter(
    "nodepool_provisioning_attempts_total",
    "Node pool provisioning attempts by SKU and outcome",
    ["sku", "rank", "outcome"],
)

attempt_duration = Histogram(
    "nodepool_provisioning_attempt_duration_seconds",
    "Wall time of a single node pool provisioning attempt",
    ["outcome"],
)

run_counter = Counter(
    "nodepool_provisioning_runs_total",
    "Completed fallback runs by terminal state",
    ["result"],
)


class MetricsAttemptSink:
    def __init__(
        self,
        attempts: Counter = attempt_counter,
        duration: Histogram = attempt_duration,
        runs: Counter = run_counter,
    ) -> None:
        self.attempts = attempts
        self.duration = duration
        self.runs = runs

    def emit(self, event: AttemptEvent) -> None:
        if event.type in (AttemptEventType.SUCCEEDED, AttemptEventType.FAILED):
            if event.candidate is None or event.outcome is None:
                return
            outcome = event.outcome.status.value
            self.attempts.labels(
                sku=event.candidate.sku, rank=str(event.candidate.rank), outcome=outcome
            ).inc()
            self.duration.labels(outcome=outcome).observe(event.outcome.duration_ms / 1000.0)
        elif event.type in (AttemptEventType.PROVISIONED, AttemptEventType.EXHAUSTED):
            self.runs.labels(result=event.type.value).inc()


class CompositeAttemptSink:
    def __init__(self, sinks: Iterable[AttemptEventSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, event: AttemptEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
