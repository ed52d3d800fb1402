from __future__ import annotations

from .candidates import Candidate, build_candidates
from .events import (
    AttemptEvent,
    AttemptEventSink,
    AttemptEventType,
    CompositeAttemptSink,
    LoggingAttemptSink,
    MetricsAttemptSink,
    NullAttemptSink,
    RecordingAttemptSink,
)
from .executor import EngineState, FallbackExecutor, ProvisioningOperation, provision_node_pool
from .models import (
    AttemptLog,
    AttemptOutcome,
    AttemptRecord,
    AttemptStatus,
    Exhausted,
    NodePoolParameters,
    Provisioned,
    ProvisioningRequest,
    ProvisioningResult,
)

__all__ = [
    "Candidate",
    "build_candidates",
    "AttemptEvent",
    "AttemptEventSink",
    "AttemptEventType",
    "CompositeAttemptSink",
    "LoggingAttemptSink",
    "MetricsAttemptSink",
    "NullAttemptSink",
    "RecordingAttemptSink",
    "EngineState",
    "FallbackExecutor",
    "ProvisioningOperation",
    "provision_node_pool",
    "AttemptLog",
    "AttemptOutcome",
    "AttemptRecord",
    "AttemptStatus",
    "Exhausted",
    "NodePoolParameters",
    "Provisioned",
    "ProvisioningRequest",
    "ProvisioningResult",
]
