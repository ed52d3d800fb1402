from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nodepool_failover.core.exceptions import ExhaustionError

from .candidates import Candidate

_POOL_NAME = re.compile(r"^[a-z][a-z0-9]{0,11}$")
_LABEL = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9_./-]*[A-Za-z0-9])?=[A-Za-z0-9_.-]*$")
_TAINT = re.compile(
    r"^[A-Za-z0-9]([A-Za-z0-9_./-]*[A-Za-z0-9])?=[A-Za-z0-9_.-]*:(NoSchedule|PreferNoSchedule|NoExecute)$"
)


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",")]


class NodePoolParameters(BaseModel):
    """Everything an attempt needs apart from the VM size."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    resource_group: str = Field(min_length=1)
    cluster_name: str = Field(min_length=1)
    pool_name: str = "memnp"
    node_count: int = Field(default=2, ge=0)
    min_count: int = Field(default=1, ge=0)
    max_count: int = Field(default=5, ge=1)
    mode: Literal["User", "System"] = "User"
    zones: tuple[str, ...] = ()
    node_labels: str | None = None
    node_taints: str | None = None
    spot: bool = False
    os_sku: Literal["Ubuntu", "CBLMariner", "AzureLinux"] = "Ubuntu"
    kubernetes_version: str | None = None
    ssh_key: str | None = None
    managed_identity: str | None = None

    @field_validator("pool_name")
    @classmethod
    def _validate_pool_name(cls, v: str) -> str:
        if not _POOL_NAME.match(v):
            raise ValueError(
                "pool name must start with a lowercase letter and contain at most "
                "12 lowercase letters or digits"
            )
        return v

    @field_validator("zones", mode="before")
    @classmethod
    def _normalize_zones(cls, v: Any) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split()
        zones = tuple(str(z).strip() for z in v)
        if any(not z for z in zones):
            raise ValueError("zones must not contain empty entries")
        return zones

    @field_validator(
        "node_labels", "node_taints", "kubernetes_version", "ssh_key", "managed_identity",
        mode="before",
    )
    @classmethod
    def _empty_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @field_validator("node_labels")
    @classmethod
    def _validate_labels(cls, v: str | None) -> str | None:
        if v is None:
            return None
        bad = [item for item in _split_csv(v) if not _LABEL.match(item)]
        if bad:
            raise ValueError(f"labels must be key=value pairs, got {', '.join(bad)!s}")
        return v

    @field_validator("node_taints")
    @classmethod
    def _validate_taints(cls, v: str | None) -> str | None:
        if v is None:
            return None
        bad = [item for item in _split_csv(v) if not _TAINT.match(item)]
        if bad:
            raise ValueError(f"taints must be key=value:effect entries, got {', '.join(bad)!s}")
        return v

    @model_validator(mode="after")
    def _validate_bounds(self) -> NodePoolParameters:
        if self.min_count > self.max_count:
            raise ValueError(f"min_count ({self.min_count}) exceeds max_count ({self.max_count})")
        if not self.min_count <= self.node_count <= self.max_count:
            raise ValueError(
                f"node_count ({self.node_count}) must lie within "
                f"[{self.min_count}, {self.max_count}]"
            )
        return self

    @property
    def labels(self) -> dict[str, str]:
        if not self.node_labels:
            return {}
        return dict(item.split("=", 1) for item in _split_csv(self.node_labels))

    @property
    def taints(self) -> list[str]:
        if not self.node_taints:
            return []
        return _split_csv(self.node_taints)

    def for_candidate(self, candidate: Candidate) -> ProvisioningRequest:
        return ProvisioningRequest(candidate=candidate, parameters=self)


class ProvisioningRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    candidate: Candidate
    parameters: NodePoolParameters

    @property
    def sku(self) -> str:
        return self.candidate.sku

    def describe(self) -> dict[str, Any]:
        return {
            "sku": self.candidate.sku,
            "rank": self.candidate.rank,
            "resource_group": self.parameters.resource_group,
            "cluster_name": self.parameters.cluster_name,
            "pool_name": self.parameters.pool_name,
        }


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class AttemptOutcome:
    status: AttemptStatus
    output: str
    error_type: str | None = None
    duration_ms: float = field(default=0.0, compare=False)

    @classmethod
    def success(cls, output: str, duration_ms: float = 0.0) -> AttemptOutcome:
        return cls(status=AttemptStatus.SUCCESS, output=output, duration_ms=duration_ms)

    @classmethod
    def failure(cls, output: str, error_type: str, duration_ms: float = 0.0) -> AttemptOutcome:
        return cls(
            status=AttemptStatus.FAILED,
            output=output,
            error_type=error_type,
            duration_ms=duration_ms,
        )

    @property
    def succeeded(self) -> bool:
        return self.status is AttemptStatus.SUCCESS


@dataclass(frozen=True)
class AttemptRecord:
    candidate: Candidate
    outcome: AttemptOutcome

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku": self.candidate.sku,
            "rank": self.candidate.rank,
            "status": self.outcome.status.value,
            "error_type": self.outcome.error_type,
            "output": self.outcome.output,
            "duration_ms": round(self.outcome.duration_ms, 3),
        }


class AttemptLog:
    """Append-only history of one engine run, in the order attempts were made."""

    def __init__(self) -> None:
        self._records: list[AttemptRecord] = []

    def record(self, candidate: Candidate, outcome: AttemptOutcome) -> AttemptRecord:
        entry = AttemptRecord(candidate=candidate, outcome=outcome)
        self._records.append(entry)
        return entry

    @property
    def entries(self) -> tuple[AttemptRecord, ...]:
        return tuple(self._records)

    @property
    def tried(self) -> list[str]:
        return [r.candidate.sku for r in self._records]

    def failures(self) -> list[AttemptRecord]:
        return [r for r in self._records if not r.outcome.succeeded]

    def to_list(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self._records]

    def __iter__(self) -> Iterator[AttemptRecord]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> AttemptRecord:
        return self._records[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttemptLog):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"AttemptLog({self._records!r})"


@dataclass(frozen=True)
class Provisioned:
    candidate: Candidate
    output: str
    log: AttemptLog

    ok = True

    def unwrap(self) -> Provisioned:
        return self


@dataclass(frozen=True)
class Exhausted:
    log: AttemptLog

    ok = False

    def unwrap(self) -> Provisioned:
        raise ExhaustionError(self.log)


ProvisioningResult = Provisioned | Exhausted
