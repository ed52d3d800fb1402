import pytest
from prometheus_client import REGISTRY

from nodepool_failover.core.exceptions import (
    AttemptFailure,
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    ExhaustionError,
)
from nodepool_failover.core.provisioning import AttemptLog, AttemptOutcome, Candidate


def test_configuration_error_keeps_field() -> None:
    err = ConfigurationError("sku_primary", "primary SKU is required")
    assert err.field == "sku_primary"
    assert err.message == "sku_primary: primary SKU is required"
    assert err.category is ErrorCategory.CONFIGURATION
    assert err.severity is ErrorSeverity.CRITICAL
    assert err.error_id.startswith("ERR-")


def test_attempt_failure_is_not_retryable() -> None:
    err = AttemptFailure("Standard_E8s_v5", "capacity", error_type="AzCliError")
    assert err.retryable is False
    assert err.diagnostic == "capacity"
    assert "Standard_E8s_v5" in err.message


def test_exhaustion_error_lists_tried_skus() -> None:
    log = AttemptLog()
    log.record(Candidate("A", 1), AttemptOutcome.failure("capacity", "AzCliError"))
    log.record(Candidate("B", 2), AttemptOutcome.failure("quota", "AzCliError"))

    err = ExhaustionError(log)

    assert err.message == "All SKU attempts failed: A B"
    assert err.details == {"tried": ["A", "B"]}
    assert [f.outcome.output for f in err.log.failures()] == ["capacity", "quota"]


def test_errors_are_counted_by_type() -> None:
    labels = {"error_type": "ConfigurationError", "severity": "critical", "category": "configuration"}
    before = REGISTRY.get_sample_value("nodepool_failover_errors_total", labels) or 0.0

    ConfigurationError("pool_name", "bad")

    assert REGISTRY.get_sample_value("nodepool_failover_errors_total", labels) == before + 1


def test_exhausted_unwrap_raises() -> None:
    from nodepool_failover.core.provisioning import Exhausted

    log = AttemptLog()
    log.record(Candidate("A", 1), AttemptOutcome.failure("capacity", "AzCliError"))
    with pytest.raises(ExhaustionError):
        Exhausted(log=log).unwrap()
