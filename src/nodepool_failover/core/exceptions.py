from __future__ import annotations

import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter

if TYPE_CHECKING:
    from nodepool_failover.core.provisioning.models import AttemptLog

error_counter = Counter(
    "nodepool_failover_errors_total",
    "Total number of application errors",
    ["error_type", "severity", "category"],
)


class ErrorSeverity(Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    AUTHENTICATION = "authentication"
    EXTERNAL_SERVICE = "external_service"
    RESOURCE_LIMIT = "resource_limit"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class BaseApplicationException(Exception):
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        severity: ErrorSeverity | None = None,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.severity
        self.category = category or self.category
        self.retryable = retryable if retryable is not None else self.retryable
        self.details = details or {}
        self.error_id = f"ERR-{uuid.uuid4().hex[:12].upper()}"
        error_counter.labels(
            error_type=type(self).__name__,
            severity=self.severity.value,
            category=self.category.value,
        ).inc()


class AuthenticationException(BaseApplicationException):
    severity = ErrorSeverity.WARNING
    category = ErrorCategory.AUTHENTICATION


class ExternalServiceException(BaseApplicationException):
    severity = ErrorSeverity.ERROR
    category = ErrorCategory.EXTERNAL_SERVICE
    retryable = True


class ConfigurationException(BaseApplicationException):
    severity = ErrorSeverity.CRITICAL
    category = ErrorCategory.CONFIGURATION


class ConfigurationError(ConfigurationException):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}", details={"field": field})
        self.field = field


class AttemptFailure(ExternalServiceException):
    """A single candidate was rejected by the provisioning operation.

    Never raised out of the executor; it is recorded against the candidate and
    the executor moves on to the next one.
    """

    def __init__(self, sku: str, diagnostic: str, *, error_type: str = "Exception") -> None:
        super().__init__(
            f"Failed to create node pool with SKU '{sku}': {diagnostic}",
            retryable=False,
            details={"sku": sku, "error_type": error_type},
        )
        self.sku = sku
        self.diagnostic = diagnostic
        self.error_type = error_type


class ExhaustionError(BaseApplicationException):
    severity = ErrorSeverity.ERROR
    category = ErrorCategory.RESOURCE_LIMIT

    def __init__(self, log: AttemptLog) -> None:
        tried = [entry.candidate.sku for entry in log]
        super().__init__(
            f"All SKU attempts failed: {' '.join(tried)}",
            details={"tried": tried},
        )
        self.log = log
