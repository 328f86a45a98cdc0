"""
Payer Gateway Data Models

Data classes for per-call request options, raw transport responses,
normalized integration responses, batch results and health status.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .enums import CircuitState, ClaimStatus, ErrorCategory, IntegrationStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RequestOptions:
    """Per-call options. Each retry derives a new copy via ``next_retry``."""

    timeout: int = 30000  # milliseconds
    retry_count: int = 2
    retry_delay: int = 1000  # milliseconds
    headers: dict[str, str] = field(default_factory=dict)
    correlation_id: str | None = None
    priority: int = 0

    def next_retry(self) -> "RequestOptions":
        """Options for the following attempt: one fewer retry, doubled delay."""
        return replace(
            self,
            retry_count=max(self.retry_count - 1, 0),
            retry_delay=self.retry_delay * 2,
        )

    def with_correlation_id(self, correlation_id: str) -> "RequestOptions":
        return replace(self, correlation_id=correlation_id)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000


@dataclass
class RemoteFile:
    """A file fetched from an SFTP partner."""

    filename: str
    path: str
    content: bytes
    modified: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "path": self.path,
            "content": self.content.decode("utf-8", errors="replace"),
            "date": self.modified.isoformat(),
        }


@dataclass
class RawResponse:
    """What a protocol adapter hands back before any partner decoding."""

    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    files: list[RemoteFile] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass
class ErrorDetail:
    """Structured error shape surfaced to gateway callers."""

    code: str
    category: ErrorCategory
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class IntegrationResponse:
    """Terminal result of a gateway operation.

    Exactly one of ``data`` and ``error`` is populated.
    """

    success: bool
    status_code: int
    data: Any = None
    error: ErrorDetail | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.success and (self.error is not None or self.data is None):
            raise ValueError("A successful response carries data and no error")
        if not self.success and (self.error is None or self.data is not None):
            raise ValueError("A failed response carries an error and no data")

    @classmethod
    def ok(
        cls, data: Any, status_code: int = 200, metadata: dict[str, Any] | None = None
    ) -> "IntegrationResponse":
        return cls(
            success=True, status_code=status_code, data=data, metadata=metadata or {}
        )

    @classmethod
    def fail(
        cls,
        error: ErrorDetail,
        status_code: int = 500,
        metadata: dict[str, Any] | None = None,
    ) -> "IntegrationResponse":
        return cls(
            success=False,
            status_code=status_code,
            error=error,
            metadata=metadata or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status_code": self.status_code,
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class BatchClaimResult:
    """Outcome of one claim inside a batch submission."""

    claim_id: str | None
    tracking_number: str | None = None
    status: ClaimStatus = ClaimStatus.ACKNOWLEDGED
    errors: list[str] = field(default_factory=list)


@dataclass
class BatchResponse:
    """Result of a batch submission, one entry per input claim."""

    success: bool
    status_code: int
    batch_id: str
    results: list[BatchClaimResult] = field(default_factory=list)
    error: ErrorDetail | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def accepted(self) -> list[BatchClaimResult]:
        return [r for r in self.results if r.status is not ClaimStatus.REJECTED]

    @property
    def rejected(self) -> list[BatchClaimResult]:
        return [r for r in self.results if r.status is ClaimStatus.REJECTED]


@dataclass
class HealthStatus:
    """Health of one partner as seen by the gateway."""

    partner_id: str
    status: IntegrationStatus
    breaker_state: CircuitState | None = None
    response_time_ms: float | None = None
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    last_checked: datetime = field(default_factory=utcnow)

    @property
    def healthy(self) -> bool:
        return self.status is IntegrationStatus.ACTIVE


@dataclass(frozen=True)
class CircuitBreakerRecord:
    """Point-in-time view of one partner's breaker."""

    partner_id: str
    state: CircuitState
    failures: int
    last_failure: float | None
    reset_timeout: float
    failure_threshold: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass(frozen=True)
class DateWindow:
    """Inclusive window of file modification times, timezone-aware."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("DateWindow bounds must be timezone-aware")
        if self.end < self.start:
            raise ValueError("DateWindow end precedes start")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end
