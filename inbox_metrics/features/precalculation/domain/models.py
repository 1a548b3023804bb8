"""
Domain models for the metrics precalculation feature.

Plain dataclasses shared by the directory repository, the provider
client, the cache store and the jobs. Cache documents are built with
``to_dict``/``from_dict`` so the persisted layout stays explicit.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

INDIVIDUALS_SUBJECT = "individuals"


@dataclass(slots=True)
class Tenant:
    """Represents an active row of the tenants table."""

    id: int
    name: str
    slug: str
    is_active: bool = True


@dataclass(slots=True)
class TenantCredentials:
    """Per-tenant analytics credentials and endpoint."""

    department_key: str | None
    individuals_key: str | None
    endpoint: str

    @property
    def has_department_key(self) -> bool:
        return bool(self.department_key and self.department_key.strip())

    @property
    def has_individuals_key(self) -> bool:
        return bool(self.individuals_key and self.individuals_key.strip())

    def key_for(self, subject: "Subject") -> str | None:
        if subject.is_individuals:
            return self.individuals_key if self.has_individuals_key else None
        return self.department_key if self.has_department_key else None


@dataclass(slots=True)
class Subject:
    """A department (inbox) or the tenant-wide individuals pool."""

    name: str
    code: str | None = None

    @property
    def is_individuals(self) -> bool:
        return self.name == INDIVIDUALS_SUBJECT

    @classmethod
    def individuals(cls) -> "Subject":
        return cls(name=INDIVIDUALS_SUBJECT)


@dataclass(slots=True)
class SubjectRecord:
    """One tracked teammate. ``id`` is the provider teammate id."""

    id: str
    name: str
    email: str
    channel_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {"id": self.id, "name": self.name, "email": self.email}
        if self.channel_code is not None:
            data["code"] = self.channel_code
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubjectRecord":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            email=data.get("email", ""),
            channel_code=data.get("code"),
        )


@dataclass(frozen=True, slots=True)
class RangeSpec:
    """A resolved range: epoch-second bounds (inclusive) plus display label."""

    name: str
    start: int
    end: int
    label: str


@dataclass(slots=True)
class MetricsPayload:
    """The fixed metric triple returned by the provider."""

    received: float | None
    sent: float | None
    avg_reply_seconds: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": self.received,
            "sent": self.sent,
            "avg_reply_seconds": self.avg_reply_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricsPayload":
        return cls(
            received=data.get("received"),
            sent=data.get("sent"),
            avg_reply_seconds=data.get("avg_reply_seconds"),
        )


@dataclass(slots=True)
class ResultRecord:
    """Outcome for one SubjectRecord: a payload or an error, never both."""

    record_index: int
    record: SubjectRecord
    metrics: MetricsPayload | None = None
    error: str | None = None

    def __post_init__(self):
        if (self.metrics is None) == (self.error is None):
            raise ValueError("ResultRecord needs exactly one of metrics or error")

    @property
    def is_success(self) -> bool:
        return self.metrics is not None

    @classmethod
    def success(cls, record_index: int, record: SubjectRecord, metrics: MetricsPayload) -> "ResultRecord":
        return cls(record_index=record_index, record=record, metrics=metrics)

    @classmethod
    def failure(cls, record_index: int, record: SubjectRecord, error: str) -> "ResultRecord":
        return cls(record_index=record_index, record=record, error=error or "Unknown error")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"record_index": self.record_index, "record": self.record.to_dict()}
        if self.metrics is not None:
            data["metrics"] = self.metrics.to_dict()
        else:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResultRecord":
        metrics = data.get("metrics")
        return cls(
            record_index=int(data.get("record_index", 0)),
            record=SubjectRecord.from_dict(data["record"]),
            metrics=MetricsPayload.from_dict(metrics) if metrics is not None else None,
            error=data.get("error") if metrics is None else None,
        )


@dataclass(slots=True)
class CacheEntry:
    """Persisted result of one (tenant, subject, range) computation."""

    subject: str
    range_name: str
    range_label: str
    range_start: int
    range_end: int
    generated_at: str
    total_records: int
    results: list[ResultRecord] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for result in self.results if not result.is_success)

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    @property
    def generated_at_dt(self) -> datetime:
        return datetime.fromisoformat(self.generated_at.replace("Z", "+00:00"))

    def successes_by_id(self) -> dict[str, ResultRecord]:
        return {result.record.id: result for result in self.results if result.is_success}

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "range": self.range_name,
            "range_label": self.range_label,
            "timestamp_start": self.range_start,
            "timestamp_end": self.range_end,
            "generated_at": self.generated_at,
            "total_records": self.total_records,
            "results": [result.to_dict() for result in self.results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            subject=data["subject"],
            range_name=data["range"],
            range_label=data.get("range_label", ""),
            range_start=int(data["timestamp_start"]),
            range_end=int(data["timestamp_end"]),
            generated_at=data["generated_at"],
            total_records=int(data["total_records"]),
            results=[ResultRecord.from_dict(item) for item in data.get("results", [])],
        )
