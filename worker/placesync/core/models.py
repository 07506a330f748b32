"""Core data models shared by the enrichment pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now_iso() -> str:
    """Current instant as ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return format_instant(datetime.now(timezone.utc))


def format_instant(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ProcessStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    ID_MISMATCH = "id_mismatch"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


@dataclass(slots=True)
class PendingRecord:
    """Row of the staging table waiting for place enrichment."""

    id: str
    external_key: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    enrichment_marker: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PendingRecord":
        external_key = row.get("metabase_id")
        return cls(
            id=str(row["id"]),
            external_key=str(external_key) if external_key else None,
            name=row.get("name"),
            address=row.get("address"),
            city=row.get("city"),
            enrichment_marker=row.get("place_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @property
    def is_marked(self) -> bool:
        return bool(self.enrichment_marker)


@dataclass(slots=True)
class CustomerReference:
    """Authoritative customer row a pending record points at."""

    id: str
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CustomerReference":
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            address=row.get("address"),
            city=row.get("city"),
            phone=row.get("phone"),
        )


@dataclass(slots=True)
class ProcessResult:
    """Outcome of one pending record within a single run."""

    record_id: str
    name: Optional[str]
    status: ProcessStatus
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    place_id: Optional[str] = None
    external_key: Optional[str] = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return {key: value for key, value in payload.items() if value not in (None, [])}


@dataclass(slots=True)
class RunStats:
    """Counters for one pipeline invocation."""

    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    not_found: int = 0
    validation_failed: int = 0
    id_mismatch: int = 0
    duplicate: int = 0
    skipped: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None

    _COUNTERS = {
        ProcessStatus.SUCCESS: "successful",
        ProcessStatus.FAILED: "failed",
        ProcessStatus.NOT_FOUND: "not_found",
        ProcessStatus.VALIDATION_FAILED: "validation_failed",
        ProcessStatus.ID_MISMATCH: "id_mismatch",
        ProcessStatus.DUPLICATE: "duplicate",
        ProcessStatus.SKIPPED: "skipped",
    }

    def record(self, result: ProcessResult) -> None:
        attr = self._COUNTERS[result.status]
        setattr(self, attr, getattr(self, attr) + 1)
        self.total_processed += 1

    def finish(self) -> None:
        self.ended_at = datetime.now(timezone.utc)

    @property
    def duration_minutes(self) -> float:
        end = self.ended_at or datetime.now(timezone.utc)
        return round((end - self.started_at).total_seconds() / 60, 2)

    @property
    def success_rate(self) -> int:
        if not self.total_processed:
            return 0
        return round(self.successful / self.total_processed * 100)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {name: getattr(self, name) for name in self._COUNTERS.values()}
        payload["total_processed"] = self.total_processed
        payload["started_at"] = format_instant(self.started_at)
        if self.ended_at is not None:
            payload["ended_at"] = format_instant(self.ended_at)
            payload["duration_minutes"] = self.duration_minutes
            payload["success_rate"] = self.success_rate
        return payload
