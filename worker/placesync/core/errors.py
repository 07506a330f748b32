"""Exceptions raised while enriching a pending record.

Each class maps onto one ``ProcessStatus`` so the orchestrating loop can turn
whatever escaped a record into a reportable result.
"""

from typing import List, Optional


class PipelineError(RuntimeError):
    """Base class for per-record failures."""

    status = "failed"

    def __init__(self, message: str, *, record_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class LookupMiss(PipelineError):
    """The place search returned no candidate."""

    status = "not_found"


class ValidationError(PipelineError):
    """A mapped row failed one or more required, range or type checks."""

    status = "validation_failed"

    def __init__(
        self,
        errors: List[str],
        *,
        warnings: Optional[List[str]] = None,
        record_id: Optional[str] = None,
    ) -> None:
        super().__init__("; ".join(errors) or "validation failed", record_id=record_id)
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class IdentityMismatch(PipelineError):
    """The mapped external key does not belong to the record being processed."""

    status = "id_mismatch"

    def __init__(self, expected: Optional[str], found: Optional[str], *, record_id: Optional[str] = None) -> None:
        super().__init__(f"external key mismatch: expected {expected}, found {found}", record_id=record_id)
        self.expected = expected
        self.found = found


class StoreWriteError(PipelineError):
    """The target store rejected an insert or update."""

    def __init__(self, message: str, *, category: str = "unknown", record_id: Optional[str] = None) -> None:
        super().__init__(message, record_id=record_id)
        self.category = category


class TransportError(PipelineError):
    """Network or timeout failure talking to the source, the search API or the store."""
