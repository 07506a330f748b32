"""Sequential enrichment of pending records.

One record at a time: lookup, map, validate, identity check, reconcile. Every
outcome is turned into a ``ProcessResult`` and the staging row is marked so a
later run does not pick it up again. Batch and streaming runs share the same
generator; batch just collects it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import psycopg2
import requests

from placesync.core.config import Settings
from placesync.core.db import PlacesStore
from placesync.core.errors import (
    IdentityMismatch,
    LookupMiss,
    PipelineError,
    StoreWriteError,
    TransportError,
    ValidationError,
)
from placesync.core.models import (
    CustomerReference,
    PendingRecord,
    ProcessResult,
    ProcessStatus,
    RunStats,
    utc_now_iso,
)
from placesync.core.reconcile import DUPLICATE, Reconciler
from placesync.etl.source import load_pending, resolve_customers
from placesync.etl.transform import map_candidate, verify_identity
from placesync.etl.validate import log_validation_result, validate_place_row
from placesync.vendors.outscraper import OutscraperClient, OutscraperError

logger = logging.getLogger(__name__)

Event = Dict[str, Any]


@dataclass
class PipelineOptions:
    max_records: int = 50
    delay_ms: int = 2000
    stop_on_error: bool = False
    record_ids: Optional[Sequence[str]] = None

    def __post_init__(self) -> None:
        if self.max_records <= 0:
            raise ValueError("max_records must be positive")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must not be negative")


def make_event(kind: str, data: Dict[str, Any]) -> Event:
    return {"type": kind, "data": data, "timestamp": utc_now_iso()}


class EnrichmentPipeline:
    def __init__(
        self,
        settings: Settings,
        store: PlacesStore,
        client: OutscraperClient,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.client = client
        self.reconciler = Reconciler(store)
        self._sleep = sleep

    # ---------- per record ----------

    def _skip_reason(self, pending: PendingRecord) -> Optional[str]:
        if pending.is_marked:
            return "staging_marker"
        try:
            completed = self.reconciler.has_completed_row(pending.external_key)
        except psycopg2.Error as exc:
            raise TransportError(f"store unreachable: {exc}", record_id=pending.id) from exc
        return "completed_in_target" if completed else None

    def _resolve_customer(self, pending: PendingRecord) -> Optional[CustomerReference]:
        """Customer for one record; a store failure marks the record and raises ``TransportError``."""
        try:
            return resolve_customers(self.store, [pending]).get(pending.id)
        except psycopg2.Error as exc:
            self.reconciler.mark_processed(pending.id)
            raise TransportError(f"customer lookup failed: {exc}", record_id=pending.id) from exc

    def _enrich(self, pending: PendingRecord, customer: Optional[CustomerReference]) -> ProcessResult:
        """Run one record through the pipeline, raising a ``PipelineError`` on any non-success."""
        source = customer or pending
        if not source.name:
            raise LookupMiss("no customer data to search with", record_id=pending.id)

        try:
            candidate = self.client.lookup_place(source.name, source.address, source.city)
        except (requests.RequestException, OutscraperError) as exc:
            raise TransportError(f"place lookup failed: {exc}", record_id=pending.id) from exc
        if candidate is None:
            raise LookupMiss("no place found", record_id=pending.id)

        row = map_candidate(candidate, pending, customer)
        validation = validate_place_row(row)
        log_validation_result(pending.id, validation, row)
        if not validation.is_valid:
            raise ValidationError(validation.errors, warnings=validation.warnings, record_id=pending.id)

        sanitized = validation.sanitized_data
        verify_identity(sanitized, pending)

        try:
            outcome = self.reconciler.reconcile(sanitized)
        except psycopg2.OperationalError as exc:
            raise TransportError(f"store unreachable: {exc}", record_id=pending.id) from exc

        if outcome.status == DUPLICATE:
            return ProcessResult(
                record_id=pending.id,
                name=source.name,
                status=ProcessStatus.DUPLICATE,
                error=outcome.detail,
                place_id=sanitized.get("place_id"),
                external_key=sanitized.get("metabase_id"),
                warnings=validation.warnings,
            )
        if not outcome.ok:
            raise StoreWriteError(outcome.detail or "store write failed", category=outcome.category or "unknown", record_id=pending.id)

        return ProcessResult(
            record_id=pending.id,
            name=source.name,
            status=ProcessStatus.SUCCESS,
            place_id=sanitized.get("place_id"),
            external_key=sanitized.get("metabase_id"),
            warnings=validation.warnings,
        )

    def process_record(self, pending: PendingRecord, customer: Optional[CustomerReference]) -> ProcessResult:
        """Produce the terminal result for one record; errors propagate as ``PipelineError``.

        Every outcome except a ``staging_marker`` skip leaves the staging row marked.
        """
        reason = None
        try:
            reason = self._skip_reason(pending)
            if reason is not None:
                logger.info("Skipping %s: %s", pending.id, reason)
                return ProcessResult(
                    record_id=pending.id,
                    name=pending.name,
                    status=ProcessStatus.SKIPPED,
                    error=reason,
                    external_key=pending.external_key,
                )
            return self._enrich(pending, customer)
        finally:
            if reason != "staging_marker":
                self.reconciler.mark_processed(pending.id)

    @staticmethod
    def _result_from_error(pending: PendingRecord, customer: Optional[CustomerReference], exc: Exception) -> ProcessResult:
        name = customer.name if customer else pending.name
        if isinstance(exc, PipelineError):
            status = ProcessStatus(exc.status)
        else:
            status = ProcessStatus.FAILED
        result = ProcessResult(
            record_id=pending.id,
            name=name,
            status=status,
            error=str(exc),
            external_key=pending.external_key,
        )
        if isinstance(exc, ValidationError):
            result.errors = exc.errors
            result.warnings = exc.warnings
        return result

    # ---------- loop ----------

    def _next_records(self, options: PipelineOptions) -> Iterator[PendingRecord]:
        if options.record_ids:
            records = load_pending(self.store, record_ids=options.record_ids)
            yield from records[: options.max_records]
            return
        while True:
            page = load_pending(self.store, limit=1, only_pending=True)
            if not page:
                return
            yield page[0]

    def iter_events(self, options: PipelineOptions) -> Iterator[Event]:
        """Yield progress events; with ``stop_on_error`` the first record error is raised."""
        stats = RunStats()
        yield make_event(
            "start",
            {
                "max_records": options.max_records,
                "delay_ms": options.delay_ms,
                "stop_on_error": options.stop_on_error,
                "record_ids": list(options.record_ids or []),
            },
        )

        records = self._next_records(options)
        pause_before_next = False
        for position in range(options.max_records):
            yield make_event("progress", {"current": position + 1, "total": options.max_records, "stats": stats.to_dict()})
            try:
                pending = next(records)
            except StopIteration:
                logger.info("No more pending records")
                break

            # only between two records, never after the last one
            if pause_before_next:
                yield make_event("delay", {"delay_ms": options.delay_ms})
                self._sleep(options.delay_ms / 1000)

            customer = None
            try:
                customer = self._resolve_customer(pending)
                yield make_event(
                    "processing",
                    {
                        "record_id": pending.id,
                        "external_key": pending.external_key,
                        "name": customer.name if customer else pending.name,
                        "address": customer.address if customer else pending.address,
                    },
                )
                result = self.process_record(pending, customer)
            except Exception as exc:  # noqa: BLE001
                result = self._result_from_error(pending, customer, exc)
                logger.warning("Record %s finished as %s: %s", pending.id, result.status.value, exc)
                stats.record(result)
                yield make_event(result.status.value, result.to_dict())
                if options.stop_on_error and result.status in (
                    ProcessStatus.FAILED,
                    ProcessStatus.VALIDATION_FAILED,
                    ProcessStatus.ID_MISMATCH,
                ):
                    raise
            else:
                stats.record(result)
                yield make_event(result.status.value, result.to_dict())

            pause_before_next = bool(options.delay_ms) and result.status is not ProcessStatus.SKIPPED

        stats.finish()
        logger.info(
            "Run complete: processed=%d success=%d failed=%d not_found=%d",
            stats.total_processed,
            stats.successful,
            stats.failed,
            stats.not_found,
        )
        yield make_event("complete", {"stats": stats.to_dict()})

    def stream(self, options: PipelineOptions) -> Iterator[Event]:
        """Like ``iter_events`` but a failure becomes a terminal ``error`` event."""
        try:
            yield from self.iter_events(options)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Streaming run aborted: %s", exc)
            yield make_event("error", {"record_id": getattr(exc, "record_id", None) or "system", "error": str(exc)})

    def run_batch(self, options: PipelineOptions) -> Dict[str, Any]:
        results: List[Dict[str, Any]] = []
        stats: Dict[str, Any] = {}
        for event in self.iter_events(options):
            kind = event["type"]
            if kind in {status.value for status in ProcessStatus}:
                results.append(event["data"])
            elif kind == "complete":
                stats = event["data"]["stats"]
        return {
            "success": True,
            "message": f"processed {stats.get('total_processed', 0)} records: "
            f"{stats.get('successful', 0)} successful, {stats.get('failed', 0)} failed",
            "stats": stats,
            "results": results,
        }
