"""HTTP entrypoint that triggers enrichment runs and customer syncs."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import requests
from flask import Flask, Response, jsonify, request

from placesync.core.config import get_settings
from placesync.core.db import PlacesStore
from placesync.core.pipeline import EnrichmentPipeline, PipelineOptions
from placesync.core.reconcile import cleanup_processed
from placesync.etl.source import load_pending, resolve_customers
from placesync.jobs.sync_customers import sync_customers
from placesync.vendors.metabase import MetabaseClient, MetabaseError
from placesync.vendors.outscraper import OutscraperClient, OutscraperError

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & shared store ----------
app = Flask(__name__)
_store: Optional[PlacesStore] = None


def _get_store() -> PlacesStore:
    global _store
    if _store is None:
        _store = PlacesStore(get_settings())
    return _store


def _build_pipeline() -> EnrichmentPipeline:
    settings = get_settings()
    return EnrichmentPipeline(settings, _get_store(), OutscraperClient(settings))


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _int_field(payload: Dict[str, Any], key: str, default: int, *, minimum: int = 0) -> int:
    raw = payload.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise ValueError(f"{key} must be numeric")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be numeric") from exc
    if value < minimum:
        raise ValueError(f"{key} must be at least {minimum}")
    return value


def _options_from(payload: Dict[str, Any]) -> PipelineOptions:
    settings = get_settings()
    record_ids = payload.get("recordIds")
    if record_ids is not None and not isinstance(record_ids, list):
        raise ValueError("recordIds must be a list")
    return PipelineOptions(
        max_records=_int_field(payload, "maxRecords", settings.max_records, minimum=1),
        delay_ms=_int_field(payload, "delayMs", settings.delay_ms),
        stop_on_error=bool(payload.get("stopOnError", False)),
        record_ids=[str(i) for i in record_ids] if record_ids else None,
    )


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never touches the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "outscraper_configured": bool(settings.outscraper_api_key),
                "metabase_configured": bool(settings.metabase_url and settings.metabase_api_key),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.get("/pending")
def list_pending() -> Any:
    """Pending records with their resolved customer, plus simple counts."""
    try:
        limit = _int_field(request.args, "limit", 0)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    only_pending = request.args.get("onlyPending", "true").lower() == "true"

    store = _get_store()
    records = load_pending(store, limit=limit or None, only_pending=only_pending)
    customers = resolve_customers(store, records)

    data = []
    for record in records:
        customer = customers.get(record.id)
        data.append(
            {
                "id": record.id,
                "metabase_id": record.external_key,
                "name": record.name,
                "place_id": record.enrichment_marker,
                "customer_data": None
                if customer is None
                else {"id": customer.id, "name": customer.name, "address": customer.address, "city": customer.city},
            }
        )
    stats = {
        "total": len(data),
        "with_customer_data": sum(1 for item in data if item["customer_data"]),
        "without_customer_data": sum(1 for item in data if not item["customer_data"]),
    }
    return jsonify({"data": data, "stats": stats}), 200


@app.get("/stats")
def table_stats() -> Any:
    """Row counts and latest ``updated_at`` for the staging, customer and place tables."""
    return jsonify({"data": _get_store().table_stats()}), 200


@app.post("/process")
def process_batch() -> Any:
    """Process pending records and return one summary.

    JSON fields (all optional): maxRecords, delayMs, stopOnError, recordIds.
    """
    try:
        options = _options_from(_payload())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    try:
        summary = _build_pipeline().run_batch(options)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Batch run failed: %s", exc)
        return jsonify({"success": False, "error": str(exc)}), 500
    return jsonify(summary), 200


@app.post("/process/stream")
def process_stream() -> Any:
    """Same as /process but emits newline-delimited JSON events while it runs."""
    try:
        options = _options_from(_payload())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    pipeline = _build_pipeline()

    def generate():
        for event in pipeline.stream(options):
            yield json.dumps(event, default=str) + "\n"

    return Response(generate(), mimetype="application/x-ndjson", headers={"Cache-Control": "no-cache"})


@app.post("/lookup")
def lookup_place() -> Any:
    """Try a single place search without touching the store."""
    payload = _payload()
    missing = [f for f in ("name", "address", "city") if not payload.get(f)]
    if missing:
        return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

    client = OutscraperClient(get_settings())
    try:
        result = client.lookup_place(payload["name"], payload["address"], payload["city"])
    except (OutscraperError, requests.RequestException) as exc:
        logger.warning("Lookup failed: %s", exc)
        return jsonify({"error": str(exc)}), 502
    return jsonify({"data": {"found": result is not None, "result": result}}), 200


@app.post("/pending/cleanup")
def cleanup_pending() -> Any:
    """Delete processed staging rows by id."""
    record_ids = _payload().get("recordIds") or []
    if not isinstance(record_ids, list):
        return jsonify({"error": "recordIds must be a list"}), 400
    removed = cleanup_processed(_get_store(), record_ids) if record_ids else 0
    return jsonify({"data": {"cleaned": removed, "requested": len(record_ids)}}), 200


@app.post("/sync/customers")
def sync_metabase_customers() -> Any:
    """Pull the configured Metabase card into metabase_customers."""
    settings = get_settings()
    payload = _payload()
    try:
        card_id = _int_field(payload, "cardId", settings.metabase_card_id, minimum=1)
        limit = _int_field(payload, "limit", settings.metabase_row_limit, minimum=1)
        client = MetabaseClient(settings)
    except (ValueError, MetabaseError) as exc:
        return jsonify({"error": str(exc)}), 400

    try:
        summary = sync_customers(settings, _get_store(), client, card_id=card_id, limit=limit)
    except (MetabaseError, ValueError, requests.RequestException) as exc:
        logger.error("Customer sync failed: %s", exc)
        return jsonify({"success": False, "error": str(exc)}), 502
    return jsonify({"data": summary}), 200


def main() -> None:
    """Bind on $PORT when the platform injects it, else on the configured worker port."""
    env_port = os.getenv("PORT")
    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
