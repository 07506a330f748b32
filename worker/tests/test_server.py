import json

import pytest

from placesync.core.config import Settings
from placesync.jobs import server
from placesync.vendors.outscraper import OutscraperError


class DummyStore:
    def __init__(self):
        self.deleted = []

    def fetch_pending(self, limit=None, only_pending=True):
        return [
            {"id": 1, "metabase_id": 101, "name": "Bar Pepe", "place_id": None},
            {"id": 2, "metabase_id": None, "name": "Sin cliente", "place_id": None},
        ]

    def fetch_customers_by_ids(self, ids):
        return [{"id": 101, "name": "Bar Pepe", "address": "Calle Mayor 1", "city": "Madrid"}]

    def search_customers_by_names(self, names):
        return []

    def delete_pending(self, ids):
        self.deleted.extend(ids)
        return len(ids)

    def table_stats(self):
        return {
            "google_maps_pending": {"count": 2, "last_updated": "2024-05-01T08:00:00.000Z"},
            "metabase_customers": {"count": 1, "last_updated": None},
            "google_maps": {"count": 0, "last_updated": None},
        }


class DummyPipeline:
    def __init__(self, error=None):
        self.error = error
        self.options = None

    def run_batch(self, options):
        self.options = options
        if self.error is not None:
            raise self.error
        return {"success": True, "message": "processed 0 records", "stats": {}, "results": []}

    def stream(self, options):
        self.options = options
        yield {"type": "start", "data": {}, "timestamp": "t"}
        yield {"type": "complete", "data": {"stats": {}}, "timestamp": "t"}


@pytest.fixture(autouse=True)
def wiring(monkeypatch):
    store = DummyStore()
    pipeline = DummyPipeline()
    settings = Settings(
        database_url="postgres://",
        outscraper_api_key="key",
        metabase_url="https://metabase.example.com",
        metabase_api_key="mb",
    )
    monkeypatch.setattr(server, "get_settings", lambda: settings)
    monkeypatch.setattr(server, "_get_store", lambda: store)
    monkeypatch.setattr(server, "_build_pipeline", lambda: pipeline)
    return {"store": store, "pipeline": pipeline}


def test_health_endpoint():
    client = server.app.test_client()
    response = client.get("/healthz")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["outscraper_configured"] is True


def test_process_validates_payload():
    client = server.app.test_client()

    assert client.post("/process", json={"maxRecords": "bad"}).status_code == 400
    assert client.post("/process", json={"maxRecords": 0}).status_code == 400
    assert client.post("/process", json={"delayMs": -5}).status_code == 400
    assert client.post("/process", json={"recordIds": "1"}).status_code == 400


def test_process_passes_options(wiring):
    client = server.app.test_client()

    response = client.post("/process", json={"maxRecords": 3, "delayMs": 0, "stopOnError": True, "recordIds": [1, 2]})

    assert response.status_code == 200
    assert response.get_json()["success"] is True
    options = wiring["pipeline"].options
    assert options.max_records == 3
    assert options.delay_ms == 0
    assert options.stop_on_error is True
    assert options.record_ids == ["1", "2"]


def test_process_uses_configured_defaults(wiring):
    client = server.app.test_client()

    client.post("/process")

    assert wiring["pipeline"].options.max_records == 50
    assert wiring["pipeline"].options.delay_ms == 2000


def test_process_reports_failures(wiring):
    wiring["pipeline"].error = RuntimeError("boom")
    client = server.app.test_client()

    response = client.post("/process", json={})

    assert response.status_code == 500
    assert response.get_json() == {"success": False, "error": "boom"}


def test_process_stream_emits_ndjson():
    client = server.app.test_client()

    response = client.post("/process/stream", json={"maxRecords": 1})

    assert response.status_code == 200
    assert response.mimetype == "application/x-ndjson"
    events = [json.loads(line) for line in response.get_data(as_text=True).splitlines()]
    assert [event["type"] for event in events] == ["start", "complete"]


def test_pending_lists_customer_data():
    client = server.app.test_client()

    response = client.get("/pending?limit=10")

    body = response.get_json()
    assert response.status_code == 200
    assert body["stats"] == {"total": 2, "with_customer_data": 1, "without_customer_data": 1}
    assert body["data"][0]["customer_data"]["city"] == "Madrid"
    assert client.get("/pending?limit=x").status_code == 400


def test_stats_reports_every_table():
    client = server.app.test_client()

    response = client.get("/stats")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert set(data) == {"google_maps_pending", "metabase_customers", "google_maps"}
    assert data["google_maps_pending"] == {"count": 2, "last_updated": "2024-05-01T08:00:00.000Z"}
    assert data["google_maps"]["last_updated"] is None


def test_lookup(monkeypatch):
    class DummyClient:
        def __init__(self, settings):
            pass

        def lookup_place(self, name, address, city):
            if name == "Broken":
                raise OutscraperError("quota exceeded")
            return {"name": name, "place_id": "ChIJ1"}

    monkeypatch.setattr(server, "OutscraperClient", DummyClient)
    client = server.app.test_client()

    assert client.post("/lookup", json={"name": "Bar Pepe"}).status_code == 400
    response = client.post("/lookup", json={"name": "Bar Pepe", "address": "Calle Mayor 1", "city": "Madrid"})
    assert response.get_json()["data"]["found"] is True
    failed = client.post("/lookup", json={"name": "Broken", "address": "Calle Mayor 1", "city": "Madrid"})
    assert failed.status_code == 502


def test_cleanup_deletes_requested_ids(wiring):
    client = server.app.test_client()

    response = client.post("/pending/cleanup", json={"recordIds": ["1", "2"]})

    assert response.get_json()["data"] == {"cleaned": 2, "requested": 2}
    assert wiring["store"].deleted == ["1", "2"]
    assert client.post("/pending/cleanup", json={"recordIds": "1"}).status_code == 400


def test_sync_customers_route(monkeypatch):
    calls = {}

    def fake_sync(settings, store, client, *, card_id, limit):
        calls.update(card_id=card_id, limit=limit)
        return {"success": True, "inserted": 1}

    monkeypatch.setattr(server, "sync_customers", fake_sync)
    client = server.app.test_client()

    response = client.post("/sync/customers", json={"cardId": 12})

    assert response.status_code == 200
    assert response.get_json()["data"]["inserted"] == 1
    assert calls == {"card_id": 12, "limit": 2000}
    assert client.post("/sync/customers", json={"limit": "lots"}).status_code == 400
