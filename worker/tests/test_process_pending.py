import json

import pytest

from placesync.core.config import ConfigError, Settings
from placesync.jobs import process_pending


class DummyStore:
    def __init__(self, settings):
        self.closed = False
        DummyStore.last = self

    def close(self):
        self.closed = True


class DummyPipeline:
    def __init__(self, settings, store, client):
        self.store = store

    def run_batch(self, options):
        return {"success": True, "message": "processed 0 records", "stats": {"max": options.max_records}, "results": []}

    def stream(self, options):
        yield {"type": "start", "data": {"max_records": options.max_records}, "timestamp": "t"}


@pytest.fixture
def wired(monkeypatch):
    settings = Settings(database_url="postgres://", outscraper_api_key="key")
    monkeypatch.setattr(process_pending, "get_settings", lambda: settings)
    monkeypatch.setattr(process_pending, "PlacesStore", DummyStore)
    monkeypatch.setattr(process_pending, "EnrichmentPipeline", DummyPipeline)
    monkeypatch.setattr(process_pending, "OutscraperClient", lambda settings: object())


def test_run_process_job_requires_configuration(monkeypatch):
    monkeypatch.setattr(process_pending, "get_settings", lambda: Settings(database_url="", outscraper_api_key=""))

    with pytest.raises(ConfigError):
        process_pending.run_process_job(max_records=1, delay_ms=0)


def test_run_process_job_returns_summary_and_closes_store(wired):
    summary = process_pending.run_process_job(max_records=4, delay_ms=0)

    assert summary["stats"] == {"max": 4}
    assert DummyStore.last.closed is True


def test_run_process_job_streams_ndjson(wired, capsys):
    result = process_pending.run_process_job(max_records=2, delay_ms=0, stream=True)

    assert result is None
    line = capsys.readouterr().out.strip()
    assert json.loads(line)["data"] == {"max_records": 2}


def test_parser_defaults_follow_settings(wired):
    args = process_pending.build_parser().parse_args(["--id", "a", "--id", "b", "--stop-on-error"])

    assert args.max_records == 50
    assert args.delay_ms == 2000
    assert args.record_ids == ["a", "b"]
    assert args.stop_on_error is True
    assert args.stream is False
