import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest
import requests

from catalog import backend as catalog_backend
from catalog.persistence import InMemoryPersistence, JsonlPersistence
from catalog.security import redact_sensitive
from catalog.snapshot import AiGateChoice, EvidenceClass


SNAPSHOT_PAYLOAD = {
    "version": "2026-10-01",
    "tags": [
        {"tagKey": "sea", "displayName": "Sea", "evidenceClass": "OFFICIAL"},
        {"tagKey": "cat", "displayName": "Cat", "evidenceClass": "DERIVED", "rank": "b"},
        {"tagKey": "robot", "displayName": "Robo", "evidenceClass": "STRUCTURAL"},
    ],
    "items": [
        {
            "itemId": "w1",
            "title": "Moon Harbor",
            "author": "Aki",
            "popularityBase": 2.0,
            "classification": "hand",
            "tags": [{"tagKey": "sea"}, {"tagKey": "cat", "derivedConfidence": 0.8}],
        },
        {
            "itemId": "w2",
            "title": "Iron Garden",
            "author": "Dee",
            "classification": "AI",
            "tags": {"robot": None, "cat": 0.2},
        },
    ],
}


class _CatalogHandler(BaseHTTPRequestHandler):
    response_payload = {}
    captured = {}

    def do_GET(self):
        self.__class__.captured = {"path": self.path, "headers": dict(self.headers)}
        payload = json.dumps(self.__class__.response_payload).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, *args, **kwargs):
        return


def _serve_once(response_payload):
    _CatalogHandler.response_payload = response_payload
    _CatalogHandler.captured = {}
    server = HTTPServer(("127.0.0.1", 0), _CatalogHandler)
    thread = threading.Thread(target=server.handle_request)
    thread.daemon = True
    thread.start()
    return server, thread, f"http://127.0.0.1:{server.server_port}/snapshot"


def test_parse_snapshot_reads_camel_case_payload():
    snapshot = catalog_backend.parse_snapshot(SNAPSHOT_PAYLOAD)

    assert snapshot.version == "2026-10-01"
    assert snapshot.item("w1").popularity_base == 2.0
    assert snapshot.item("w1").classification == "HAND"
    assert snapshot.tag("cat").evidence_class is EvidenceClass.DERIVED
    assert snapshot.tag("cat").rank == "B"
    assert snapshot.item("w2").tags == {"robot": None, "cat": 0.2}


def test_derived_tags_are_binarized_by_threshold():
    snapshot = catalog_backend.parse_snapshot(SNAPSHOT_PAYLOAD)
    assert snapshot.carrier_index(0.5)["cat"] == frozenset({"w1"})
    assert snapshot.carrier_index(0.1)["cat"] == frozenset({"w1", "w2"})
    assert snapshot.carrier_index(0.5)["robot"] == frozenset({"w2"})


def test_candidate_pool_uses_popularity_prior_and_gate():
    snapshot = catalog_backend.parse_snapshot(SNAPSHOT_PAYLOAD)
    pool = snapshot.load_candidate_pool(AiGateChoice.DONT_CARE, alpha=0.5)
    assert pool["w1"] > pool["w2"]
    assert set(snapshot.load_candidate_pool("AI", alpha=0.5)) == {"w2"}

    bumped = snapshot.with_play_bonuses({"w2": 10.0})
    assert bumped.item("w2").popularity == pytest.approx(10.0)
    assert snapshot.item("w2").popularity == 0.0


def test_malformed_payloads_raise_value_error():
    with pytest.raises(ValueError):
        catalog_backend.parse_snapshot({"items": []})
    with pytest.raises(ValueError):
        catalog_backend.parse_snapshot({"items": [{"itemId": "x", "tags": ["nope"]}], "tags": []})


def test_load_snapshot_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(SNAPSHOT_PAYLOAD), encoding="utf-8")
    snapshot = catalog_backend.load_snapshot_file(str(path))
    assert len(snapshot) == 2


def test_fetch_snapshot_from_local_server(monkeypatch):
    server, thread, url = _serve_once(SNAPSHOT_PAYLOAD)
    monkeypatch.setattr(catalog_backend, "CATALOG_API_KEY", "test_mocked_secret")

    snapshot = catalog_backend.fetch_snapshot(url)

    thread.join(timeout=2)
    server.server_close()

    assert len(snapshot) == 2
    assert _CatalogHandler.captured["path"] == "/snapshot"
    assert _CatalogHandler.captured["headers"].get("Authorization") == "Bearer test_mocked_secret"


def test_fetch_snapshot_retries_after_rate_limit(monkeypatch):
    rate_limited = requests.Response()
    rate_limited.status_code = 429
    rate_limited.headers["Retry-After"] = "0"

    ok = requests.Response()
    ok.status_code = 200
    ok._content = json.dumps(SNAPSHOT_PAYLOAD).encode("utf-8")

    responses = [rate_limited, ok]
    sleeps = []
    monkeypatch.setattr(catalog_backend.requests, "get", lambda *args, **kwargs: responses.pop(0))
    monkeypatch.setattr(catalog_backend.time, "sleep", lambda seconds: sleeps.append(seconds))
    monkeypatch.setattr(catalog_backend, "CATALOG_MAX_RETRIES", 2)

    snapshot = catalog_backend.fetch_snapshot("http://catalog.invalid/snapshot")

    assert len(snapshot) == 2
    assert sleeps == [0.0]


def test_fetch_snapshot_raises_after_last_attempt(monkeypatch):
    def _refuse(*args, **kwargs):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(catalog_backend.requests, "get", _refuse)
    monkeypatch.setattr(catalog_backend.time, "sleep", lambda *_: None)
    monkeypatch.setattr(catalog_backend, "CATALOG_MAX_RETRIES", 2)

    with pytest.raises(requests.exceptions.ConnectionError):
        catalog_backend.fetch_snapshot("http://catalog.invalid/snapshot")


def test_fake_backend_serves_queue():
    fake = catalog_backend.FakeCatalogBackend([RuntimeError("down"), SNAPSHOT_PAYLOAD])
    with pytest.raises(RuntimeError):
        fake.fetch()
    assert len(fake.fetch()) == 2
    assert fake.calls == 2


def test_persistence_backends(tmp_path):
    memory = InMemoryPersistence()
    memory.bump_popularity("w1", 1.0)
    memory.bump_popularity("w1", 0.5)
    memory.record_session_outcome("s1", {"outcome": "SUCCESS"})
    assert memory.bonuses["w1"] == pytest.approx(1.5)
    assert memory.outcomes == [{"session_id": "s1", "outcome": "SUCCESS"}]

    log = JsonlPersistence(str(tmp_path / "out" / "outcomes.jsonl"))
    log.bump_popularity("w1", 1.0)
    log.record_session_outcome("s1", {"outcome": "FAIL_LIST"})
    log.bump_popularity("w1", 2.0)
    assert log.load_bonuses() == {"w1": 3.0}


def test_redact_sensitive_masks_credentials():
    assert "secret123" not in redact_sensitive("https://host/snap?api_key=secret123&x=1")
    assert "abcdef123" not in redact_sensitive("Authorization: Bearer abcdef123")


def test_candidate_pool_prior_survives_huge_popularity():
    payload = dict(SNAPSHOT_PAYLOAD, items=[dict(SNAPSHOT_PAYLOAD["items"][0], popularityBase=20000.0),
                                           SNAPSHOT_PAYLOAD["items"][1]])
    snapshot = catalog_backend.parse_snapshot(payload)
    pool = snapshot.load_candidate_pool(AiGateChoice.DONT_CARE, alpha=1.0)
    assert pool["w1"] == 1.0
    assert pool["w2"] == 0.0
    assert snapshot.load_candidate_pool("HAND", alpha=1.0) == {"w1": 1.0}
