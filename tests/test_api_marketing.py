import json
import uuid

from fastapi.testclient import TestClient

from campaign_dispatch.main import app
from campaign_dispatch.models.db import JobStatus
from campaign_dispatch.services.trigger_auth import sign_request
from conftest import CRON_KEY, SEND_SECRET


def _send_headers(clock, body: bytes, *, path="/marketing/send", strategy="v1-raw"):
    ts_ms = clock.epoch_ms()
    return {
        "content-type": "application/json",
        "x-lb-ts": str(ts_ms),
        "x-lb-sig": sign_request(SEND_SECRET, method="POST", path=path, body=body, ts_ms=ts_ms, strategy=strategy),
        "x-request-id": str(uuid.uuid4()),
    }


def _campaign(**overrides) -> bytes:
    payload = {"subject": "October news", "html": "<p>Hello</p>", "materias": {"laboral": True, "fiscal": False}}
    payload.update(overrides)
    return json.dumps(payload).encode("utf-8")


def test_campaign_is_queued_then_deduplicated(client, clock, store):
    body = _campaign()
    r = client.post("/marketing/send", content=body, headers=_send_headers(clock, body))
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["ok"] is True
    assert data["scheduled"] is False
    assert data["duplicate"] is False
    queue_id = data["queueId"]

    view = store.get(queue_id)
    assert view.status == JobStatus.PENDING
    assert view.topic_filter == {"laboral": True, "fiscal": False}

    clock.advance(seconds=1)
    again = client.post("/marketing/send", content=body, headers=_send_headers(clock, body))
    assert again.status_code == 200
    assert again.json()["queueId"] == queue_id
    assert again.json()["duplicate"] is True


def test_future_campaign_is_reported_as_scheduled(client, clock, store):
    body = _campaign(scheduledAt="2026-01-06T08:00:00Z", id="tomorrow")
    r = client.post("/marketing/send", content=body, headers=_send_headers(clock, body, strategy="v2-ms"))
    assert r.status_code == 200, r.text
    assert r.json()["scheduled"] is True
    assert r.json()["queueId"] == "tomorrow"
    assert store.get("tomorrow").scheduled_at.isoformat() == "2026-01-06T08:00:00+00:00"


def test_campaign_validation_codes(client, clock):
    cases = [
        (_campaign(subject="  "), "SUBJECT_REQUIRED"),
        (_campaign(html=""), "HTML_REQUIRED"),
        (_campaign(materias={"laboral": False}), "MATERIAS_REQUIRED"),
        (_campaign(scheduledAt="next tuesday"), "BAD_SCHEDULED_AT"),
        (b"not json", "BAD_REQUEST"),
    ]
    for body, code in cases:
        r = client.post("/marketing/send", content=body, headers=_send_headers(clock, body))
        assert r.status_code == 400, (code, r.text)
        assert r.json()["ok"] is False
        assert r.json()["error"] == code


def test_test_only_campaign_needs_no_topics(client, clock):
    body = _campaign(materias={}, testOnly=True)
    r = client.post("/marketing/send", content=body, headers=_send_headers(clock, body))
    assert r.status_code == 200, r.text


def test_unsigned_campaign_is_rejected(client):
    r = client.post("/marketing/send", content=_campaign(), headers={"content-type": "application/json"})
    assert r.status_code == 401
    assert r.json() == {"ok": False, "error": "missing_headers"}


def test_cron_send_without_jobs(client, cron_headers):
    r = client.post("/marketing/cron-send", content=b"{}", headers=cron_headers())
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["ok"] is True
    assert data["processed"] == 0
    assert data["message"] == "No pending jobs"
    assert "X-Request-ID" in r.headers


def test_cron_send_rejections(client, clock, cron_headers):
    r = client.post("/marketing/cron-send", content=b"{}", headers=cron_headers(key="wrong"))
    assert r.status_code == 401
    assert r.json()["error"] == "bad_key"

    stale = cron_headers(ts_ms=clock.epoch_ms() - 400_000)
    r = client.post("/marketing/cron-send", content=b"{}", headers=stale)
    assert r.status_code == 401
    assert r.json()["error"] == "skew"

    headers = cron_headers()
    assert client.post("/marketing/cron-send", content=b"{}", headers=headers).status_code == 200
    replay = client.post("/marketing/cron-send", content=b"{}", headers=headers)
    assert replay.status_code == 401
    assert replay.json()["error"] == "replay"

    fresh_id = client.post("/marketing/cron-send", content=b"{}", headers={**headers, "x-request-id": str(uuid.uuid4())})
    assert fresh_id.status_code == 401
    assert fresh_id.json()["error"] == "replay"


def test_cron_send_route_aliases(client, cron_headers):
    r = client.post("/marketing/cron-send/", content=b"{}", headers=cron_headers())
    assert r.status_code == 200, r.text

    path = "/api/v1/marketing/cron-send"
    r = client.post(path, content=b"{}", headers=cron_headers(path))
    assert r.status_code == 200, r.text


def test_queued_campaign_is_delivered_by_next_tick(client, clock, sender, consent_factory, cron_headers, store):
    consent_factory("ana@example.com", topics={"laboral": True})
    consent_factory("bo@example.com", topics={"fiscal": True})
    body = _campaign()
    queue_id = client.post("/marketing/send", content=body, headers=_send_headers(clock, body)).json()["queueId"]

    r = client.post("/marketing/cron-send", content=b"{}", headers=cron_headers())
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["processed"] == 1
    assert data["results"][0] == {"id": queue_id, "status": "done", "sent": 1, "skipped": 0, "failed": 0, "attempts": 0}
    assert sender.recipients == ["ana@example.com"]
    assert store.get(queue_id).status == JobStatus.DONE


def test_job_status_endpoint(client, job_factory):
    job_factory("inspect", topic_filter={"fiscal": True, "laboral": False}, recipients_snapshot=["a@x.com"], progress_total=1)

    r = client.get("/marketing/jobs/inspect", headers={"x-cron-key": CRON_KEY})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["status"] == "pending"
    assert data["topics"] == ["fiscal"]
    assert data["recipients"] == 1
    assert data["progress"] == {"lastIndex": 0, "total": 1, "sent": 0, "skipped": 0, "failed": 0}
    assert "recipientsSnapshot" not in data

    assert client.get("/marketing/jobs/inspect").json() == {"ok": False, "error": "bad_key"}
    missing = client.get("/marketing/jobs/nope", headers={"x-cron-key": CRON_KEY})
    assert missing.status_code == 404
    assert missing.json()["error"] == "JOB_NOT_FOUND"


def test_runtime_not_ready_returns_503():
    r = TestClient(app).get("/marketing/jobs/any", headers={"x-cron-key": CRON_KEY})
    assert r.status_code == 503
    assert r.json()["error"] == "DISPATCH_NOT_READY"


def test_health_endpoints(client, job_factory):
    job_factory("h1")
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"

    detailed = client.get("/health/detailed").json()
    assert detailed["checks"]["database"] == "healthy"
    assert detailed["checks"]["jobs"]["pending"] == 1
    assert detailed["checks"]["jobs"]["done"] == 0
