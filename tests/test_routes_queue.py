from __future__ import annotations

from fastapi.testclient import TestClient

from taskrelay.server import create_app
from tests._helpers.fakes import TEST_API_KEY, FakeStore

AUTH = {"X-API-Key": TEST_API_KEY}


def _client(store: FakeStore | None = None) -> tuple[TestClient, FakeStore]:
    st = store or FakeStore()
    return TestClient(create_app(store=st)), st


def test_health_is_public() -> None:
    c, _ = _client()
    with c:
        r = c.get("/health")
        assert r.status_code == 200
        assert r.json() == {"ok": True}
        assert r.headers.get("x-request-id")


def test_api_requires_key() -> None:
    c, _ = _client()
    with c:
        assert c.get("/api/queue").status_code == 401
        assert c.get("/api/queue", headers={"X-API-Key": "wrong"}).status_code == 401
        assert c.get("/api/queue", headers=AUTH).status_code == 200


def test_unconfigured_key_rejects_everything(monkeypatch) -> None:
    from taskrelay.config import get_settings

    monkeypatch.delenv("QUEUE_API_KEY", raising=False)
    get_settings.cache_clear()
    c, _ = _client()
    with c:
        assert c.get("/api/queue", headers=AUTH).status_code == 401


def test_repeated_auth_failures_are_rate_limited() -> None:
    c, _ = _client()
    with c:
        codes = [c.get("/api/queue", headers={"X-API-Key": "nope"}).status_code for _ in range(12)]
        assert codes[0] == 401
        assert codes[-1] == 429


def test_full_task_flow() -> None:
    c, _ = _client()
    with c:
        r = c.post(
            "/api/queue",
            headers=AUTH,
            json={"id": "job-1", "content": "2+2", "priority": "high", "metadata": {"k": "v"}},
        )
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["success"] is True
        assert body["accepted"] is True
        assert body["receipt"]["id"] == "job-1"
        assert body["receipt"]["status"] == "accepted"

        r = c.get("/api/queue", headers=AUTH)
        assert r.json() == {"pending": ["job-1"], "count": 1}

        r = c.get("/api/queue/job-1", headers=AUTH)
        assert r.status_code == 200
        assert r.json()["priority"] == "high"

        r = c.post("/api/queue/claim", headers=AUTH, json={"workerId": "w1", "leaseDurationSec": 60})
        claim = r.json()
        assert claim["success"] is True
        assert claim["task_id"] == "job-1"
        assert claim["lease"]["worker_id"] == "w1"

        r = c.post("/api/queue/claim", headers=AUTH, json={"worker_id": "w2"})
        assert r.json() == {"success": False, "message": "No tasks available or all tasks are leased"}

        r = c.post("/api/queue/job-1/renew", headers=AUTH, json={"worker_id": "w1", "extend_sec": 120})
        assert r.status_code == 200
        assert r.json()["lease"]["renewed_at"]

        r = c.post("/api/queue/job-1/status", headers=AUTH, json={"status": "in_progress"})
        assert r.json() == {"success": True, "status": "in_progress"}

        assert c.get("/api/result/job-1", headers=AUTH).status_code == 404

        r = c.post("/api/result/job-1", headers=AUTH, json={"success": True, "output": "4"})
        assert r.json() == {"success": True}

        r = c.get("/api/result/job-1", headers=AUTH)
        assert r.status_code == 200
        res = r.json()
        assert res["status"] == "completed"
        assert res["output"] == "4"
        assert c.get("/api/queue/job-1", headers=AUTH).status_code == 404
        assert c.get("/api/queue", headers=AUTH).json()["count"] == 0


def test_enqueue_validation_errors() -> None:
    c, _ = _client()
    with c:
        r = c.post("/api/queue", headers=AUTH, json={"id": "bad id", "content": "x"})
        assert r.status_code == 422
        assert r.json()["detail"][0]["loc"] == ["id"]

        r = c.post("/api/queue", headers={**AUTH, "Content-Type": "application/json"}, content=b"{not json")
        assert r.status_code == 400


def test_enqueue_store_failure_is_503() -> None:
    c, store = _client()
    with c:
        store.fail.add("put")
        r = c.post("/api/queue", headers=AUTH, json={"id": "a", "content": "x"})
        assert r.status_code == 503


def test_degraded_webhook_delivery_is_502(monkeypatch) -> None:
    import urllib.error

    from taskrelay.config import get_settings
    from taskrelay.delivery import http_delivery

    def refuse(url, body, *, headers, timeout_sec):
        raise urllib.error.URLError(ConnectionRefusedError("refused"))

    monkeypatch.setenv("DELIVERY_MODE", "webhook")
    monkeypatch.setenv("WEBHOOK_URL", "http://hook.invalid/in")
    monkeypatch.setenv("DELIVERY_RETRIES", "0")
    monkeypatch.setattr(http_delivery, "_post_json", refuse)
    get_settings.cache_clear()

    c, _ = _client()
    with c:
        r = c.post("/api/queue", headers=AUTH, json={"id": "a", "content": "x"})
        assert r.status_code == 502
        body = r.json()
        assert body["success"] is False
        assert body["degraded"] is True
        assert body["failure"] == "http_error"
        assert body["receipt"]["status"] == "degraded"


def test_release_and_renew_errors() -> None:
    c, _ = _client()
    with c:
        c.post("/api/queue", headers=AUTH, json={"id": "a", "content": "x"})
        c.post("/api/queue/claim", headers=AUTH, json={"worker_id": "w1"})

        r = c.post("/api/queue/a/release", headers=AUTH, json={"worker_id": "w2"})
        assert r.status_code == 403
        r = c.post("/api/queue/a/renew", headers=AUTH, json={"worker_id": "w2"})
        assert r.status_code == 403
        r = c.post("/api/queue/a/renew", headers=AUTH, json={})
        assert r.status_code == 422
        r = c.post("/api/queue/a/renew", headers=AUTH, json={"worker_id": "w1", "extend_sec": 100000})
        assert r.status_code == 422

        r = c.post("/api/queue/a/release", headers=AUTH, json={"worker_id": "w1", "reason": "done early"})
        assert r.json() == {"success": True}
        r = c.post("/api/queue/a/release", headers=AUTH, json={"worker_id": "w1"})
        assert r.json() == {"success": True, "message": "No active lease"}

        r = c.post("/api/queue/missing/renew", headers=AUTH, json={"worker_id": "w1"})
        assert r.status_code == 404
        r = c.post("/api/queue/missing/status", headers=AUTH, json={"status": "x"})
        assert r.status_code == 404
        r = c.post("/api/queue/a/status", headers=AUTH, json={})
        assert r.status_code == 422


def test_result_validation() -> None:
    c, _ = _client()
    with c:
        r = c.post("/api/result/a", headers=AUTH, json={"success": "yes"})
        assert r.status_code == 422
        r = c.post("/api/result/a", headers=AUTH, json={"success": False, "error": 5})
        assert r.status_code == 422
        r = c.post("/api/result/a", headers=AUTH, json={"success": False, "error": "boom"})
        assert r.status_code == 200
        res = c.get("/api/result/a", headers=AUTH).json()
        assert res["status"] == "failed"
        assert res["message"] == "Task failed"
        assert res["error"] == "boom"


def test_cancel() -> None:
    c, _ = _client()
    with c:
        c.post("/api/queue", headers=AUTH, json={"id": "a", "content": "x"})
        assert c.delete("/api/queue/a", headers=AUTH).json() == {"success": True, "existed": True}
        assert c.delete("/api/queue/a", headers=AUTH).json() == {"success": True, "existed": False}


def test_readyz_and_metrics() -> None:
    c, store = _client()
    with c:
        assert c.get("/readyz").status_code == 200
        r = c.get("/metrics")
        assert r.status_code == 200
        assert "taskrelay_claims_total" in r.text
        store.fail.add("get")
        assert c.get("/readyz").status_code == 503
