import pytest
from fastapi.testclient import TestClient

from resqueue.api.deps import get_context
from resqueue.main import app
from resqueue.services.failure import RedisFailureBackend, create_failure
from resqueue_worker.strategies import InProcessStrategy
from resqueue_worker.worker import Worker


@pytest.fixture
def client(ctx):
    app.dependency_overrides[get_context] = lambda: ctx
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


class TestJobsApi:
    def test_enqueue_and_track(self, client, ctx):
        resp = client.post("/api/v1/jobs", json={
            "queue": "mail",
            "class_name": "EmailJob",
            "args": {"to": "a@x.com"},
            "track_status": True,
        })
        assert resp.status_code == 201
        job_id = resp.json()["id"]
        assert ctx.size("mail") == 1

        resp = client.get(f"/api/v1/jobs/{job_id}/status")
        assert resp.status_code == 200
        assert resp.json()["status"] == "queued"

    def test_untracked_status_is_404(self, client):
        resp = client.post("/api/v1/jobs", json={"queue": "mail", "class_name": "EmailJob"})
        assert resp.status_code == 201
        assert client.get(f"/api/v1/jobs/{resp.json()['id']}/status").status_code == 404

    def test_sequence_args_rejected(self, client, ctx):
        resp = client.post("/api/v1/jobs", json={"queue": "mail", "class_name": "EmailJob", "args": [1, 2]})
        assert resp.status_code == 422
        assert ctx.size("mail") == 0


def test_workers_listing(client, ctx):
    worker = Worker(ctx, ["mail"], InProcessStrategy(), hostname="testhost", pid=99)
    worker.register_worker()

    resp = client.get("/api/v1/workers")

    assert resp.status_code == 200
    [info] = resp.json()
    assert info["id"] == "testhost:99:mail"
    assert info["queues"] == ["mail"]
    assert info["job"] == {}
    assert info["processed"] == 0


class TestAdminApi:
    def test_queue_sizes_and_dequeue(self, client, ctx):
        ctx.enqueue("mail", "EmailJob", {"to": "a@x.com"})
        ctx.enqueue("mail", "EmailJob", {"to": "b@x.com"})
        ctx.enqueue("reports", "ReportJob", {})

        assert client.get("/api/v1/admin/queues").json() == [
            {"queue": "mail", "size": 2},
            {"queue": "reports", "size": 1},
        ]

        resp = client.post("/api/v1/admin/queues/mail/dequeue", json={"items": [{"EmailJob": {"to": "a@x.com"}}]})
        assert resp.json() == {"queue": "mail", "removed": 1}
        assert ctx.size("mail") == 1

        resp = client.post("/api/v1/admin/queues/reports/dequeue", json={})
        assert resp.json()["removed"] == 1

    def test_failed_listing_and_trim(self, client, store):
        for i in range(3):
            create_failure(RedisFailureBackend, store, {"class": "X"}, RuntimeError(str(i)), None, "jobs")

        data = client.get("/api/v1/admin/failed", params={"count": 2}).json()
        assert data["count"] == 3
        assert [r["error"] for r in data["items"]] == ["0", "1"]
        assert client.get("/api/v1/admin/failed", params={"count": 0}).json()["items"] == []

        assert client.post("/api/v1/admin/failed/trim", json={"length": 1}).json() == {"removed": 2}
        assert RedisFailureBackend.count(store) == 1

    def test_exchanges(self, client, store):
        from resqueue.commands import exchanges

        exchanges.subscribe(store, "events", "audit")
        assert client.get("/api/v1/admin/exchanges").json() == [{"exchange": "events", "queues": ["audit"]}]


def test_metrics(client, ctx):
    ctx.enqueue("mail", "EmailJob", {})
    ctx.enqueue("mail", "EmailJob", {})

    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert 'resqueue_queue_depth{queue="mail"} 2.0' in resp.text
    assert "resqueue_workers_registered 0.0" in resp.text
