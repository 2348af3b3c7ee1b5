# mypy: ignore-errors

from fastapi.testclient import TestClient


class TestJobsApi:
    def _enqueue(self, client: TestClient, **body) -> dict:
        body.setdefault("type", "health_check")
        response = client.post("/v1/jobs", json=body)
        assert response.status_code == 200, response.text
        return response.json()

    def test_enqueue_and_get(self, client: TestClient):
        created = self._enqueue(client, payload={"stuck_after_seconds": 120}, delay_seconds=30)
        assert created["created"] is True

        response = client.get(f"/v1/jobs/{created['id']}")
        assert response.status_code == 200
        job = response.json()
        assert job["status"] == "pending"
        assert job["type"] == "health_check"
        assert job["payload"] == {"stuck_after_seconds": 120}
        assert job["run_after"] >= job["created_at"] + 30
        assert job["attempts"] == 0
        assert "lease_token" not in job

    def test_enqueue_with_dedupe_key_returns_existing(self, client: TestClient):
        first = self._enqueue(client, dedupe_key="nightly")
        second = self._enqueue(client, dedupe_key="nightly")
        assert second == {"id": first["id"], "created": False, "merged": False}

        merged = self._enqueue(client, dedupe_key="nightly", payload={"stuck_after_seconds": 10}, on_duplicate="merge")
        assert merged["merged"] is True
        assert client.get(f"/v1/jobs/{first['id']}").json()["payload"] == {"stuck_after_seconds": 10}

    def test_enqueue_rejects_unknown_type(self, client: TestClient):
        response = client.post("/v1/jobs", json={"type": "mine_bitcoin"})
        assert response.status_code == 422

    def test_enqueue_rejects_invalid_payload(self, client: TestClient):
        response = client.post("/v1/jobs", json={"type": "transcribe", "payload": {}})
        assert response.status_code == 400
        assert "Invalid payload for transcribe" in response.json()["detail"]
        assert client.get("/v1/jobs").json()["metrics"]["total"] == 0

    def test_get_missing_job(self, client: TestClient):
        response = client.get("/v1/jobs/9999")
        assert response.status_code == 404
        assert response.json()["detail"] == "Job not found"

    def test_list_jobs_with_metrics(self, client: TestClient, set_job_fields):
        ids = [self._enqueue(client)["id"] for _ in range(3)]
        set_job_fields(ids[0], status="failed", completed_at=1, error="boom")
        set_job_fields(ids[1], status="completed", completed_at=1)

        body = client.get("/v1/jobs").json()
        assert body["object"] == "list"
        assert [job["id"] for job in body["data"]] == list(reversed(ids))
        assert body["metrics"] == {"pending": 1, "processing": 0, "completed": 1, "failed": 1, "total": 3}
        assert body["has_more"] is False

        failed = client.get("/v1/jobs", params={"status": "failed"}).json()
        assert [job["id"] for job in failed["data"]] == [ids[0]]
        assert failed["metrics"]["total"] == 3

        limited = client.get("/v1/jobs", params={"limit": 2}).json()
        assert len(limited["data"]) == 2
        assert limited["has_more"] is True

        exact = client.get("/v1/jobs", params={"limit": 3}).json()
        assert len(exact["data"]) == 3
        assert exact["has_more"] is False

    def test_enqueue_uses_configured_max_attempts(self, client: TestClient, settings):
        client.app.state.settings = settings.model_copy(update={"default_max_attempts": 5})

        created = self._enqueue(client)
        assert client.get(f"/v1/jobs/{created['id']}").json()["max_attempts"] == 5

        explicit = self._enqueue(client, type="collect_metrics", max_attempts=2)
        assert client.get(f"/v1/jobs/{explicit['id']}").json()["max_attempts"] == 2

    def test_list_jobs_filters_by_type(self, client: TestClient):
        self._enqueue(client)
        self._enqueue(client, type="collect_metrics")
        body = client.get("/v1/jobs", params={"type": "collect_metrics"}).json()
        assert [job["type"] for job in body["data"]] == ["collect_metrics"]

    def test_list_jobs_rejects_bad_filters(self, client: TestClient):
        assert client.get("/v1/jobs", params={"limit": 501}).status_code == 422
        assert client.get("/v1/jobs", params={"limit": 0}).status_code == 422
        assert client.get("/v1/jobs", params={"status": "sleeping"}).status_code == 422


class TestRetryJob:
    def _failed_job(self, client: TestClient, set_job_fields, **body) -> int:
        body.setdefault("type", "health_check")
        job_id = client.post("/v1/jobs", json=body).json()["id"]
        set_job_fields(job_id, status="failed", attempts=3, error="boom", started_at=10, completed_at=20)
        return job_id

    def test_retry_failed_job(self, client: TestClient, set_job_fields):
        job_id = self._failed_job(client, set_job_fields)

        response = client.post(f"/v1/jobs/{job_id}/retry")
        assert response.status_code == 200
        job = response.json()
        assert job["status"] == "pending"
        assert job["attempts"] == 0
        assert job["error"] is None
        assert job["started_at"] is None
        assert job["completed_at"] is None
        assert job["run_after"] > 20

    def test_retry_pending_job_makes_it_due_now(self, client: TestClient):
        job_id = client.post("/v1/jobs", json={"type": "health_check", "delay_seconds": 3600}).json()["id"]
        due = client.get(f"/v1/jobs/{job_id}").json()["run_after"]

        job = client.post(f"/v1/jobs/{job_id}/retry").json()
        assert job["status"] == "pending"
        assert job["run_after"] < due

    def test_retry_completed_job_is_rejected(self, client: TestClient, set_job_fields, read_job):
        job_id = client.post("/v1/jobs", json={"type": "health_check"}).json()["id"]
        set_job_fields(job_id, status="completed", started_at=10, completed_at=20, result={"score": 100})

        response = client.post(f"/v1/jobs/{job_id}/retry")
        assert response.status_code == 400
        assert "only failed or pending jobs can be retried" in response.json()["detail"]
        job = read_job(job_id)
        assert job.status == "completed"
        assert job.completed_at == 20
        assert job.result == {"score": 100}

    def test_retry_processing_job_is_rejected(self, client: TestClient, set_job_fields):
        job_id = client.post("/v1/jobs", json={"type": "health_check"}).json()["id"]
        set_job_fields(job_id, status="processing", started_at=10, lease_token="t", lease_expires_at=99)

        response = client.post(f"/v1/jobs/{job_id}/retry")
        assert response.status_code == 400
        assert "in status 'processing'" in response.json()["detail"]

    def test_retry_missing_job(self, client: TestClient):
        assert client.post("/v1/jobs/424242/retry").status_code == 404

    def test_retry_conflicts_with_active_dedupe_holder(self, client: TestClient, set_job_fields):
        job_id = self._failed_job(client, set_job_fields, dedupe_key="sync_connector:c1")
        holder = client.post("/v1/jobs", json={"type": "health_check", "dedupe_key": "sync_connector:c1"}).json()
        assert holder["created"] is True

        response = client.post(f"/v1/jobs/{job_id}/retry")
        assert response.status_code == 409
        assert str(holder["id"]) in response.json()["detail"]
        assert client.get(f"/v1/jobs/{job_id}").json()["status"] == "failed"


def test_health_endpoint(client: TestClient):
    assert client.get("/health").json() == {"status": "ok"}
