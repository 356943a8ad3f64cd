"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from clop.jobs import JobManager
from clop.server import create_app


@pytest.fixture
def manager(fake_engine, settings):
    manager = JobManager(fake_engine, settings)
    yield manager
    fake_engine.release_all()
    manager.shutdown()


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as client:
        yield client


class TestRoot:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Clop Optimiser API"

    def test_tools_without_binaries(self, client):
        assert client.get("/api/tools").json() == {}

    def test_automation_disabled(self, client):
        assert client.get("/api/automation").json() == {
            "enabled": False,
            "paused": False,
            "skipped": [],
        }
        assert client.post("/api/automation/pause", json={"paused": True}).status_code == 404


class TestSubmit:

    def test_submit_and_get(self, client, make_file):
        path = make_file("shot.png")

        response = client.post("/api/jobs/", json={"path": str(path)})

        assert response.status_code == 202
        job_id = response.json()["job_id"]
        job = client.get(f"/api/jobs/{job_id}").json()
        assert job["state"] == "running"
        assert job["source_path"] == str(path.resolve())
        assert job["media_type"] == "image"

    def test_missing_file_is_bad_request(self, client, tmp_path):
        response = client.post("/api/jobs/", json={"path": str(tmp_path / "nope.png")})
        assert response.status_code == 400
        assert client.get("/api/jobs/").json() == []

    def test_invalid_downscale_factor(self, client, make_file):
        response = client.post("/api/jobs/", json={"path": str(make_file()), "downscale_factor": 2})
        assert response.status_code == 422

    def test_clipboard_upload(self, client, fake_engine, manager):
        fake_engine.auto_release = True

        response = client.post(
            "/api/jobs/clipboard",
            files={"file": ("paste.png", b"\x89PNG" * 50, "image/png")},
            data={"aggressive": "true"},
        )

        assert response.status_code == 202
        record = manager.wait(response.json()["job_id"], timeout=5)
        assert record.source.kind.value == "clipboard"
        assert record.options.aggressive is True

    def test_empty_clipboard_upload(self, client):
        response = client.post(
            "/api/jobs/clipboard",
            files={"file": ("paste.png", b"", "image/png")},
        )
        assert response.status_code == 400


class TestJobLifecycle:

    def test_unknown_job(self, client):
        assert client.get("/api/jobs/missing").status_code == 404
        assert client.post("/api/jobs/missing/cancel").status_code == 404
        assert client.delete("/api/jobs/missing").status_code == 404
        assert client.post("/api/jobs/missing/restore-original").status_code == 404

    def test_cannot_remove_running_job(self, client, make_file):
        job_id = client.post("/api/jobs/", json={"path": str(make_file())}).json()["job_id"]
        assert client.delete(f"/api/jobs/{job_id}").status_code == 409

    def test_cancel_queued_job(self, client, make_file):
        for name in ("a.png", "b.png"):
            client.post("/api/jobs/", json={"path": str(make_file(name))})
        job_id = client.post("/api/jobs/", json={"path": str(make_file("c.png"))}).json()["job_id"]

        response = client.post(f"/api/jobs/{job_id}/cancel")

        assert response.status_code == 202
        assert response.json()["state"] == "cancelled"

    def test_restore_original_remove_and_restore_last(self, client, fake_engine, manager, make_file):
        fake_engine.auto_release = True
        path = make_file("shot.png", b"z" * 100)
        job_id = client.post("/api/jobs/", json={"path": str(path)}).json()["job_id"]
        manager.wait(job_id, timeout=5)

        done = client.get(f"/api/jobs/{job_id}").json()
        assert done["state"] == "succeeded"
        assert done["is_original"] is False
        assert done["saved_bytes"] == 50

        restored = client.post(f"/api/jobs/{job_id}/restore-original")
        assert restored.status_code == 200
        assert restored.json()["is_original"] is True
        assert path.read_bytes() == b"z" * 100
        assert client.post(f"/api/jobs/{job_id}/restore-original").status_code == 409

        assert client.delete(f"/api/jobs/{job_id}").status_code == 200
        assert client.get("/api/jobs/removed").json() == {"can_restore_last": True, "depth": 1}

        assert client.post("/api/jobs/restore-last").json()["job"]["id"] == job_id
        assert client.post("/api/jobs/restore-last").json() == {"job": None}

    def test_list_filters_by_state(self, client, fake_engine, manager, make_file):
        fake_engine.errors["bad.png"] = RuntimeError("codec crashed")
        fake_engine.auto_release = True
        for name in ("good.png", "bad.png"):
            client.post("/api/jobs/", json={"path": str(make_file(name))})
        assert manager.wait_all(timeout=5)

        failed = client.get("/api/jobs/", params={"state": "failed"}).json()

        assert [job["error"] for job in failed] == ["codec crashed"]
        assert len(client.get("/api/jobs/").json()) == 2
