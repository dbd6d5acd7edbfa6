from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from pipeline_daemon.jobs.models import JobStatus, ProjectStatus
from pipeline_daemon.main import create_app


def _client(settings, api, generators):
    app = create_app(settings, api=api, generators=generators, verify_workspaces=False)
    return TestClient(app)


def test_health_and_scheduler_endpoints(settings, api, generators):
    with _client(settings, api, generators) as client:
        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "healthy"
        assert client.get("/api/v1/health").json()["scheduler_running"] is True

        status = client.get("/api/v1/scheduler")
        assert status.status_code == 200
        body = status.json()
        assert body["max_concurrency"] == 2
        assert body["daemon_id"] == settings.daemon_id

        missing = client.get("/api/v1/scheduler/in-flight/nope")
        assert missing.status_code == 404


def test_startup_leaves_running_jobs_alone(settings, api, generators):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    stale = api.add_job(
        "p1",
        "metadata",
        JobStatus.RUNNING,
        updated_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )

    with _client(settings, api, generators):
        pass

    # Long-running jobs may belong to another live daemon.
    assert api.jobs[stale.id].status == JobStatus.RUNNING
    assert not any(job_id == stale.id for job_id, _ in api.job_status_calls)
