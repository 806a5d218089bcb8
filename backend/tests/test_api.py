"""
HTTP API tests.

The controller dependency is overridden with one backed by tmp_path and
a job manager that records spawned jobs instead of running them.
"""

import pytest
from fastapi.testclient import TestClient

from reelcutter.api.dependencies import get_controller
from reelcutter.main import app
from reelcutter.models.schemas import CaptioningStatus, ProjectStatus, Segment
from reelcutter.services.job_manager import JobManager
from reelcutter.services.pipeline.controller import PipelineController


class RecordingJobManager(JobManager):
    def __init__(self):
        super().__init__(caption_concurrency=1)
        self.spawned: list[str] = []

    def spawn(self, key, coro):
        coro.close()
        self.spawned.append(key)
        return None


@pytest.fixture
def api_controller(controller: PipelineController) -> PipelineController:
    controller.jobs = RecordingJobManager()
    return controller


@pytest.fixture
def client(api_controller: PipelineController):
    app.dependency_overrides[get_controller] = lambda: api_controller
    yield TestClient(app)
    app.dependency_overrides.clear()


def create(client: TestClient, **extra) -> str:
    response = client.post(
        "/api/projects",
        json={"video_url": "https://example.com/v", "audio_url": "https://example.com/a", **extra},
    )
    assert response.status_code == 200
    return response.json()["project_id"]


def segment_project(controller: PipelineController, project_id: str, count: int) -> None:
    paths = controller.store.paths(project_id)
    paths.segments_dir.mkdir(parents=True, exist_ok=True)
    segments = []
    for i in range(1, count + 1):
        paths.segment_path(i).write_bytes(b"segment")
        segments.append(Segment(id=i, filename=paths.segment_path(i).name, duration=60))
    controller.store.save_segments(project_id, segments)
    controller.store.set_status(project_id, ProjectStatus.SEGMENTED, segment_count=count)


class TestProjects:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_create_and_get(self, client: TestClient) -> None:
        project_id = create(client, audio_end_time="00:01:23")

        body = client.get(f"/api/projects/{project_id}").json()
        assert body["project"]["status"] == "initialized"
        assert body["project"]["audio_end_time"] == 83.0
        assert body["progress"]["main"] == 0

    def test_create_missing_url_is_400(self, client: TestClient) -> None:
        response = client.post("/api/projects", json={"video_url": "https://example.com/v"})
        assert response.status_code == 400

    def test_list(self, client: TestClient) -> None:
        first = create(client)
        second = create(client)
        ids = [p["id"] for p in client.get("/api/projects").json()]
        assert set(ids) == {first, second}

    def test_unknown_project_is_404(self, client: TestClient) -> None:
        assert client.get("/api/projects/missing").status_code == 404
        assert client.post("/api/projects/missing/process/download").status_code == 404

    def test_segments_empty_before_split(self, client: TestClient) -> None:
        project_id = create(client)
        assert client.get(f"/api/projects/{project_id}/segments").json() == []

    def test_delete(self, client: TestClient) -> None:
        project_id = create(client)
        assert client.delete(f"/api/projects/{project_id}").json()["deleted"] == [project_id]
        assert client.get(f"/api/projects/{project_id}").status_code == 404

    def test_cleanup(self, client: TestClient, api_controller: PipelineController) -> None:
        project_id = create(client)
        (api_controller.store.paths(project_id).temp_dir / "x.wav").write_bytes(b"x")

        response = client.post(f"/api/projects/{project_id}/cleanup")
        assert response.json() == {"project_id": project_id, "removed_files": 1}


class TestProcessing:
    def test_start_download(self, client: TestClient, api_controller: PipelineController) -> None:
        project_id = create(client)

        response = client.post(f"/api/projects/{project_id}/process/download")

        assert response.status_code == 200
        body = response.json()
        assert body["stage"] == "download"
        project = api_controller.get_project(project_id)
        assert project.status == ProjectStatus.DOWNLOADING
        assert project.download_process_id == body["process_id"]
        assert project.progress[body["process_id"]] == 0
        assert api_controller.jobs.spawned == [f"{project_id}:download"]

    def test_merge_precondition_is_400(self, client: TestClient, api_controller: PipelineController) -> None:
        project_id = create(client)

        response = client.post(f"/api/projects/{project_id}/process/merge")

        assert response.status_code == 400
        assert "source/video.mp4" in response.json()["detail"]
        assert api_controller.get_project(project_id).status == ProjectStatus.INITIALIZED

    def test_caption_one(self, client: TestClient, api_controller: PipelineController) -> None:
        project_id = create(client)
        segment_project(api_controller, project_id, 2)

        response = client.post(
            f"/api/projects/{project_id}/process/caption", json={"segment_number": 2}
        )

        assert response.status_code == 200
        assert response.json()["segment_id"] == 2
        segment = api_controller.store.get_segment(project_id, 2)
        assert segment.captioning_status == CaptioningStatus.IN_PROGRESS
        assert api_controller.get_project(project_id).status == ProjectStatus.CAPTIONING

    def test_caption_invalid_segment_number(self, client: TestClient, api_controller: PipelineController) -> None:
        project_id = create(client)
        segment_project(api_controller, project_id, 1)

        bad = client.post(f"/api/projects/{project_id}/process/caption", json={"segment_number": 0})
        missing = client.post(f"/api/projects/{project_id}/process/caption", json={"segment_number": 5})

        assert bad.status_code == 400
        assert missing.status_code == 404

    def test_caption_all_and_summary(self, client: TestClient, api_controller: PipelineController) -> None:
        project_id = create(client)
        segment_project(api_controller, project_id, 3)

        started = client.post(f"/api/projects/{project_id}/process/caption/all").json()
        summary = client.get(f"/api/projects/{project_id}/process/caption").json()

        assert sorted(started["process_ids"]) == ["1", "2", "3"]
        assert summary["in_progress"] == [1, 2, 3]
        assert summary["all_captioned"] is False
        assert f"{project_id}:caption-batch" in api_controller.jobs.spawned

    def test_summary_without_segments_is_400(self, client: TestClient) -> None:
        project_id = create(client)
        assert client.get(f"/api/projects/{project_id}/process/caption").status_code == 400

    def test_cancel_without_jobs(self, client: TestClient) -> None:
        project_id = create(client)
        response = client.post(f"/api/projects/{project_id}/process/split/cancel")
        assert response.json()["cancelled"] == []

    def test_unknown_stage_is_400(self, client: TestClient) -> None:
        project_id = create(client)
        assert client.post(f"/api/projects/{project_id}/process/publish/cancel").status_code == 400
