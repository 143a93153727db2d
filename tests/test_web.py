"""Unit tests for the ClipSync web API."""

import io
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from clipsync.analyzers.dispatch import InlineStrategy, SyncDispatcher
from clipsync.models import SyncResult
from clipsync.web import create_app


@pytest.fixture
def app(tmp_path):
    app = create_app(work_dir=tmp_path, dispatcher=SyncDispatcher(InlineStrategy()))
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _upload(client, filename="test.mp4", content=b"fake video data", role="video", job_id=None):
    data = {"file": (io.BytesIO(content), filename), "role": role}
    if job_id:
        data["job_id"] = job_id
    return client.post("/api/upload", data=data, content_type="multipart/form-data")


def _job_with_both(client) -> str:
    job_id = _upload(client).get_json()["job_id"]
    _upload(client, filename="mic.wav", content=b"fake audio", role="audio", job_id=job_id)
    return job_id


class TestUpload:
    def test_upload_success(self, client):
        resp = _upload(client)
        assert resp.status_code == 200
        data = resp.get_json()
        assert "job_id" in data
        assert data["filename"] == "test.mp4"
        assert data["role"] == "video"

    def test_upload_no_file(self, client):
        resp = client.post("/api/upload")
        assert resp.status_code == 400

    def test_upload_creates_file(self, client, tmp_path):
        resp = _upload(client, content=b"CONTENT")
        job_id = resp.get_json()["job_id"]
        input_file = tmp_path / job_id / "video.mp4"
        assert input_file.exists()
        assert input_file.read_bytes() == b"CONTENT"

    def test_audio_attaches_to_job(self, client, tmp_path):
        job_id = _job_with_both(client)
        assert (tmp_path / job_id / "audio.wav").read_bytes() == b"fake audio"
        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["audio"] == "mic.wav"

    def test_audio_before_video(self, client):
        resp = _upload(client, filename="mic.wav", role="audio")
        assert resp.status_code == 400

    def test_unknown_role(self, client):
        resp = _upload(client, role="subtitle")
        assert resp.status_code == 400

    def test_unknown_job(self, client):
        resp = _upload(client, role="audio", job_id="nonexistent")
        assert resp.status_code == 404

    @patch("clipsync.web.routes.memguard.validate_file_size")
    def test_oversized_file_rejected(self, mock_validate, client):
        mock_validate.return_value = MagicMock(ok=False, error="Video file is too large", warning=None)
        resp = _upload(client)
        assert resp.status_code == 413
        assert "too large" in resp.get_json()["error"]


class TestPlan:
    def test_plan(self, client):
        resp = client.post("/api/plan", json={
            "duration": 60,
            "cuts": [{"start": 10, "end": 20}],
            "sync_offset": 2.5,
            "has_external_audio": True,
            "export": {"format": "mp4", "quality": "high", "normalize_audio": True},
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["segments"] == [{"start": 0.0, "end": 10.0}, {"start": 20.0, "end": 60.0}]
        assert "adelay=2500|2500" in data["filter_complex"]
        assert "loudnorm" in data["filter_complex"]
        assert data["args"][-1] == "output.mp4"

    def test_plan_missing_duration(self, client):
        resp = client.post("/api/plan", json={})
        assert resp.status_code == 400

    def test_plan_invalid_cut(self, client):
        resp = client.post("/api/plan", json={"duration": 60, "cuts": [{"start": 5, "end": 5}]})
        assert resp.status_code == 400
        assert "too short" in resp.get_json()["error"]

    def test_plan_everything_cut(self, client):
        resp = client.post("/api/plan", json={"duration": 60, "cuts": [{"start": 0, "end": 60}]})
        assert resp.status_code == 400

    def test_plan_rejects_string_flag(self, client):
        resp = client.post("/api/plan", json={"duration": 10, "export": {"normalize_audio": "false"}})
        assert resp.status_code == 400
        assert "must be a boolean" in resp.get_json()["error"]

    def test_plan_bad_format(self, client):
        resp = client.post("/api/plan", json={"duration": 60, "export": {"format": "avi"}})
        assert resp.status_code == 400


class TestSync:
    def test_sync_unknown_job(self, client):
        resp = client.post("/api/jobs/nonexistent/sync")
        assert resp.status_code == 404

    def test_sync_needs_audio(self, client):
        job_id = _upload(client).get_json()["job_id"]
        resp = client.post(f"/api/jobs/{job_id}/sync")
        assert resp.status_code == 400

    @patch("clipsync.web.routes.sync_files")
    def test_sync_runs_and_streams_result(self, mock_sync, client):
        mock_sync.return_value = SyncResult(offset_seconds=1.25, confidence=0.8)
        job_id = _job_with_both(client)

        resp = client.post(f"/api/jobs/{job_id}/sync", json={"max_offset": 10})
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "started"

        stream = client.get(f"/api/jobs/{job_id}/progress").get_data(as_text=True)
        assert '"offset_seconds": 1.25' in stream
        assert mock_sync.call_args.kwargs["max_offset_seconds"] == 10.0

        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "done"
        assert status["result"]["confidence"] == 0.8

    @patch("clipsync.web.routes.memguard.validate_combined")
    def test_sync_memory_limit(self, mock_validate, client):
        from clipsync.memguard import MB, MemoryLimitExceeded
        mock_validate.side_effect = MemoryLimitExceeded(300 * MB, 100 * MB, 2400.0)
        job_id = _job_with_both(client)
        resp = client.post(f"/api/jobs/{job_id}/sync")
        assert resp.status_code == 413
        assert "300.0 MB" in resp.get_json()["error"]


class TestExport:
    def test_export_unknown_job(self, client):
        resp = client.post("/api/jobs/nonexistent/export", json={})
        assert resp.status_code == 404

    def test_export_invalid_cut(self, client):
        job_id = _upload(client).get_json()["job_id"]
        resp = client.post(f"/api/jobs/{job_id}/export", json={"cuts": [{"start": 3, "end": 2}]})
        assert resp.status_code == 400

    @patch("clipsync.web.routes.process")
    def test_export_starts(self, mock_process, client):
        mock_result = MagicMock()
        mock_result.output_path = Path("/tmp/out.mp4")
        mock_result.duration_original = 60.0
        mock_result.duration_final = 50.0
        mock_result.segments_kept = 2
        mock_result.sync_offset = 1.0
        mock_process.return_value = mock_result

        job_id = _job_with_both(client)
        resp = client.post(f"/api/jobs/{job_id}/export", json={
            "cuts": [{"start": 10, "end": 20}],
            "sync_offset": 1.0,
            "export": {"format": "mp4", "quality": "low"},
        })
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "started"

        client.get(f"/api/jobs/{job_id}/progress").get_data()
        manifest = mock_process.call_args[0][0]
        assert manifest.sync.auto is False
        assert manifest.sync.offset == 1.0
        assert len(manifest.cuts) == 1
        assert manifest.output.name == "output.mp4"

    @patch("clipsync.web.routes.process", side_effect=RuntimeError("encoder exploded"))
    def test_export_error_reported(self, mock_process, client):
        job_id = _upload(client).get_json()["job_id"]
        client.post(f"/api/jobs/{job_id}/export", json={})
        stream = client.get(f"/api/jobs/{job_id}/progress").get_data(as_text=True)
        assert "encoder exploded" in stream
        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "error"


class TestStatus:
    def test_status_after_upload(self, client):
        job_id = _upload(client).get_json()["job_id"]
        resp = client.get(f"/api/jobs/{job_id}/status")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "uploaded"

    def test_status_unknown_job(self, client):
        resp = client.get("/api/jobs/nonexistent/status")
        assert resp.status_code == 404


class TestDownload:
    def test_download_not_complete(self, client):
        job_id = _upload(client).get_json()["job_id"]
        resp = client.get(f"/api/jobs/{job_id}/result")
        assert resp.status_code == 409

    def test_download_unknown_job(self, client):
        resp = client.get("/api/jobs/nonexistent/result")
        assert resp.status_code == 404
