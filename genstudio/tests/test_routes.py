"""
HTTP tests for the /api blueprints, run against the Flask test client
with the in-memory runtime from conftest.
"""

from __future__ import annotations

import io

from genstudio.services.job_store import ErrorCode, GenerationKind, JobStatus
from genstudio.services.providers.base import PollOutcome, SubmitResult
from genstudio.tests.conftest import FakeTimer, make_job
from genstudio.utils import encode_data_uri


class TestSubmit:
    def test_text_to_video(self, client, store, kling):
        resp = client.post("/api/generations", json={
            "modelName": "Kling 2.6",
            "prompt": "a cat surfing at sunset",
            "duration": "7s",
            "aspectRatio": "21:9",
        })

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        assert body["status"] == JobStatus.IN_PROGRESS
        assert body["data"]["generationType"] == GenerationKind.TEXT_TO_VIDEO
        assert body["data"]["duration"] == "5s"
        assert body["data"]["aspectRatio"] == "16:9"

        stored = store.get(body["jobId"])
        assert stored["provider_job_id"] == "kling-task-1"
        assert stored["meta"] == {}
        assert kling.submitted[0].duration_seconds == 5
        # Submitting arms the reconciler
        assert FakeTimer.created and FakeTimer.created[-1].started

    def test_unknown_model(self, client, store):
        resp = client.post("/api/generations", json={"modelName": "Sora 2", "prompt": "x"})
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert "Kling 2.6" in error["details"]["availableModels"]
        assert store.list_jobs() == []

    def test_unsupported_kind(self, client):
        resp = client.post("/api/generations", json={
            "modelName": "Veo 3", "prompt": "x", "feature": "text-to-image",
        })
        assert resp.status_code == 400
        assert "supportedFeatures" in resp.get_json()["error"]["details"]

    def test_missing_prompt(self, client):
        resp = client.post("/api/generations", json={"modelName": "Kling 2.6"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["details"] == {"missing": ["prompt"]}

    def test_multipart_image_upload(self, client, storage, kling):
        resp = client.post(
            "/api/generations",
            data={"modelName": "Kling 2.6", "prompt": "make it move", "image": (io.BytesIO(b"png"), "frame.png")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["data"]["generationType"] == GenerationKind.IMAGE_TO_VIDEO
        assert body["data"]["inputImageUrl"] == "https://media.example.com/uploads/1"
        assert storage.uploads[0]["provider"] == "client"
        assert kling.submitted[0].input_image_url == "https://media.example.com/uploads/1"

    def test_immediate_image(self, client, store, gemini):
        gemini.queue_submit(SubmitResult(image_url="https://gemini.example/i.png"))
        resp = client.post("/api/generations", json={
            "modelName": "Nano Banana", "prompt": "a red barn", "feature": "text-to-image",
        })
        final = store.get(resp.get_json()["jobId"])
        assert final["status"] == JobStatus.COMPLETED
        assert final["image_url"] == "https://media.example.com/images/1"

    def test_empty_provider_response_fails_job(self, client, store, kling):
        kling.queue_submit(SubmitResult())
        resp = client.post("/api/generations", json={"modelName": "Kling 2.6", "prompt": "x"})
        assert resp.status_code == 201
        final = store.get(resp.get_json()["jobId"])
        assert final["status"] == JobStatus.FAILED
        assert final["error_code"] == ErrorCode.GENERATION_FAILED

    def test_undecodable_input_fails_job(self, client, store, kling):
        kling.queue_submit(ValueError("Invalid base64 payload: Incorrect padding"))
        resp = client.post("/api/generations", json={"modelName": "Kling 2.6", "prompt": "x"})
        assert resp.status_code == 201
        final = store.get(resp.get_json()["jobId"])
        assert final["status"] == JobStatus.FAILED
        assert final["error_code"] == ErrorCode.INVALID_REQUEST
        assert final["provider_job_id"] is None


class TestRead:
    def test_get_and_404(self, client, store):
        job = make_job(store)
        resp = client.get(f"/api/generations/{job['id']}")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["id"] == job["id"]

        missing = client.get("/api/generations/nope")
        assert missing.status_code == 404
        assert missing.get_json()["error"]["code"] == "NOT_FOUND"

    def test_list_pages(self, client, store, clock):
        for _ in range(3):
            make_job(store)
            clock.advance(1)

        first = client.get("/api/generations?limit=2").get_json()
        assert len(first["data"]) == 2
        assert first["pagination"]["hasMore"] is True

        second = client.get(f"/api/generations?limit=2&cursor={first['pagination']['nextCursor']}").get_json()
        assert len(second["data"]) == 1
        assert second["pagination"] == {"limit": 2, "hasMore": False, "nextCursor": None}

    def test_list_limit_is_clamped(self, client):
        body = client.get("/api/generations?limit=500").get_json()
        assert body["pagination"]["limit"] == 100

    def test_pipeline_run(self, client, store):
        make_job(store, pipeline_run_id="run-7", stage_order=1)
        assert len(client.get("/api/generations/pipeline/run-7").get_json()["data"]) == 1
        assert client.get("/api/generations/pipeline/other").status_code == 404


class TestStatus:
    def test_check_status_completes(self, client, store, storage, kling):
        job = make_job(store)
        store.set_handle(job["id"], "task-5")
        kling.queue_poll("task-5", PollOutcome.succeeded(video_url="https://kling.example/v.mp4"))

        body = client.post(f"/api/generations/{job['id']}/check-status").get_json()

        assert body["data"]["status"] == JobStatus.COMPLETED
        assert body["data"]["videoUrl"] == "https://media.example.com/videos/1"

    def test_check_status_leaves_terminal_job(self, client, store, kling):
        job = make_job(store)
        store.set_handle(job["id"], "task-5")
        store.mark_failed(job["id"], ErrorCode.TIMEOUT, "too slow")

        body = client.post(f"/api/generations/{job['id']}/check-status").get_json()

        assert body["data"]["status"] == JobStatus.FAILED
        assert kling.polled == []

    def test_check_all_pending(self, client, store, kling):
        job = make_job(store)
        store.set_handle(job["id"], "task-5")
        resp = client.post("/api/generations/check-all-pending")
        assert resp.status_code == 202
        assert kling.polled == ["task-5"]


class TestMedia:
    def test_video_redirects(self, client, store):
        job = make_job(store)
        store.claim_completion(job["id"], video_url="https://media.example.com/videos/9")
        resp = client.get(f"/api/generations/{job['id']}/video")
        assert resp.status_code == 302
        assert resp.headers["Location"] == "https://media.example.com/videos/9"

    def test_data_uri_is_served(self, client, store):
        job = make_job(store, generation_type=GenerationKind.TEXT_TO_IMAGE)
        store.claim_completion(job["id"], image_url=encode_data_uri(b"PNGDATA", "image/png"))
        resp = client.get(f"/api/generations/{job['id']}/thumbnail")
        assert resp.status_code == 200
        assert resp.data == b"PNGDATA"
        assert resp.mimetype == "image/png"

    def test_no_media_yet(self, client, store):
        job = make_job(store)
        assert client.get(f"/api/generations/{job['id']}/video").status_code == 404


class TestDelete:
    def test_delete_removes_outputs(self, client, store, storage):
        job = make_job(store, input_image_url="https://media.example.com/uploads/1")
        store.claim_completion(job["id"], video_url="https://media.example.com/videos/1",
                               thumbnail_url="https://media.example.com/videos/1")

        body = client.delete(f"/api/generations/{job['id']}").get_json()

        assert body["success"] is True
        assert storage.deleted == ["https://media.example.com/videos/1"]
        assert store.get(job["id"]) is None

    def test_delete_missing(self, client):
        assert client.delete("/api/generations/nope").status_code == 404

    def test_bulk_delete(self, client, store):
        a, b = make_job(store), make_job(store)
        body = client.post("/api/generations/bulk-delete", json={"ids": [a["id"], b["id"], "nope"]}).get_json()
        assert body["deletedCount"] == 2

    def test_bulk_delete_validation(self, client):
        assert client.post("/api/generations/bulk-delete", json={"ids": []}).status_code == 400
        assert client.post("/api/generations/bulk-delete", json={"ids": ["nope"]}).status_code == 404


class TestMergeRoute:
    def _video(self, store, url):
        job = make_job(store)
        store.claim_completion(job["id"], video_url=url)
        return job["id"]

    def test_merge(self, client, store):
        ids = [self._video(store, f"https://media.example.com/videos/{i}") for i in range(3)]
        resp = client.post("/api/generations/merge-videos", json={"orderedJobIds": ids})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["totalDuration"] == "15s"
        assert body["data"]["thumbnailUrl"]

    def test_missing_source_is_404(self, client, store):
        ids = [self._video(store, "https://media.example.com/videos/1"), "nope"]
        resp = client.post("/api/generations/merge-videos", json={"orderedJobIds": ids})
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NOT_FOUND"

    def test_source_download_failure_is_502(self, client, store, merger):
        import requests

        def forbidden(url):
            raise requests.HTTPError("403 Client Error: Forbidden")

        merger.downloader = forbidden
        ids = [self._video(store, f"https://media.example.com/videos/{i}") for i in range(2)]
        resp = client.post("/api/generations/merge-videos", json={"orderedJobIds": ids})

        assert resp.status_code == 502
        assert resp.get_json()["error"]["code"] == "UPSTREAM_ERROR"
        assert len(store.list_jobs()) == 2

    def test_bad_body(self, client):
        assert client.post("/api/generations/merge-videos", json={"orderedJobIds": "a,b"}).status_code == 400


class TestConstructionStagesRoute:
    def test_needs_reference(self, client):
        assert client.post("/api/generations/construction-stages", json={}).status_code == 400

    def test_partial_failure_is_207(self, client, gemini):
        from genstudio.tests.conftest import provider_error

        gemini.queue_submit(provider_error("blocked", 400))
        resp = client.post("/api/generations/construction-stages", json={
            "referenceImageUrl": "https://media.example.com/uploads/house.png",
            "stageCount": 3,
        })
        assert resp.status_code == 207
        body = resp.get_json()
        assert body["success"] is False
        assert body["failedAtStage"] == 2
        assert [s["success"] for s in body["stages"]] == [True, False]

    def test_images_only_success(self, client, gemini):
        gemini.queue_submit(SubmitResult(image_url="https://gemini.example/2.png"))
        resp = client.post("/api/generations/construction-stages", json={
            "referenceImageUrl": "https://media.example.com/uploads/house.png",
            "stageCount": 2,
            "generateVideos": False,
        })
        assert resp.status_code == 200
        assert resp.get_json()["success"] is True

    def test_bad_stage_count(self, client):
        resp = client.post("/api/generations/construction-stages", json={
            "referenceImageUrl": "https://x/house.png", "stageCount": 12,
        })
        assert resp.status_code == 400


class TestMisc:
    def test_models(self, client):
        body = client.get("/api/models?category=video").get_json()
        assert body["success"] is True
        assert {m["category"] for m in body["data"]} == {"video"}

    def test_health(self, client):
        body = client.get("/api/health").get_json()
        assert body["ok"] is True

    def test_unknown_route_is_json(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NOT_FOUND"
