"""
Tests for webhook parsing and the /api/webhooks receiver.
"""

from __future__ import annotations

import pytest

from genstudio.services.job_store import ArtifactState, ErrorCode, JobStatus
from genstudio.services.providers.base import PollState
from genstudio.services.webhook_service import WebhookPayloadError, describe_notice, parse_webhook_payload
from genstudio.tests.conftest import make_job


class TestParseWebhookPayload:
    def test_flat_success(self):
        notice = parse_webhook_payload({
            "generation_id": "task-1",
            "status": "succeed",
            "video_url": "https://cdn.example/v.mp4",
            "thumbnail_url": "https://cdn.example/t.jpg",
        })
        assert notice.handle == "task-1"
        assert notice.outcome.state == PollState.SUCCEEDED
        assert notice.outcome.video_url == "https://cdn.example/v.mp4"
        assert notice.outcome.thumbnail_url == "https://cdn.example/t.jpg"

    def test_alternate_field_names(self):
        notice = parse_webhook_payload({
            "providerJobHandle": "task-2",
            "status": "completed",
            "artifactUrl": "https://cdn.example/i.png",
            "thumbnailUrl": "https://cdn.example/t.jpg",
        })
        assert notice.handle == "task-2"
        assert notice.outcome.image_url == "https://cdn.example/i.png"

    def test_failed(self):
        notice = parse_webhook_payload({"task_id": "task-3", "status": "failed", "error": "NSFW content"})
        assert notice.outcome.state == PollState.FAILED
        assert notice.outcome.reason == "NSFW content"
        assert notice.outcome.error_code == ErrorCode.GENERATION_FAILED

    @pytest.mark.parametrize("status", ["processing", "submitted"])
    def test_pending(self, status):
        assert parse_webhook_payload({"task_id": "t", "status": status}).outcome.state == PollState.PENDING

    def test_completed_without_artifact_is_pending(self):
        notice = parse_webhook_payload({"task_id": "t", "status": "completed"})
        assert notice.outcome.state == PollState.PENDING

    def test_kling_native_body(self):
        notice = parse_webhook_payload({
            "task_id": "kling-1",
            "task_status": "succeed",
            "task_result": {"videos": [{"url": "https://kling.example/v.mp4"}]},
        })
        assert notice.outcome.state == PollState.SUCCEEDED
        assert notice.outcome.video_url == "https://kling.example/v.mp4"

    def test_missing_handle(self):
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload({"status": "completed"})

    def test_unknown_status(self):
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload({"task_id": "t", "status": "exploded"})

    def test_not_an_object(self):
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload(["task_id"])

    def test_describe_notice_hides_urls(self):
        notice = parse_webhook_payload({"task_id": "t", "status": "succeeded", "video_url": "https://x/v.mp4"})
        summary = describe_notice(notice)
        assert summary == {"handle": "t", "state": PollState.SUCCEEDED, "has_artifact": True, "reason": None}


class TestWebhookRoute:
    def test_unknown_handle_is_404(self, client):
        resp = client.post("/api/webhooks/kling", json={"generation_id": "nope", "status": "completed",
                                                        "video_url": "https://x/v.mp4"})
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Generation not found"}

    def test_bad_payload_is_400(self, client):
        resp = client.post("/api/webhooks/kling", json={"status": "completed"})
        assert resp.status_code == 400

    def test_completes_and_acks(self, client, store, storage):
        job = make_job(store)
        store.set_handle(job["id"], "task-9")

        resp = client.post("/api/webhooks/kling", json={
            "generation_id": "task-9",
            "status": "succeeded",
            "video_url": "https://kling.example/v.mp4",
        })

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["ack"] is True
        assert body["success"] is True
        final = store.get(job["id"])
        assert final["status"] == JobStatus.COMPLETED
        assert final["artifact_state"] == ArtifactState.DURABLE

    def test_duplicate_delivery_keeps_first_result(self, client, store):
        job = make_job(store)
        store.set_handle(job["id"], "task-9")
        payload = {"generation_id": "task-9", "status": "succeeded", "video_url": "https://kling.example/a.mp4"}

        client.post("/api/webhooks/kling", json=payload)
        first_url = store.get(job["id"])["video_url"]
        resp = client.post("/api/webhooks/kling", json={**payload, "video_url": "https://kling.example/b.mp4"})

        assert resp.status_code == 200
        assert resp.get_json()["result"] == "skipped"
        assert store.get(job["id"])["video_url"] == first_url

    def test_upload_failure_keeps_transient_url(self, client, store, storage):
        storage.fail = True
        job = make_job(store)
        store.set_handle(job["id"], "task-9")

        resp = client.post("/api/webhooks/veo", json={
            "generation_id": "task-9",
            "status": "completed",
            "video_url": "https://kling.example/v.mp4",
        })

        assert resp.status_code == 200
        final = store.get(job["id"])
        assert final["status"] == JobStatus.COMPLETED
        assert final["video_url"] == "https://kling.example/v.mp4"
        assert final["artifact_state"] == ArtifactState.TRANSIENT

    def test_failure_notice(self, client, store):
        job = make_job(store)
        store.set_handle(job["id"], "task-9")
        client.post("/api/webhooks/kling", json={"generation_id": "task-9", "status": "failed", "error": "blocked"})
        final = store.get(job["id"])
        assert final["status"] == JobStatus.FAILED
        assert final["error_message"] == "blocked"
