"""
Tests for VideoMergeService.
"""

from __future__ import annotations

import pytest

from genstudio.services.job_store import ArtifactState, JobStatus
from genstudio.services.media_tools import MediaToolError
from genstudio.services.video_merge_service import MERGE_MODEL_NAME, MergeError
from genstudio.tests.conftest import make_job


def _completed_video(store, url, duration="5s"):
    job = make_job(store, duration=duration)
    store.claim_completion(job["id"], video_url=url, thumbnail_url=url)
    return job["id"]


def test_merges_in_order_and_sums_durations(store, storage, merger):
    ids = [_completed_video(store, f"https://media.example.com/videos/src-{i}") for i in range(3)]

    merged = merger.merge(ids, pipeline_run_id="run-1")

    assert merged["status"] == JobStatus.COMPLETED
    assert merged["provider"] == "internal"
    assert merged["model_name"] == MERGE_MODEL_NAME
    assert merged["duration"] == "15s"
    assert merged["artifact_state"] == ArtifactState.DURABLE
    assert merged["pipeline_run_id"] == "run-1"
    assert merged["meta"]["source_job_ids"] == ids
    assert merged["thumbnail_url"] is not None

    stitched = storage.uploads[0]["data"]
    assert stitched == b"|".join(f"bytes:https://media.example.com/videos/src-{i}".encode() for i in range(3))


def test_probes_when_duration_unknown(store, merger):
    ids = [
        _completed_video(store, "https://x/a.mp4", duration=None),
        _completed_video(store, "https://x/b.mp4", duration="10s"),
    ]
    merged = merger.merge(ids)
    # fixture probe reports 5s
    assert merged["duration"] == "15s"


def test_thumbnail_falls_back_to_video(store, storage, merger):
    merger.materializer.thumbnailer = lambda data, ts: None
    ids = [_completed_video(store, "https://x/a.mp4"), _completed_video(store, "https://x/b.mp4")]

    merged = merger.merge(ids)

    assert merged["thumbnail_url"] == merged["video_url"]


class TestRejections:
    def test_needs_two_jobs(self, store, merger):
        with pytest.raises(MergeError) as exc_info:
            merger.merge([_completed_video(store, "https://x/a.mp4")])
        assert exc_info.value.status == 400

    def test_duplicates(self, store, merger):
        job_id = _completed_video(store, "https://x/a.mp4")
        with pytest.raises(MergeError):
            merger.merge([job_id, job_id])

    def test_missing_job_is_404(self, store, merger):
        job_id = _completed_video(store, "https://x/a.mp4")
        with pytest.raises(MergeError) as exc_info:
            merger.merge([job_id, "missing-id"])
        assert exc_info.value.status == 404
        assert "missing-id" in str(exc_info.value)

    def test_unfinished_source(self, store, merger):
        pending = make_job(store)
        with pytest.raises(MergeError) as exc_info:
            merger.merge([_completed_video(store, "https://x/a.mp4"), pending["id"]])
        assert pending["id"] in str(exc_info.value)

    def test_ffmpeg_failure_propagates(self, store, merger):
        def broken(videos):
            raise MediaToolError("ffmpeg not installed")

        merger.concat = broken
        ids = [_completed_video(store, "https://x/a.mp4"), _completed_video(store, "https://x/b.mp4")]
        with pytest.raises(MediaToolError):
            merger.merge(ids)
        assert len(store.list_jobs()) == 2
