"""
Tests for the construction-stage pipeline orchestrator.

Images come from the scripted "gemini-image" provider (immediate results),
transition videos from the scripted "kling" provider (handles that
succeed on the first poll).
"""

from __future__ import annotations

import pytest

from genstudio.services.construction_stages import TRANSITION_DURATION_SECS
from genstudio.services.generation_service import GenerationValidationError
from genstudio.services.job_store import ErrorCode, GenerationKind, JobStatus
from genstudio.services.pipeline_service import (
    INTERMEDIATE_STRENGTH,
    PipelineOptions,
    PipelineOrchestrator,
    Unit,
)
from genstudio.services.providers.base import PollOutcome, SubmitResult
from genstudio.tests.conftest import provider_error

REFERENCE = "https://media.example.com/uploads/house.png"


@pytest.fixture
def orchestrator(store, reconciler, controller, merger, providers):
    return PipelineOrchestrator(store, reconciler, controller, merger, provider_lookup=providers)


def _images(gemini, count):
    gemini.queue_submit(*[SubmitResult(image_url=f"https://gemini.example/img-{i}.png") for i in range(count)])


def _videos_succeed(kling, count):
    for i in range(1, count + 1):
        kling.queue_poll(f"kling-task-{i}", PollOutcome.succeeded(video_url=f"https://kling.example/t{i}.mp4"))


class TestOptions:
    def test_defaults(self):
        options = PipelineOptions.from_payload({}, REFERENCE)
        assert options.stage_count == 8
        assert options.model_name == "Nano Banana"
        assert options.video_model_name == "Kling 2.6"
        assert options.include_intermediates is False
        assert options.generate_videos is True

    def test_form_strings(self):
        options = PipelineOptions.from_payload(
            {"stageCount": "3", "includeIntermediates": "true", "generateVideos": "false",
             "basePromptOverride": "tiny cabin"},
            REFERENCE,
        )
        assert options.stage_count == 3
        assert options.include_intermediates is True
        assert options.generate_videos is False
        assert options.base_prompt == "tiny cabin"

    def test_bad_stage_count(self):
        with pytest.raises(GenerationValidationError):
            PipelineOptions.from_payload({"stageCount": "lots"}, REFERENCE)


class TestValidation:
    def test_image_model_needs_image_to_image(self, orchestrator):
        with pytest.raises(GenerationValidationError) as exc_info:
            orchestrator.run(PipelineOptions(REFERENCE, model_name="Veo 3"))
        assert GenerationKind.IMAGE_TO_VIDEO in exc_info.value.details["supportedFeatures"]

    def test_video_model_needs_image_to_video(self, orchestrator):
        with pytest.raises(GenerationValidationError):
            orchestrator.run(PipelineOptions(REFERENCE, video_model_name="Nano Banana"))

    @pytest.mark.parametrize("count", [1, 9])
    def test_stage_count_range(self, orchestrator, count):
        with pytest.raises(GenerationValidationError):
            orchestrator.run(PipelineOptions(REFERENCE, stage_count=count))

    def test_nothing_created_on_validation_error(self, orchestrator, store):
        with pytest.raises(GenerationValidationError):
            orchestrator.run(PipelineOptions(REFERENCE, stage_count=20))
        assert store.list_jobs() == []


class TestHappyPath:
    def test_stages_transitions_and_merge(self, orchestrator, store, gemini, kling, controller):
        _images(gemini, 2)
        _videos_succeed(kling, 2)

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=3))

        assert result.success is True
        assert result.http_status == 200
        assert [s.order for s in result.stages] == [1, 2, 3]
        assert all(s.success for s in result.stages)

        # Stage 1 is the reference itself; no provider call
        assert result.stages[0].image_url == REFERENCE
        assert len(gemini.submitted) == 2
        # Each stage is generated from the previous stage's stored output
        assert gemini.submitted[0].input_image_url == REFERENCE
        assert gemini.submitted[1].input_image_url == result.stages[1].image_url
        assert result.stages[1].image_url.startswith("https://media.example.com/images/")

        assert [t.key for t in result.transitions] == ["3-2", "2-1"]
        first = kling.submitted[0]
        assert first.input_image_url == result.stages[2].image_url
        assert first.end_frame_url == result.stages[1].image_url
        assert first.duration_seconds == TRANSITION_DURATION_SECS
        assert all(t.video_url.startswith("https://media.example.com/videos/") for t in result.transitions)

        merged = store.get(result.merged.job_id)
        assert merged["status"] == JobStatus.COMPLETED
        assert merged["duration"] == "10s"
        assert merged["thumbnail_url"]
        assert merged["pipeline_run_id"] == result.run_id

        # Slots are handed back once each transition finished
        assert controller.active_count == 0

    def test_every_job_shares_the_run_id(self, orchestrator, store, gemini, kling):
        _images(gemini, 1)
        _videos_succeed(kling, 1)
        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=2))

        jobs = store.list_by_pipeline(result.run_id)
        features = sorted(j["feature"] for j in jobs)
        assert features == ["construction-stage", "construction-stage", "construction-transition"]
        # A single transition is not stitched
        assert result.merged is None

    def test_images_only(self, orchestrator, gemini, kling):
        _images(gemini, 2)
        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=3, generate_videos=False))
        assert result.success is True
        assert result.transitions == []
        assert kling.submitted == []

    def test_to_dict(self, orchestrator, gemini):
        _images(gemini, 1)
        body = orchestrator.run(PipelineOptions(REFERENCE, stage_count=2, generate_videos=False)).to_dict()
        assert body["success"] is True
        assert body["stages"][1]["generationId"]
        assert body["stages"][1]["inputImageUrl"] == REFERENCE
        assert "failedAt" not in body


class TestIntermediates:
    def test_midpoints_from_lower_stage(self, orchestrator, gemini, kling):
        _images(gemini, 3)
        _videos_succeed(kling, 4)

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=3, include_intermediates=True))

        assert result.success is True
        assert [i.order for i in result.intermediates] == [2.5, 1.5]
        assert [i.key for i in result.intermediates] == ["3-2", "2-1"]
        # 3-2 is generated from stage 2, 2-1 from the reference
        assert gemini.submitted[2].input_image_url == result.stages[1].image_url
        assert gemini.submitted[3].input_image_url == REFERENCE
        assert gemini.submitted[2].strength == INTERMEDIATE_STRENGTH

        assert [t.key for t in result.transitions] == ["3-2.5", "2.5-2", "2-1.5", "1.5-1"]


class TestFailures:
    @pytest.mark.parametrize("stage_count", [5, 7])
    def test_stage_failure_halts(self, orchestrator, store, gemini, kling, stage_count):
        gemini.queue_submit(
            SubmitResult(image_url="https://gemini.example/2.png"),
            SubmitResult(image_url="https://gemini.example/3.png"),
            provider_error("Request blocked by safety filters", 400),
        )

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=stage_count))

        assert result.success is False
        assert result.http_status == 207
        assert [(s.order, s.success) for s in result.stages] == [(1, True), (2, True), (3, True), (4, False)]
        assert not any(s.order > 4 for s in result.stages)
        assert result.stages[3].error_code == ErrorCode.INVALID_REQUEST
        assert len(gemini.submitted) == 3
        assert result.transitions == []
        assert kling.submitted == []

        body = result.to_dict()
        assert body["failedAtStage"] == 4
        assert body["failedAt"]["unit"] == Unit.STAGE
        assert "Request blocked" in body["error"]
        assert store.get(result.stages[3].job_id)["status"] == JobStatus.FAILED
        assert len(store.list_by_pipeline(result.run_id)) == 4

    def test_undecodable_stage_input_is_reported(self, orchestrator, store, gemini):
        gemini.queue_submit(ValueError("Invalid base64 payload: Incorrect padding"))

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=3, generate_videos=False))

        assert result.http_status == 207
        failed = result.stages[1]
        assert failed.success is False
        assert failed.error_code == ErrorCode.INVALID_REQUEST
        assert store.get(failed.job_id)["status"] == JobStatus.FAILED

    def test_transition_failure_halts(self, orchestrator, gemini, kling):
        _images(gemini, 2)
        kling.queue_poll("kling-task-1", PollOutcome.succeeded(video_url="https://kling.example/t1.mp4"))
        kling.queue_poll("kling-task-2", PollOutcome.failed("Content moderation"))

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=3))

        assert result.http_status == 207
        assert [t.success for t in result.transitions] == [True, False]
        assert result.merged is None
        body = result.to_dict()
        assert body["failedAt"]["unit"] == Unit.TRANSITION
        assert body["failedAt"]["key"] == "2-1"
        assert "failedAtStage" not in body

    def test_transition_submit_error(self, orchestrator, store, gemini, kling):
        _images(gemini, 1)
        kling.queue_submit(provider_error("invalid end frame", 400))

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=2))

        assert result.success is False
        failed = result.transitions[0]
        assert failed.success is False
        assert failed.error_code == ErrorCode.INVALID_REQUEST
        assert store.get(failed.job_id)["status"] == JobStatus.FAILED

    def test_merge_failure_is_reported(self, orchestrator, merger, gemini, kling):
        from genstudio.services.media_tools import MediaToolError

        def broken_concat(videos):
            raise MediaToolError("ffmpeg concat failed")

        merger.concat = broken_concat
        _images(gemini, 2)
        _videos_succeed(kling, 2)

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=3))

        assert result.http_status == 207
        assert all(t.success for t in result.transitions)
        assert result.merged.success is False
        assert result.to_dict()["failedAt"]["unit"] == Unit.MERGE

    def test_merge_download_failure_is_reported(self, orchestrator, merger, gemini, kling):
        import requests

        def forbidden(url):
            raise requests.HTTPError("403 Client Error: Forbidden")

        merger.downloader = forbidden
        _images(gemini, 2)
        _videos_succeed(kling, 2)

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=3))

        assert result.http_status == 207
        assert [s.success for s in result.stages] == [True, True, True]
        assert all(t.success for t in result.transitions)
        assert result.merged.success is False
        assert "403" in result.merged.error
        assert result.to_dict()["failedAt"]["unit"] == Unit.MERGE

    def test_transition_with_bad_frame_data_is_reported(self, orchestrator, store, gemini, kling):
        _images(gemini, 1)
        kling.queue_submit(ValueError("Invalid base64 payload"))

        result = orchestrator.run(PipelineOptions(REFERENCE, stage_count=2))

        failed = result.transitions[0]
        assert failed.success is False
        assert failed.error_code == ErrorCode.INVALID_REQUEST
        assert store.get(failed.job_id)["status"] == JobStatus.FAILED
