"""
Tests for the rate-limited submission controller.
"""

from __future__ import annotations

import pytest

from genstudio.services.job_store import ErrorCode, GenerationKind
from genstudio.services.providers.base import GenerationRequest, PollOutcome, ProviderError, SubmitResult
from genstudio.services.submission_controller import SlotWaitTimeout, SubmissionController
from genstudio.tests.conftest import RecordingSleep, make_job, provider_error


def _request() -> GenerationRequest:
    return GenerationRequest(
        kind=GenerationKind.IMAGE_TO_VIDEO,
        model_name="Kling 2.6",
        provider_model_id="kling-v2-6",
        prompt="walls rise",
        duration_seconds=5,
        input_image_url="https://x/a.png",
        end_frame_url="https://x/b.png",
    )


def _fill(controller, store):
    jobs = []
    for _ in range(2):
        job = make_job(store)
        controller.submit("kling", _request(), job_id=job["id"])
        jobs.append(job)
    return jobs


class TestSlots:
    def test_registers_handles(self, controller, store, kling):
        _fill(controller, store)
        assert controller.active_count == 2
        assert controller.active_handles() == ["kling-task-1", "kling-task-2"]
        assert len(kling.submitted) == 2

    def test_release(self, controller, store):
        _fill(controller, store)
        controller.release("kling-task-1")
        controller.release("not-there")
        assert controller.active_handles() == ["kling-task-2"]

    def test_evicts_finished_job_without_waiting(self, controller, store, sleeper):
        jobs = _fill(controller, store)
        store.claim_completion(jobs[0]["id"], video_url="https://x/v.mp4")

        result = controller.submit("kling", _request(), job_id=make_job(store)["id"])

        assert result.job_handle == "kling-task-3"
        assert sleeper.calls == []
        assert controller.active_handles() == ["kling-task-2", "kling-task-3"]

    def test_provider_reported_terminal_is_evicted(self, controller, store, kling):
        _fill(controller, store)
        kling.queue_poll("kling-task-2", PollOutcome.failed("quota"))
        controller.submit("kling", _request())
        assert "kling-task-2" not in controller.active_handles()

    def test_status_check_error_keeps_slot(self, controller, store, kling):
        _fill(controller, store)
        kling.queue_poll("kling-task-1", provider_error("HTTP 500", 500))
        assert controller.evict_terminal() == 0
        assert controller.active_count == 2

    def test_blocks_at_capacity_with_growing_waits(self, controller, store, sleeper):
        """2/2 active: the third submit waits 5s, 7.5s, then proceeds once a job finishes."""
        jobs = _fill(controller, store)

        def finish_on_second_wait(seconds):
            if len(sleeper.calls) == 2:
                store.mark_failed(jobs[1]["id"], ErrorCode.GENERATION_FAILED, "done")

        sleeper.on_sleep = finish_on_second_wait
        result = controller.submit("kling", _request())

        assert sleeper.calls == [5.0, 7.5]
        assert result.job_handle == "kling-task-3"
        assert controller.active_count == 2

    def test_gives_up_after_max_wait(self, providers, store):
        sleeper = RecordingSleep()
        controller = SubmissionController(
            provider_lookup=providers, store=store, max_active=2, sleep=sleeper,
            jitter=lambda: 0.0, spacing_secs=0, wait_max_secs=20,
        )
        _fill(controller, store)

        with pytest.raises(SlotWaitTimeout) as exc_info:
            controller.submit("kling", _request())

        assert exc_info.value.error_code == ErrorCode.TIMEOUT
        assert sleeper.calls == [5.0, 7.5, 11.25]

    def test_wait_is_capped(self, providers, store):
        sleeper = RecordingSleep()
        controller = SubmissionController(
            provider_lookup=providers, store=store, max_active=1, sleep=sleeper,
            jitter=lambda: 0.0, spacing_secs=0, wait_max_secs=120,
        )
        controller.submit("kling", _request(), job_id=make_job(store)["id"])
        with pytest.raises(SlotWaitTimeout):
            controller.submit("kling", _request())
        assert max(sleeper.calls) == 30.0


class TestRetries:
    def test_rate_limit_is_retried_with_backoff(self, controller, kling, sleeper):
        kling.queue_submit(
            provider_error("Too many requests", 429),
            provider_error("quota exceeded"),
            SubmitResult(job_handle="task-ok"),
        )
        result = controller.submit("kling", _request())
        assert result.job_handle == "task-ok"
        assert sleeper.calls == [5.0, 10.0]

    def test_other_errors_fail_immediately(self, controller, kling, sleeper):
        kling.queue_submit(provider_error("invalid image", 400))
        with pytest.raises(ProviderError) as exc_info:
            controller.submit("kling", _request())
        assert exc_info.value.error_code == ErrorCode.INVALID_REQUEST
        assert sleeper.calls == []
        assert controller.active_count == 0

    def test_retries_are_bounded(self, providers, kling):
        sleeper = RecordingSleep()
        controller = SubmissionController(
            provider_lookup=providers, max_active=2, sleep=sleeper, jitter=lambda: 0.0,
            spacing_secs=0, rate_limit_retries=2,
        )
        kling.queue_submit(*[provider_error("rate limit", 429) for _ in range(3)])
        with pytest.raises(ProviderError) as exc_info:
            controller.submit("kling", _request())
        assert exc_info.value.is_rate_limit
        assert sleeper.calls == [5.0, 10.0]

    def test_backoff_has_jitter_and_cap(self, providers):
        controller = SubmissionController(provider_lookup=providers, jitter=lambda: 0.5)
        assert controller.backoff_delay(0) == 5.5
        assert controller.backoff_delay(1) == 10.5
        assert controller.backoff_delay(6) == 60.0


class TestSpacing:
    def test_waits_between_submissions(self, providers):
        sleeper = RecordingSleep()
        controller = SubmissionController(
            provider_lookup=providers, max_active=5, clock=lambda: 100.0, sleep=sleeper,
            jitter=lambda: 0.0, spacing_secs=2.0,
        )
        controller.submit("kling", _request())
        assert sleeper.calls == []
        controller.submit("kling", _request())
        assert sleeper.calls == [2.0]
