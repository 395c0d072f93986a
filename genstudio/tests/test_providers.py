"""
Tests for provider error classification and the Kling helpers.
"""

from __future__ import annotations

import jwt
import pytest

from genstudio.services.job_store import ErrorCode, GenerationKind
from genstudio.services.kling_service import (
    _raise_for_body,
    build_jwt_token,
    kling_duration,
    normalize_kling_task,
)
from genstudio.services.providers.base import PollOutcome, PollState, ProviderError, classify_error
from genstudio.services.providers.kling_provider import KlingProvider, task_type_for


class TestClassifyError:
    @pytest.mark.parametrize("status,expected", [
        (429, ErrorCode.QUOTA_EXCEEDED),
        (401, ErrorCode.AUTH_ERROR),
        (403, ErrorCode.AUTH_ERROR),
        (400, ErrorCode.INVALID_REQUEST),
        (422, ErrorCode.INVALID_REQUEST),
    ])
    def test_by_status(self, status, expected):
        assert classify_error("whatever", status) == expected

    @pytest.mark.parametrize("message,expected", [
        ("RESOURCE_EXHAUSTED: quota exceeded", ErrorCode.QUOTA_EXCEEDED),
        ("HTTP 429 from upstream", ErrorCode.QUOTA_EXCEEDED),
        ("API key not valid. Please pass a valid API key.", ErrorCode.AUTH_ERROR),
        ("Read timed out", ErrorCode.TIMEOUT),
        ("Invalid aspect ratio", ErrorCode.INVALID_REQUEST),
        ("Internal error", ErrorCode.UNKNOWN_ERROR),
        ("", ErrorCode.UNKNOWN_ERROR),
    ])
    def test_by_message(self, message, expected):
        assert classify_error(message) == expected

    def test_explicit_code_wins(self):
        err = ProviderError("quota", error_code=ErrorCode.AUTH_ERROR)
        assert err.error_code == ErrorCode.AUTH_ERROR
        assert err.is_rate_limit is False

    def test_rate_limit_flag(self):
        assert ProviderError("slow down", status_code=429).is_rate_limit
        assert ProviderError("Billing quota reached").is_rate_limit
        assert not ProviderError("bad prompt", status_code=400).is_rate_limit


class TestPollOutcome:
    def test_from_status(self):
        done = PollOutcome.from_status({"status": "done", "video_url": "https://x/v.mp4"})
        assert done.state == PollState.SUCCEEDED
        assert done.video_url == "https://x/v.mp4"

        failed = PollOutcome.from_status({"status": "failed", "message": "nope"})
        assert failed.state == PollState.FAILED
        assert failed.reason == "nope"
        assert failed.error_code == ErrorCode.GENERATION_FAILED

        assert PollOutcome.from_status({"status": "processing"}).state == PollState.PENDING


class TestKling:
    def test_jwt_claims(self):
        token = build_jwt_token("ak", "sk", now=1_700_000_000)
        claims = jwt.decode(token, "sk", algorithms=["HS256"], options={"verify_exp": False, "verify_nbf": False})
        assert claims == {"iss": "ak", "exp": 1_700_001_800, "nbf": 1_699_999_995}
        assert jwt.get_unverified_header(token)["typ"] == "JWT"

    @pytest.mark.parametrize("seconds,expected", [(None, 5), (5, 5), (7, 5), (8, 10), (10, 10)])
    def test_duration(self, seconds, expected):
        assert kling_duration(seconds) == expected

    def test_normalize_video(self):
        status = normalize_kling_task({
            "task_status": "succeed",
            "task_result": {"videos": [{"url": "https://k/v.mp4", "cover_url": "https://k/c.jpg"}]},
        })
        assert status == {
            "status": "done",
            "video_url": "https://k/v.mp4",
            "image_url": None,
            "thumbnail_url": "https://k/c.jpg",
        }

    def test_normalize_image(self):
        status = normalize_kling_task({"task_status": "succeed", "task_result": {"images": [{"url": "https://k/i.png"}]}})
        assert status["image_url"] == "https://k/i.png"
        assert status["thumbnail_url"] is None

    def test_normalize_success_without_result(self):
        assert normalize_kling_task({"task_status": "succeed", "task_result": {}})["status"] == "failed"

    def test_normalize_failed_and_pending(self):
        assert normalize_kling_task({"task_status": "failed", "task_status_msg": "risk"}) == {
            "status": "failed", "message": "risk",
        }
        assert normalize_kling_task({"task_status": "processing"}) == {"status": "processing"}

    def test_business_codes(self):
        _raise_for_body({"code": 0}, 200)
        with pytest.raises(ProviderError) as exc_info:
            _raise_for_body({"code": 1102, "message": "balance not enough"}, 200)
        assert exc_info.value.error_code == ErrorCode.QUOTA_EXCEEDED
        assert exc_info.value.is_rate_limit
        with pytest.raises(ProviderError) as exc_info:
            _raise_for_body({"code": 1002, "message": "bad token"}, 401)
        assert exc_info.value.error_code == ErrorCode.AUTH_ERROR

    def test_task_types(self):
        assert task_type_for(GenerationKind.IMAGE_TO_VIDEO) == "image2video"
        assert task_type_for(GenerationKind.IMAGE_TO_IMAGE) == "image2image"
        assert task_type_for("unknown") == "text2video"

    def test_artifact_ref_from_callback(self):
        ref = KlingProvider().extract_artifact_ref(
            {"data": {"task_status": "succeed", "task_result": {"videos": [{"url": "https://k/v.mp4"}]}}}
        )
        assert ref == "https://k/v.mp4"
