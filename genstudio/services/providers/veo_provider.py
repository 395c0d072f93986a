"""
Veo Provider - Google Veo 3 text-to-video and image-to-video.

Generated files live on generativelanguage.googleapis.com and can only be
downloaded with the API key, so downloads go through google_client.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from genstudio.services.google_client import check_google_configured, download_bytes
from genstudio.services.job_store import ErrorCode, GenerationKind
from genstudio.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    PollOutcome,
    ProviderError,
    SubmitResult,
)
from genstudio.services.veo_service import extract_video_url, veo_operation_status, veo_start_generation


class VeoProvider(GenerationProvider):
    """Google Veo 3 / 3.1 / 3 Fast."""

    name = "veo"

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return check_google_configured()

    def submit(self, request: GenerationRequest) -> SubmitResult:
        if request.kind not in (GenerationKind.TEXT_TO_VIDEO, GenerationKind.IMAGE_TO_VIDEO):
            raise ProviderError(
                f"Veo does not support {request.kind}",
                error_code=ErrorCode.INVALID_REQUEST,
                provider=self.name,
            )
        image_source = request.input_image_url if request.kind == GenerationKind.IMAGE_TO_VIDEO else None
        operation_name = veo_start_generation(
            model_id=request.provider_model_id,
            prompt=request.prompt or "",
            duration_seconds=request.duration_seconds or 6,
            aspect_ratio=request.aspect_ratio or "16:9",
            resolution=request.resolution or "720p",
            image_source=image_source,
        )
        return SubmitResult(job_handle=operation_name)

    def poll_status(self, handle: str, meta: Optional[Dict[str, Any]] = None) -> PollOutcome:
        return PollOutcome.from_status(veo_operation_status(handle))

    def extract_artifact_ref(self, response: Dict[str, Any]) -> Optional[str]:
        return extract_video_url(response)

    def download(self, url: str) -> Tuple[bytes, str]:
        return download_bytes(url, tag="Veo", provider=self.name)
