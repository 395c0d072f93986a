"""
Kling Provider - adapts kling_service to the GenerationProvider contract.

Every Kling kind is long-running: submit returns a task id and the task
type is stored on the job (meta.task_type) because the status URL
depends on it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from genstudio.services.job_store import GenerationKind
from genstudio.services.kling_service import (
    check_kling_configured,
    kling_generate_image,
    kling_image_to_video,
    kling_motion_control,
    kling_task_status,
    kling_text_to_video,
    kling_video_to_video,
    normalize_kling_task,
)
from genstudio.services.providers.base import GenerationProvider, GenerationRequest, PollOutcome, SubmitResult

_TASK_TYPES = {
    GenerationKind.TEXT_TO_VIDEO: "text2video",
    GenerationKind.IMAGE_TO_VIDEO: "image2video",
    GenerationKind.VIDEO_TO_VIDEO: "video2video",
    GenerationKind.MOTION_CONTROL: "motion-control",
    GenerationKind.TEXT_TO_IMAGE: "text2image",
    GenerationKind.IMAGE_TO_IMAGE: "image2image",
}


def task_type_for(kind: str) -> str:
    return _TASK_TYPES.get(kind, "text2video")


class KlingProvider(GenerationProvider):
    """Kling AI video and image generation."""

    name = "kling"

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return check_kling_configured()

    def submit(self, request: GenerationRequest) -> SubmitResult:
        kind = request.kind
        task_type = task_type_for(kind)

        if kind == GenerationKind.MOTION_CONTROL:
            handle = kling_motion_control(
                video_url=request.input_video_url,
                character_image_url=request.character_image_url,
                prompt=request.prompt,
                resolution=request.resolution,
                character_orientation=request.character_orientation,
            )
        elif kind == GenerationKind.VIDEO_TO_VIDEO:
            handle = kling_video_to_video(
                request.provider_model_id,
                request.input_video_url,
                request.prompt,
                request.duration_seconds,
                request.aspect_ratio,
                request.audio_enabled,
            )
        elif kind == GenerationKind.IMAGE_TO_VIDEO:
            handle = kling_image_to_video(
                request.provider_model_id,
                request.input_image_url,
                request.prompt,
                request.duration_seconds,
                request.aspect_ratio,
                request.audio_enabled,
                end_image_source=request.end_frame_url,
            )
        elif kind in GenerationKind.IMAGE_KINDS:
            handle = kling_generate_image(
                request.provider_model_id,
                request.prompt,
                request.aspect_ratio,
                image_source=request.input_image_url if kind == GenerationKind.IMAGE_TO_IMAGE else None,
                strength=request.strength,
            )
        else:
            handle = kling_text_to_video(
                request.provider_model_id,
                request.prompt,
                request.duration_seconds,
                request.aspect_ratio,
                request.audio_enabled,
            )

        return SubmitResult(job_handle=handle, meta={"task_type": task_type})

    def poll_status(self, handle: str, meta: Optional[Dict[str, Any]] = None) -> PollOutcome:
        task_type = (meta or {}).get("task_type") or "text2video"
        return PollOutcome.from_status(kling_task_status(handle, task_type))

    def extract_artifact_ref(self, response: Dict[str, Any]) -> Optional[str]:
        data = response.get("data") if isinstance(response.get("data"), dict) else response
        status = normalize_kling_task(data)
        return status.get("video_url") or status.get("image_url")
