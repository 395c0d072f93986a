"""
Generation submission.

submit() validates a client request, records an in_progress job and hands
the provider call to a supervised background task. Validation problems
(unknown model, model/kind mismatch, missing prompt or input media) raise
before any job exists.

Kind inference when the client does not name one:
    characterImage -> motion-control
    video          -> video-to-video
    image          -> image-to-image (feature "image-to-image") or image-to-video
    otherwise      -> text-to-image (feature "text-to-image") or text-to-video
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from genstudio.services.async_dispatch import dispatch_generation, submit_supervised
from genstudio.services.job_store import BaseJobStore, GenerationKind
from genstudio.services.model_registry import (
    ModelSpec,
    get_provider,
    resolve_model,
    snap_aspect_ratio,
    snap_duration,
    snap_resolution,
)
from genstudio.services.providers.base import GenerationProvider, GenerationRequest
from genstudio.utils import format_duration, parse_bool, parse_duration_seconds, parse_float

K = GenerationKind

PROMPT_REQUIRED = (K.TEXT_TO_VIDEO, K.TEXT_TO_IMAGE, K.IMAGE_TO_IMAGE, K.VIDEO_TO_VIDEO)

FEATURES = (
    "text-to-video",
    "create",
    "edit",
    "motion",
    "text-to-image",
    "image-to-image",
)


class GenerationValidationError(ValueError):
    """Client request cannot be submitted; no job was created."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)


def infer_kind(payload: Dict[str, Any]) -> str:
    explicit = payload.get("generationType") or payload.get("kind")
    if explicit:
        if explicit not in K.ALL:
            raise GenerationValidationError(
                f"Unknown generationType: {explicit!r}",
                details={"allowed": list(K.ALL)},
            )
        return explicit

    feature = payload.get("feature")
    if payload.get("characterImageUrl"):
        return K.MOTION_CONTROL
    if payload.get("inputVideoUrl"):
        return K.VIDEO_TO_VIDEO
    if payload.get("inputImageUrl"):
        return K.IMAGE_TO_IMAGE if feature == "image-to-image" else K.IMAGE_TO_VIDEO
    if feature == "text-to-image":
        return K.TEXT_TO_IMAGE
    return K.TEXT_TO_VIDEO


def infer_feature(payload: Dict[str, Any], kind: str) -> str:
    feature = payload.get("feature")
    if feature:
        return feature
    return {
        K.MOTION_CONTROL: "motion",
        K.VIDEO_TO_VIDEO: "edit",
        K.IMAGE_TO_VIDEO: "create",
        K.IMAGE_TO_IMAGE: "image-to-image",
        K.TEXT_TO_IMAGE: "text-to-image",
    }.get(kind, "text-to-video")


def _require_inputs(kind: str, payload: Dict[str, Any]) -> List[str]:
    missing = []
    if kind in PROMPT_REQUIRED and not (payload.get("prompt") or "").strip():
        missing.append("prompt")
    if kind in (K.IMAGE_TO_VIDEO, K.IMAGE_TO_IMAGE) and not payload.get("inputImageUrl"):
        missing.append("inputImageUrl")
    if kind == K.VIDEO_TO_VIDEO and not payload.get("inputVideoUrl"):
        missing.append("inputVideoUrl")
    if kind == K.MOTION_CONTROL:
        if not payload.get("characterImageUrl"):
            missing.append("characterImageUrl")
        if not payload.get("inputVideoUrl"):
            missing.append("inputVideoUrl")
    return missing


def build_request(spec: ModelSpec, kind: str, payload: Dict[str, Any]) -> GenerationRequest:
    """Snap parameters to what the model supports (never reject)."""
    is_video = kind in K.VIDEO_KINDS
    strength = parse_float(payload.get("imageStrength", payload.get("strength")))
    if strength is not None:
        strength = min(max(strength, 0.0), 1.0)
    return GenerationRequest(
        kind=kind,
        model_name=spec.name,
        provider_model_id=spec.model_id_for(kind),
        prompt=(payload.get("prompt") or "").strip() or None,
        duration_seconds=snap_duration(spec, parse_duration_seconds(payload.get("duration"))) if is_video else None,
        aspect_ratio=snap_aspect_ratio(spec, payload.get("aspectRatio")),
        resolution=snap_resolution(spec, payload.get("resolution")),
        audio_enabled=spec.supports_audio and parse_bool(payload.get("audioEnabled"), default=True),
        input_image_url=payload.get("inputImageUrl"),
        input_video_url=payload.get("inputVideoUrl"),
        character_image_url=payload.get("characterImageUrl"),
        end_frame_url=payload.get("endFrameUrl"),
        strength=strength,
        character_orientation=payload.get("characterOrientation"),
    )


def validate_submission(payload: Dict[str, Any]):
    """Resolve model and kind. Raises UnknownModelError / GenerationValidationError."""
    spec = resolve_model(payload.get("modelName"))
    kind = infer_kind(payload)
    if not spec.supports(kind):
        raise GenerationValidationError(
            f'Model "{spec.name}" does not support {kind}',
            details={"supportedFeatures": list(spec.kinds)},
        )
    missing = _require_inputs(kind, payload)
    if missing:
        raise GenerationValidationError(
            f"Missing required field(s) for {kind}: {', '.join(missing)}",
            details={"missing": missing},
        )
    return spec, kind


class GenerationService:
    def __init__(
        self,
        store: BaseJobStore,
        reconciler=None,
        provider_lookup: Callable[[str], GenerationProvider] = get_provider,
        executor=None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.provider_lookup = provider_lookup
        self.executor = executor

    def submit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        spec, kind = validate_submission(payload)
        request = build_request(spec, kind, payload)
        provider = self.provider_lookup(spec.provider)

        job = self.store.create({
            "generation_type": kind,
            "feature": infer_feature(payload, kind),
            "provider": spec.provider,
            "model_name": spec.name,
            "prompt": request.prompt,
            "duration": format_duration(request.duration_seconds) if request.duration_seconds else None,
            "aspect_ratio": request.aspect_ratio,
            "resolution": request.resolution,
            "audio_enabled": request.audio_enabled,
            "strength": request.strength,
            "input_image_url": request.input_image_url,
            "input_video_url": request.input_video_url,
            "character_image_url": request.character_image_url,
            "end_frame_url": request.end_frame_url,
            "auto_post": parse_bool(payload.get("autoPostToTiktok"), default=False),
        })
        print(f"[Generate] job={job['id']} kind={kind} model={spec.name} provider={spec.provider}")

        submit_supervised(
            dispatch_generation,
            self.store,
            provider,
            job["id"],
            request,
            self.reconciler,
            job_id=job["id"],
            label="dispatch_generation",
            executor=self.executor,
        )
        return job
