"""
Construction-stage pipeline.

Flow for one run (all jobs share a pipeline_run_id):
1. Stage 1: the reference image is recorded as a completed job, no provider call
2. Stages 2..N: image-to-image, strictly serial, each from the previous output
3. Optional intermediates: one image per adjacent stage pair at the midpoint
   order, generated from the lower-order stage image
4. Transition videos between every adjacent image (highest order first),
   5s start-frame -> end-frame, submitted through the SubmissionController
5. Stitch the transitions in order into one durable video

The first failure halts the run. The result lists every unit that
succeeded plus the one that failed; nothing after it is attempted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from genstudio.services.async_dispatch import dispatch_generation
from genstudio.services.construction_stages import (
    TRANSITION_DURATION_SECS,
    ConstructionStage,
    TransitionPlan,
    build_stage_prompt,
    get_all_stages,
    get_intermediate_prompt,
    midpoint,
    pair_key,
    plan_transitions,
)
from genstudio.services.job_store import BaseJobStore, ErrorCode, GenerationKind, JobStatus
from genstudio.services.model_registry import ModelSpec, get_provider, resolve_model, snap_aspect_ratio
from genstudio.services.providers.base import GenerationProvider, GenerationRequest, ProviderError
from genstudio.services.generation_service import GenerationValidationError
from genstudio.services.media_tools import MediaToolError
from genstudio.services.storage_service import StorageUnavailableError
from genstudio.utils import format_duration, parse_bool

K = GenerationKind

INTERMEDIATE_STRENGTH = 0.35


class Unit:
    STAGE = "stage"
    INTERMEDIATE = "intermediate"
    TRANSITION = "transition"
    MERGE = "merge"


@dataclass
class UnitResult:
    unit: str
    key: str
    order: Optional[float]
    success: bool
    job_id: Optional[str] = None
    title: Optional[str] = None
    prompt: Optional[str] = None
    input_url: Optional[str] = None
    end_frame_url: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit,
            "key": self.key,
            "order": self.order,
            "success": self.success,
            "generationId": self.job_id,
            "title": self.title,
            "prompt": self.prompt,
            "inputImageUrl": self.input_url,
            "endFrameUrl": self.end_frame_url,
            "imageUrl": self.image_url,
            "videoUrl": self.video_url,
            "thumbnailUrl": self.thumbnail_url,
            "error": self.error,
            "errorCode": self.error_code,
        }


@dataclass
class PipelineOptions:
    reference_image_url: str
    model_name: str = "Nano Banana"
    video_model_name: str = "Kling 2.6"
    aspect_ratio: str = "16:9"
    base_prompt: Optional[str] = None
    stage_count: int = 8
    include_intermediates: bool = False
    generate_videos: bool = True
    stitch: bool = True

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], reference_image_url: str) -> "PipelineOptions":
        try:
            stage_count = int(payload.get("stageCount") or 8)
        except (TypeError, ValueError):
            raise GenerationValidationError("stageCount must be an integer")

        return cls(
            reference_image_url=reference_image_url,
            model_name=payload.get("modelName") or "Nano Banana",
            video_model_name=payload.get("videoModelName") or "Kling 2.6",
            aspect_ratio=payload.get("aspectRatio") or "16:9",
            base_prompt=payload.get("basePromptOverride") or payload.get("basePrompt"),
            stage_count=stage_count,
            include_intermediates=parse_bool(payload.get("includeIntermediates"), default=False),
            generate_videos=parse_bool(payload.get("generateVideos"), default=True),
            stitch=parse_bool(payload.get("stitch"), default=True),
        )


@dataclass
class PipelineResult:
    run_id: str
    stages: List[UnitResult] = field(default_factory=list)
    intermediates: List[UnitResult] = field(default_factory=list)
    transitions: List[UnitResult] = field(default_factory=list)
    merged: Optional[UnitResult] = None
    failed: Optional[UnitResult] = None

    @property
    def success(self) -> bool:
        return self.failed is None

    @property
    def http_status(self) -> int:
        return 200 if self.success else 207

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "pipelineRunId": self.run_id,
            "stages": [s.to_dict() for s in self.stages],
            "intermediates": [s.to_dict() for s in self.intermediates],
            "transitions": [s.to_dict() for s in self.transitions],
            "merged": self.merged.to_dict() if self.merged else None,
        }
        if self.success:
            body["message"] = "All construction stages generated successfully"
            return body

        f = self.failed
        body["message"] = f"Generation stopped at {f.unit} {f.key}. Completed units are listed."
        body["failedAt"] = {"unit": f.unit, "key": f.key, "order": f.order, "error": f.error}
        if f.unit == Unit.STAGE:
            body["failedAtStage"] = f.order
        body["error"] = f.error
        return body


class PipelineOrchestrator:
    def __init__(
        self,
        store: BaseJobStore,
        reconciler,
        controller,
        merger,
        provider_lookup: Callable[[str], GenerationProvider] = get_provider,
        stages: Optional[List[ConstructionStage]] = None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.controller = controller
        self.merger = merger
        self.provider_lookup = provider_lookup
        self.stages = stages or get_all_stages()

    # ── Validation ────────────────────────────────────────────
    def resolve_models(self, options: PipelineOptions):
        image_spec = resolve_model(options.model_name)
        if not image_spec.supports(K.IMAGE_TO_IMAGE):
            raise GenerationValidationError(
                f'Model "{image_spec.name}" does not support image-to-image',
                details={"supportedFeatures": list(image_spec.kinds)},
            )
        video_spec = None
        if options.generate_videos:
            video_spec = resolve_model(options.video_model_name)
            if not video_spec.supports(K.IMAGE_TO_VIDEO):
                raise GenerationValidationError(
                    f'Model "{video_spec.name}" does not support image-to-video',
                    details={"supportedFeatures": list(video_spec.kinds)},
                )
        if not 2 <= options.stage_count <= len(self.stages):
            raise GenerationValidationError(f"stageCount must be between 2 and {len(self.stages)}")
        return image_spec, video_spec

    # ── Run ───────────────────────────────────────────────────
    def run(self, options: PipelineOptions) -> PipelineResult:
        image_spec, video_spec = self.resolve_models(options)
        result = PipelineResult(run_id=str(uuid.uuid4()))
        print(f"[Pipeline] run={result.run_id} model={image_spec.name} video={options.video_model_name} "
              f"stages={options.stage_count}")

        if not self._run_stages(result, options, image_spec):
            return result
        if options.include_intermediates and not self._run_intermediates(result, options, image_spec):
            return result
        if video_spec is None:
            return result
        if not self._run_transitions(result, options, video_spec):
            return result
        if options.stitch:
            self._run_merge(result)
        return result

    # ── Images ────────────────────────────────────────────────
    def _run_stages(self, result: PipelineResult, options: PipelineOptions, spec: ModelSpec) -> bool:
        current_url = options.reference_image_url
        for stage in self.stages[: options.stage_count]:
            prompt = build_stage_prompt(stage, options.base_prompt)
            if stage.is_pass_through:
                job = self.store.create({
                    "generation_type": K.IMAGE_TO_IMAGE,
                    "feature": "construction-stage",
                    "provider": spec.provider,
                    "model_name": spec.name,
                    "prompt": prompt,
                    "aspect_ratio": options.aspect_ratio,
                    "audio_enabled": False,
                    "input_image_url": current_url,
                    "status": JobStatus.COMPLETED,
                    "image_url": current_url,
                    "thumbnail_url": current_url,
                    "pipeline_run_id": result.run_id,
                    "stage_order": stage.order,
                    "meta": {"stage_key": stage.key, "title": stage.display_name},
                })
                result.stages.append(UnitResult(
                    unit=Unit.STAGE, key=stage.key, order=stage.order, success=True, job_id=job["id"],
                    title=stage.display_name, prompt=prompt, input_url=current_url,
                    image_url=current_url, thumbnail_url=current_url,
                ))
                continue

            unit = self._generate_image(
                result.run_id, spec, options, Unit.STAGE, stage.key, stage.order,
                prompt, current_url, stage.strength, stage.display_name,
            )
            result.stages.append(unit)
            if not unit.success:
                result.failed = unit
                print(f"[Pipeline] run={result.run_id} stopped at stage {stage.order}: {unit.error}")
                return False
            current_url = unit.image_url
        return True

    def _run_intermediates(self, result: PipelineResult, options: PipelineOptions, spec: ModelSpec) -> bool:
        ordered = sorted(result.stages, key=lambda s: s.order, reverse=True)
        for higher, lower in zip(ordered, ordered[1:]):
            order = midpoint(higher.order, lower.order)
            unit = self._generate_image(
                result.run_id, spec, options, Unit.INTERMEDIATE, pair_key(higher.order, lower.order), order,
                get_intermediate_prompt(int(higher.order), int(lower.order)), lower.image_url,
                INTERMEDIATE_STRENGTH, f"Intermediate {pair_key(higher.order, lower.order)}",
            )
            result.intermediates.append(unit)
            if not unit.success:
                result.failed = unit
                return False
        return True

    def _generate_image(
        self,
        run_id: str,
        spec: ModelSpec,
        options: PipelineOptions,
        unit_type: str,
        key: str,
        order: float,
        prompt: str,
        input_url: str,
        strength: float,
        title: str,
    ) -> UnitResult:
        request = GenerationRequest(
            kind=K.IMAGE_TO_IMAGE,
            model_name=spec.name,
            provider_model_id=spec.model_id_for(K.IMAGE_TO_IMAGE),
            prompt=prompt,
            aspect_ratio=snap_aspect_ratio(spec, options.aspect_ratio),
            input_image_url=input_url,
            strength=strength,
        )
        job = self.store.create({
            "generation_type": K.IMAGE_TO_IMAGE,
            "feature": "construction-stage",
            "provider": spec.provider,
            "model_name": spec.name,
            "prompt": prompt,
            "aspect_ratio": request.aspect_ratio,
            "audio_enabled": False,
            "strength": strength,
            "input_image_url": input_url,
            "pipeline_run_id": run_id,
            "stage_order": order,
            "meta": {"stage_key": key, "title": title, "unit": unit_type},
        })

        provider = self.provider_lookup(spec.provider)
        handle = dispatch_generation(self.store, provider, job["id"], request, self.reconciler)
        final = self.reconciler.poll_until_done(job["id"]) if handle else self.store.get(job["id"])
        return self._unit_from_job(unit_type, key, order, title, prompt, input_url, final)

    # ── Videos ────────────────────────────────────────────────
    def _image_sequence(self, result: PipelineResult) -> Dict[float, str]:
        images = {s.order: s.image_url for s in result.stages if s.success}
        images.update({i.order: i.image_url for i in result.intermediates if i.success})
        return images

    def _run_transitions(self, result: PipelineResult, options: PipelineOptions, spec: ModelSpec) -> bool:
        images = self._image_sequence(result)
        plans = plan_transitions(list(images))

        # Submit everything first; the controller blocks while slots are full
        submitted: List[tuple] = []
        submit_failure: Optional[UnitResult] = None
        for plan in plans:
            job, failure = self._submit_transition(result.run_id, spec, options, plan, images)
            if failure is not None:
                submit_failure = failure
                break
            submitted.append((plan, job))

        for plan, job in submitted:
            final = self.reconciler.poll_until_done(job["id"])
            if final and final.get("provider_job_id"):
                self.controller.release(final["provider_job_id"])
            unit = self._unit_from_job(
                Unit.TRANSITION, plan.key, plan.to_order, plan.title, plan.prompt,
                images[plan.from_order], final, end_frame_url=images[plan.to_order],
            )
            result.transitions.append(unit)
            if not unit.success:
                result.failed = unit
                return False

        if submit_failure is not None:
            result.transitions.append(submit_failure)
            result.failed = submit_failure
            return False
        return True

    def _submit_transition(self, run_id, spec: ModelSpec, options: PipelineOptions, plan: TransitionPlan, images):
        start_url, end_url = images[plan.from_order], images[plan.to_order]
        request = GenerationRequest(
            kind=K.IMAGE_TO_VIDEO,
            model_name=spec.name,
            provider_model_id=spec.model_id_for(K.IMAGE_TO_VIDEO),
            prompt=plan.prompt,
            duration_seconds=TRANSITION_DURATION_SECS,
            aspect_ratio=snap_aspect_ratio(spec, options.aspect_ratio),
            resolution=spec.default_resolution,
            audio_enabled=False,
            input_image_url=start_url,
            end_frame_url=end_url,
        )
        job = self.store.create({
            "generation_type": K.IMAGE_TO_VIDEO,
            "feature": "construction-transition",
            "provider": spec.provider,
            "model_name": spec.name,
            "prompt": plan.prompt,
            "duration": format_duration(TRANSITION_DURATION_SECS),
            "aspect_ratio": request.aspect_ratio,
            "resolution": request.resolution,
            "audio_enabled": False,
            "input_image_url": start_url,
            "end_frame_url": end_url,
            "pipeline_run_id": run_id,
            "stage_order": plan.to_order,
            "meta": {"transition_key": plan.key, "title": plan.title, "video_number": plan.number},
        })

        try:
            submit = self.controller.submit(spec.provider, request, job_id=job["id"])
        except ProviderError as e:
            self.store.mark_failed(job["id"], e.error_code, str(e))
            return job, self._unit_from_job(
                Unit.TRANSITION, plan.key, plan.to_order, plan.title, plan.prompt, start_url,
                self.store.get(job["id"]), end_frame_url=end_url,
            )
        except (requests.RequestException, ValueError) as e:
            code = ErrorCode.INVALID_REQUEST if isinstance(e, ValueError) else ErrorCode.UNKNOWN_ERROR
            self.store.mark_failed(job["id"], code, f"{type(e).__name__}: {e}")
            return job, self._unit_from_job(
                Unit.TRANSITION, plan.key, plan.to_order, plan.title, plan.prompt, start_url,
                self.store.get(job["id"]), end_frame_url=end_url,
            )

        if not submit.job_handle:
            self.store.mark_failed(job["id"], ErrorCode.GENERATION_FAILED, "Video provider returned no job handle")
            return job, self._unit_from_job(
                Unit.TRANSITION, plan.key, plan.to_order, plan.title, plan.prompt, start_url,
                self.store.get(job["id"]), end_frame_url=end_url,
            )

        self.store.set_handle(job["id"], submit.job_handle, submit.meta or None)
        self.reconciler.on_job_submitted()
        return job, None

    def _run_merge(self, result: PipelineResult) -> bool:
        job_ids = [t.job_id for t in result.transitions]
        if len(job_ids) < 2:
            return True
        try:
            merged = self.merger.merge(job_ids, pipeline_run_id=result.run_id, prompt="Construction timelapse")
        except (MediaToolError, StorageUnavailableError, ProviderError, requests.RequestException, ValueError) as e:
            code = e.error_code if isinstance(e, ProviderError) else ErrorCode.UNKNOWN_ERROR
            unit = UnitResult(unit=Unit.MERGE, key="merge", order=None, success=False,
                              error=str(e), error_code=code)
            result.merged = unit
            result.failed = unit
            print(f"[Pipeline] run={result.run_id} merge failed: {e}")
            return False
        result.merged = UnitResult(
            unit=Unit.MERGE, key="merge", order=None, success=True, job_id=merged["id"],
            title="Construction timelapse", video_url=merged["video_url"], thumbnail_url=merged["thumbnail_url"],
        )
        return True

    # ── Helpers ───────────────────────────────────────────────
    def _unit_from_job(self, unit_type, key, order, title, prompt, input_url, job, end_frame_url=None) -> UnitResult:
        unit = UnitResult(
            unit=unit_type, key=key, order=order, success=False, job_id=job["id"] if job else None,
            title=title, prompt=prompt, input_url=input_url, end_frame_url=end_frame_url,
        )
        if job is None:
            unit.error = "Generation record disappeared"
            unit.error_code = ErrorCode.UNKNOWN_ERROR
            return unit
        if job["status"] == JobStatus.COMPLETED:
            unit.success = True
            unit.image_url = job.get("image_url")
            unit.video_url = job.get("video_url")
            unit.thumbnail_url = job.get("thumbnail_url")
            return unit
        unit.error = job.get("error_message") or "Generation did not complete"
        unit.error_code = job.get("error_code") or ErrorCode.UNKNOWN_ERROR
        return unit
