"""
Process-wide service wiring.

Routes reach every service through get_runtime(). Tests build their own
Runtime around fakes and install it with set_runtime().
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from genstudio.services.async_dispatch import get_executor
from genstudio.services.auto_post_service import AutoPoster
from genstudio.services.generation_service import GenerationService
from genstudio.services.job_store import BaseJobStore, create_default_store
from genstudio.services.materializer import ArtifactMaterializer
from genstudio.services.model_registry import get_provider
from genstudio.services.pipeline_service import PipelineOrchestrator
from genstudio.services.providers.base import GenerationProvider
from genstudio.services.reconciler import CompletionReconciler
from genstudio.services.storage_service import S3Storage
from genstudio.services.submission_controller import SubmissionController
from genstudio.services.video_merge_service import VideoMergeService


@dataclass
class Runtime:
    store: BaseJobStore
    storage: S3Storage
    materializer: ArtifactMaterializer
    reconciler: CompletionReconciler
    controller: SubmissionController
    generations: GenerationService
    merger: VideoMergeService
    pipeline: PipelineOrchestrator
    auto_poster: Optional[AutoPoster] = None
    provider_lookup: Callable[[str], GenerationProvider] = field(default=get_provider)
    executor: Any = None


def build_runtime(
    store: Optional[BaseJobStore] = None,
    storage: Optional[S3Storage] = None,
    provider_lookup: Callable[[str], GenerationProvider] = get_provider,
    executor=None,
    materializer: Optional[ArtifactMaterializer] = None,
    controller: Optional[SubmissionController] = None,
    merger: Optional[VideoMergeService] = None,
    **reconciler_kwargs,
) -> Runtime:
    store = store or create_default_store()
    storage = storage or S3Storage()
    executor = executor or get_executor()

    materializer = materializer or ArtifactMaterializer(storage=storage)
    auto_poster = AutoPoster(store)
    reconciler = CompletionReconciler(
        store,
        materializer,
        provider_lookup=provider_lookup,
        executor=executor,
        auto_poster=auto_poster,
        **reconciler_kwargs,
    )
    controller = controller or SubmissionController(provider_lookup=provider_lookup, store=store)
    merger = merger or VideoMergeService(store, storage, materializer)
    return Runtime(
        store=store,
        storage=storage,
        materializer=materializer,
        reconciler=reconciler,
        controller=controller,
        generations=GenerationService(store, reconciler, provider_lookup=provider_lookup, executor=executor),
        merger=merger,
        pipeline=PipelineOrchestrator(store, reconciler, controller, merger, provider_lookup=provider_lookup),
        auto_poster=auto_poster,
        provider_lookup=provider_lookup,
        executor=executor,
    )


_runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    global _runtime
    with _runtime_lock:
        _runtime = runtime
