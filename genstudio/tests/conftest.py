"""
Shared fakes for the genstudio test suite.

Nothing here talks to a provider, S3, ffmpeg or PostgreSQL: the job store
is the in-memory backend, background work runs inline, time is a fake
clock and the reconciler's timer never fires on its own.
"""

from __future__ import annotations

from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from genstudio.app import create_app
from genstudio.services.job_store import GenerationKind, MemoryJobStore
from genstudio.services.materializer import ArtifactMaterializer
from genstudio.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    PollOutcome,
    ProviderError,
    SubmitResult,
)
from genstudio.services.reconciler import CompletionReconciler
from genstudio.services.runtime import build_runtime, set_runtime
from genstudio.services.storage_service import StorageUnavailableError
from genstudio.services.submission_controller import SubmissionController
from genstudio.services.video_merge_service import VideoMergeService


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def map(self, fn, *iterables):
        return [fn(*args) for args in zip(*iterables)]


class FakeTimer:
    """threading.Timer stand-in; fire() runs the callback by hand."""

    created: List["FakeTimer"] = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.calls: List[float] = []
        self.on_sleep = on_sleep

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)


class FakeProvider(GenerationProvider):
    """
    Scripted provider. submit() hands out queued SubmitResults (or raises
    queued exceptions); poll_status() pops queued PollOutcomes per handle,
    repeating the last one once the queue runs dry.
    """

    def __init__(self, name: str = "kling"):
        self.name = name
        self.submit_script: List[Any] = []
        self.poll_script: Dict[str, List[Any]] = {}
        self.submitted: List[GenerationRequest] = []
        self.polled: List[str] = []
        self._counter = 0

    def is_configured(self):
        return True, None

    def queue_submit(self, *results: Any) -> None:
        self.submit_script.extend(results)

    def queue_poll(self, handle: str, *outcomes: Any) -> None:
        self.poll_script.setdefault(handle, []).extend(outcomes)

    def submit(self, request: GenerationRequest) -> SubmitResult:
        self.submitted.append(request)
        if self.submit_script:
            result = self.submit_script.pop(0)
        else:
            self._counter += 1
            result = SubmitResult(job_handle=f"{self.name}-task-{self._counter}")
        if isinstance(result, Exception):
            raise result
        return result

    def poll_status(self, handle: str, meta: Optional[Dict[str, Any]] = None) -> PollOutcome:
        self.polled.append(handle)
        script = self.poll_script.get(handle)
        if not script:
            return PollOutcome.pending()
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeProviders:
    """provider_lookup replacement backed by a dict of FakeProviders."""

    def __init__(self, *providers: FakeProvider):
        self.providers = {p.name: p for p in providers}

    def __call__(self, name: str) -> FakeProvider:
        return self.providers[name]


class FakeStorage:
    def __init__(self, configured: bool = True, fail: bool = False):
        self.configured = configured
        self.fail = fail
        self.uploads: List[Dict[str, Any]] = []
        self.deleted: List[str] = []

    def is_configured(self) -> bool:
        return self.configured

    def upload_bytes(self, data, content_type, prefix, provider=None):
        if self.fail:
            raise StorageUnavailableError("S3 upload failed: simulated outage")
        self.uploads.append({"data": data, "content_type": content_type, "prefix": prefix, "provider": provider})
        return f"https://media.example.com/{prefix}/{len(self.uploads)}"

    def upload_source(self, source, prefix, provider=None):
        return self.upload_bytes(b"image-bytes", "image/png", prefix, provider)

    def delete_urls(self, urls, source="unknown"):
        urls = [u for u in urls if u]
        self.deleted.extend(urls)
        return {"deleted": len(urls), "already_missing": 0, "errors": [], "keys_attempted": len(urls)}


def fake_downloader(url: str):
    if "thumb" in url:
        return b"provider-thumb", "image/jpeg"
    return f"bytes:{url}".encode(), "video/mp4"


def fake_thumbnailer(video_bytes: bytes, timestamp: float):
    return b"extracted-frame"


def make_job(store: MemoryJobStore, **fields) -> Dict[str, Any]:
    record = {
        "generation_type": GenerationKind.TEXT_TO_VIDEO,
        "provider": "kling",
        "model_name": "Kling 2.6",
        "prompt": "a cat surfing",
        "duration": "5s",
    }
    record.update(fields)
    return store.create(record)


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryJobStore(clock=clock)


@pytest.fixture
def executor():
    return InlineExecutor()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def kling():
    return FakeProvider("kling")


@pytest.fixture
def gemini():
    return FakeProvider("gemini-image")


@pytest.fixture
def providers(kling, gemini):
    return FakeProviders(kling, gemini, FakeProvider("veo"), FakeProvider("imagen"))


@pytest.fixture
def materializer(storage, executor):
    return ArtifactMaterializer(
        storage=storage,
        downloader=fake_downloader,
        thumbnailer=fake_thumbnailer,
        executor=executor,
    )


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def reconciler(store, materializer, providers, clock, sleeper, executor):
    FakeTimer.created = []
    return CompletionReconciler(
        store,
        materializer,
        provider_lookup=providers,
        clock=clock,
        sleep=sleeper,
        executor=executor,
        timer_factory=FakeTimer,
        enabled=True,
        interval_secs=60,
        batch_size=20,
        max_age_minutes=30,
        error_threshold=3,
        fast_interval_secs=5,
        slow_interval_secs=10,
        fast_window_secs=30,
        max_attempts=150,
    )


def provider_error(message: str, status_code: Optional[int] = None) -> ProviderError:
    return ProviderError(message, status_code=status_code, provider="fake")


def fake_concat(videos):
    return b"|".join(videos)


@pytest.fixture
def controller(providers, store, sleeper):
    return SubmissionController(
        provider_lookup=providers,
        store=store,
        max_active=2,
        clock=lambda: 0.0,
        sleep=sleeper,
        jitter=lambda: 0.0,
        spacing_secs=0,
    )


@pytest.fixture
def merger(store, storage, materializer, executor):
    return VideoMergeService(
        store,
        storage,
        materializer,
        downloader=fake_downloader,
        concat=fake_concat,
        probe=lambda data: 5.0,
        executor=executor,
    )


@pytest.fixture
def runtime(store, storage, providers, executor, materializer, controller, merger, reconciler):
    rt = build_runtime(
        store=store,
        storage=storage,
        provider_lookup=providers,
        executor=executor,
        materializer=materializer,
        controller=controller,
        merger=merger,
    )
    # Share the fixture reconciler (fake clock, fake timer) with every service
    rt.reconciler = reconciler
    rt.generations.reconciler = reconciler
    rt.pipeline.reconciler = reconciler
    return rt


@pytest.fixture
def app(runtime):
    flask_app = create_app(runtime=runtime, start_reconciler=False)
    flask_app.config["TESTING"] = True
    yield flask_app
    set_runtime(None)


@pytest.fixture
def client(app):
    return app.test_client()
