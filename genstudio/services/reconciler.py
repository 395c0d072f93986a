"""
Completion Reconciler - drives in_progress jobs to a terminal state.

One code path (_reconcile / apply_outcome) is shared by:
- the recurring sweep (every RECONCILE_INTERVAL_SECS over the oldest
  RECONCILE_BATCH_SIZE in_progress jobs that have a handle, plus the
  handle-less ones, which are only failed once they pass the age limit)
- manual "check status" calls (check_job)
- per-job polling used by the pipeline (poll_until_done)
- webhook notices (handle_webhook_notice)
- immediate provider results (complete_immediate)

Completion is two writes: claim_completion stores the transient provider
URL (first writer wins), then the materializer uploads and
finalize_artifacts swaps in the durable URLs. If the upload fails the job
simply stays completed with the transient URL.

Timeouts:
- a job older than JOB_MAX_AGE_MINUTES is failed TIMEOUT without polling
- POLL_ERROR_THRESHOLD consecutive poll errors -> POLLING_ERROR
- poll_until_done gives up after POLL_MAX_ATTEMPTS -> TIMEOUT
"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from genstudio.config import config
from genstudio.db import now_utc
from genstudio.services.async_dispatch import submit_supervised
from genstudio.services.job_store import BaseJobStore, ErrorCode, GenerationKind, JobStatus, job_age_seconds
from genstudio.services.materializer import ArtifactMaterializer
from genstudio.services.model_registry import get_provider
from genstudio.services.providers.base import GenerationProvider, PollOutcome, PollState, SubmitResult
from genstudio.services.scheduler import RecurringScheduler


class ReconcileResult:
    """What a single reconcile attempt did to a job."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    POLL_ERROR = "poll_error"
    SKIPPED = "skipped"  # already terminal / lost the race


class CompletionReconciler:
    def __init__(
        self,
        store: BaseJobStore,
        materializer: ArtifactMaterializer,
        provider_lookup: Callable[[str], GenerationProvider] = get_provider,
        clock: Callable[[], datetime] = now_utc,
        sleep: Callable[[float], None] = time.sleep,
        executor=None,
        auto_poster=None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        enabled: Optional[bool] = None,
        interval_secs: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_age_minutes: Optional[float] = None,
        error_threshold: Optional[int] = None,
        fast_interval_secs: Optional[float] = None,
        slow_interval_secs: Optional[float] = None,
        fast_window_secs: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.store = store
        self.materializer = materializer
        self.provider_lookup = provider_lookup
        self.clock = clock
        self.sleep = sleep
        self.executor = executor
        self.auto_poster = auto_poster

        self.enabled = config.RECONCILER_ENABLED if enabled is None else enabled
        self.batch_size = batch_size or config.RECONCILE_BATCH_SIZE
        self.max_age_secs = (max_age_minutes or config.JOB_MAX_AGE_MINUTES) * 60
        self.error_threshold = error_threshold or config.POLL_ERROR_THRESHOLD
        self.fast_interval_secs = fast_interval_secs or config.POLL_FAST_INTERVAL_SECS
        self.slow_interval_secs = slow_interval_secs or config.POLL_SLOW_INTERVAL_SECS
        self.fast_window_secs = fast_window_secs if fast_window_secs is not None else config.POLL_FAST_WINDOW_SECS
        self.max_attempts = max_attempts or config.POLL_MAX_ATTEMPTS

        self.scheduler = RecurringScheduler(
            interval_secs or config.RECONCILE_INTERVAL_SECS,
            self.sweep_and_continue,
            name="Reconciler",
            timer_factory=timer_factory,
        )
        self._poll_errors: Dict[str, int] = {}
        self._errors_lock = threading.Lock()

    # ── Scheduling ────────────────────────────────────────────
    def start(self) -> None:
        """Arm on startup so jobs left over from a restart get picked up."""
        if self.enabled:
            self.scheduler.arm()

    def stop(self) -> None:
        self.scheduler.disarm()

    def on_job_submitted(self) -> None:
        if self.enabled:
            self.scheduler.arm()

    def sweep_and_continue(self) -> bool:
        return self.sweep() > 0

    # ── Sweep ─────────────────────────────────────────────────
    def sweep(self) -> int:
        """
        Reconcile one batch, oldest first.

        Jobs that never got a handle are counted too: they keep the
        scheduler armed until they reach the age limit and are failed.

        Returns the number of jobs inspected; 0 means nothing is trackable
        and the scheduler disarms itself.
        """
        jobs = self.store.list_in_progress_with_handle(self.batch_size)
        orphans = self.store.list_in_progress_without_handle(self.batch_size)
        if not jobs and not orphans:
            return 0

        counts: Dict[str, int] = {}
        for job in jobs:
            result = self._reconcile(job)
            counts[result] = counts.get(result, 0) + 1
        for job in orphans:
            result = self._expire_orphan(job)
            counts[result] = counts.get(result, 0) + 1
        print(f"[Reconciler] sweep checked={len(jobs) + len(orphans)} results={counts}")
        return len(jobs) + len(orphans)

    # ── Single-job entry points ───────────────────────────────
    def check_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """One immediate poll. Terminal jobs are returned untouched."""
        job = self.store.get(job_id)
        if job is None:
            return None
        if job["status"] != JobStatus.IN_PROGRESS or not job.get("provider_job_id"):
            return job
        self._reconcile(job)
        return self.store.get(job_id)

    def poll_interval_for(self, job: Dict[str, Any]) -> float:
        if job_age_seconds(job, self.clock()) < self.fast_window_secs:
            return self.fast_interval_secs
        return self.slow_interval_secs

    def poll_until_done(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Block until the job is terminal: 5s polls during the first 30s of
        the job's life, 10s after. Gives up with TIMEOUT after max_attempts.
        """
        attempts = 0
        while attempts < self.max_attempts:
            job = self.store.get(job_id)
            if job is None or job["status"] != JobStatus.IN_PROGRESS:
                return job
            attempts += 1
            if job.get("provider_job_id"):
                self._reconcile(job)
                job = self.store.get(job_id)
                if job is None or job["status"] != JobStatus.IN_PROGRESS:
                    return job
            self.sleep(self.poll_interval_for(job))

        print(f"[Reconciler] job={job_id} gave up after {attempts} attempts")
        self._fail(job_id, ErrorCode.TIMEOUT, "Generation timed out after maximum polling attempts")
        return self.store.get(job_id)

    # ── Notices from outside the poll loop ────────────────────
    def handle_webhook_notice(self, handle: str, outcome: PollOutcome, background: bool = True) -> Optional[str]:
        """
        Apply a provider-pushed outcome.

        Returns None when the handle is unknown, otherwise a ReconcileResult.
        """
        job = self.store.find_by_handle(handle)
        if job is None:
            return None
        if job["status"] != JobStatus.IN_PROGRESS:
            print(f"[Reconciler] webhook for terminal job={job['id']} ignored (status={job['status']})")
            return ReconcileResult.SKIPPED
        return self.apply_outcome(job, outcome, background=background)

    def complete_immediate(self, job_id: str, result: SubmitResult) -> Optional[Dict[str, Any]]:
        """Synchronous providers: claim and materialize right away."""
        job = self.store.get(job_id)
        if job is None:
            return None
        outcome = PollOutcome.succeeded(
            video_url=result.video_url,
            image_url=result.image_url,
            thumbnail_url=result.thumbnail_url,
        )
        self.apply_outcome(job, outcome, background=False)
        return self.store.get(job_id)

    # ── Shared transition logic ───────────────────────────────
    def apply_outcome(self, job: Dict[str, Any], outcome: PollOutcome, background: bool = False) -> str:
        job_id = job["id"]
        self._clear_errors(job_id)
        if outcome.state == PollState.PENDING:
            return ReconcileResult.PENDING

        if outcome.state == PollState.FAILED:
            failed = self._fail(job_id, outcome.error_code or ErrorCode.GENERATION_FAILED,
                                outcome.reason or "Generation failed")
            return ReconcileResult.FAILED if failed else ReconcileResult.SKIPPED

        is_video = job.get("generation_type") in GenerationKind.VIDEO_KINDS
        video_url = outcome.video_url if is_video else None
        image_url = outcome.image_url if not is_video else None
        if not (video_url or image_url):
            failed = self._fail(job_id, ErrorCode.GENERATION_FAILED, "Provider reported success without an artifact")
            return ReconcileResult.FAILED if failed else ReconcileResult.SKIPPED

        claimed = self.store.claim_completion(
            job_id,
            video_url=video_url,
            image_url=image_url,
            thumbnail_url=outcome.thumbnail_url or video_url or image_url,
        )
        if claimed is None:
            print(f"[Reconciler] job={job_id} already terminal, completion dropped")
            return ReconcileResult.SKIPPED
        print(f"[Reconciler] job={job_id} completed (transient)")

        if background:
            submit_supervised(
                self.materialize_job,
                claimed,
                outcome.thumbnail_url,
                job_id=job_id,
                label="materialize",
                executor=self.executor,
            )
        else:
            self.materialize_job(claimed, outcome.thumbnail_url)
        return ReconcileResult.COMPLETED

    def materialize_job(self, job: Dict[str, Any], provider_thumbnail: Optional[str] = None) -> Dict[str, Any]:
        """Second pass after a claim: upload and swap in durable URLs."""
        artifact = self.materializer.materialize(
            video_url=job.get("video_url"),
            image_url=job.get("image_url"),
            thumbnail_url=provider_thumbnail,
            provider=job.get("provider"),
            job_id=job["id"],
        )
        if not artifact.durable:
            return job

        final = self.store.finalize_artifacts(
            job["id"],
            video_url=artifact.video_url,
            image_url=artifact.image_url,
            thumbnail_url=artifact.thumbnail_url,
        )
        if final is None:
            return self.store.get(job["id"]) or job
        if self.auto_poster is not None and self.auto_poster.is_eligible(final):
            submit_supervised(self.auto_poster.maybe_post, final, job_id=job["id"], label="auto_post",
                              executor=self.executor)
        return final

    def _reconcile(self, job: Dict[str, Any]) -> str:
        job_id = job["id"]

        age = job_age_seconds(job, self.clock())
        if age > self.max_age_secs:
            minutes = int(self.max_age_secs // 60)
            print(f"[Reconciler] job={job_id} abandoned after {int(age)}s")
            failed = self._fail(job_id, ErrorCode.TIMEOUT, f"Generation timed out after {minutes} minutes")
            return ReconcileResult.TIMED_OUT if failed else ReconcileResult.SKIPPED

        try:
            provider = self.provider_lookup(job["provider"])
            outcome = provider.poll_status(job["provider_job_id"], job.get("meta") or {})
        except Exception as e:
            # Transient until the threshold: network blips, 5xx, bad JSON
            return self._record_poll_error(job_id, e)

        return self.apply_outcome(job, outcome, background=False)

    def _expire_orphan(self, job: Dict[str, Any]) -> str:
        """No handle means nothing to poll; only the age limit applies."""
        age = job_age_seconds(job, self.clock())
        if age <= self.max_age_secs:
            return ReconcileResult.PENDING
        minutes = int(self.max_age_secs // 60)
        print(f"[Reconciler] job={job['id']} abandoned without a provider handle after {int(age)}s")
        failed = self._fail(job["id"], ErrorCode.TIMEOUT,
                            f"Generation was never submitted to the provider within {minutes} minutes")
        return ReconcileResult.TIMED_OUT if failed else ReconcileResult.SKIPPED

    # ── Helpers ───────────────────────────────────────────────
    def _record_poll_error(self, job_id: str, error: Exception) -> str:
        with self._errors_lock:
            count = self._poll_errors.get(job_id, 0) + 1
            self._poll_errors[job_id] = count
        print(f"[Reconciler] job={job_id} poll error {count}/{self.error_threshold}: {type(error).__name__}: {error}")
        if count < self.error_threshold:
            return ReconcileResult.POLL_ERROR

        self._fail(job_id, ErrorCode.POLLING_ERROR, f"Status polling failed {count} times in a row: {error}")
        return ReconcileResult.FAILED

    def _clear_errors(self, job_id: str) -> None:
        with self._errors_lock:
            self._poll_errors.pop(job_id, None)

    def poll_error_count(self, job_id: str) -> int:
        with self._errors_lock:
            return self._poll_errors.get(job_id, 0)

    def _fail(self, job_id: str, code: str, message: str) -> Optional[Dict[str, Any]]:
        self._clear_errors(job_id)
        failed = self.store.mark_failed(job_id, code, message)
        if failed is not None:
            print(f"[Reconciler] job={job_id} failed code={code}: {message}")
        return failed
