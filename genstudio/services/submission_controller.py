"""
Rate-Limited Submission Controller for video jobs.

Providers only run a couple of video jobs per account at a time, so the
pipeline funnels every video submission through here:

1. Active set full -> poll the active handles and evict terminal ones
2. Still full -> wait 5s, 7.5s, ... (x1.5, capped at 30s) up to
   VIDEO_SLOT_WAIT_MAX_SECS, re-checking after every wait
3. Keep VIDEO_SUBMIT_SPACING_SECS between consecutive submissions
4. Rate-limit errors retry with exponential backoff plus jitter
   (5s * 2^n + U(0,1)s, capped at 60s) up to VIDEO_RATE_LIMIT_RETRIES;
   every other error is raised at once
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from genstudio.config import config
from genstudio.services.job_store import BaseJobStore, ErrorCode, JobStatus
from genstudio.services.model_registry import get_provider
from genstudio.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    PollState,
    ProviderError,
    SubmitResult,
)


class SlotWaitTimeout(ProviderError):
    """No slot freed up within VIDEO_SLOT_WAIT_MAX_SECS."""

    def __init__(self, waited: float):
        super().__init__(
            f"No video slot became free after waiting {int(waited)}s",
            error_code=ErrorCode.TIMEOUT,
        )


@dataclass
class ActiveSubmission:
    handle: str
    provider: str
    job_id: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class SubmissionController:
    """Thread-safe. Submissions are serialized so spacing and slot counts hold."""

    def __init__(
        self,
        provider_lookup: Callable[[str], GenerationProvider] = get_provider,
        store: Optional[BaseJobStore] = None,
        max_active: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
        wait_initial_secs: Optional[float] = None,
        wait_ceiling_secs: Optional[float] = None,
        wait_max_secs: Optional[float] = None,
        rate_limit_retries: Optional[int] = None,
        backoff_base_secs: Optional[float] = None,
        backoff_max_secs: Optional[float] = None,
        spacing_secs: Optional[float] = None,
    ):
        self.provider_lookup = provider_lookup
        self.store = store
        self.max_active = max_active or config.VIDEO_MAX_ACTIVE
        self.clock = clock
        self.sleep = sleep
        self.jitter = jitter

        self.wait_initial_secs = wait_initial_secs or config.VIDEO_SLOT_WAIT_INITIAL_SECS
        self.wait_ceiling_secs = wait_ceiling_secs or config.VIDEO_SLOT_WAIT_CEILING_SECS
        self.wait_max_secs = wait_max_secs or config.VIDEO_SLOT_WAIT_MAX_SECS
        self.rate_limit_retries = (
            rate_limit_retries if rate_limit_retries is not None else config.VIDEO_RATE_LIMIT_RETRIES
        )
        self.backoff_base_secs = backoff_base_secs or config.VIDEO_BACKOFF_BASE_SECS
        self.backoff_max_secs = backoff_max_secs or config.VIDEO_BACKOFF_MAX_SECS
        self.spacing_secs = spacing_secs if spacing_secs is not None else config.VIDEO_SUBMIT_SPACING_SECS

        self._active: Dict[str, ActiveSubmission] = {}
        self._lock = threading.Lock()
        self._submit_lock = threading.Lock()
        self._last_submit_at: Optional[float] = None

    # ── Public API ────────────────────────────────────────────
    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def active_handles(self) -> List[str]:
        with self._lock:
            return list(self._active)

    def submit(self, provider_name: str, request: GenerationRequest, job_id: Optional[str] = None) -> SubmitResult:
        """
        Submit once a slot is free. Blocks while the active set is full.

        Raises:
            SlotWaitTimeout: waited VIDEO_SLOT_WAIT_MAX_SECS without a free slot
            ProviderError: non rate-limit error, or rate limit retries exhausted
        """
        provider = self.provider_lookup(provider_name)
        with self._submit_lock:
            self._wait_for_slot()
            self._apply_spacing()
            try:
                result = self._submit_with_retry(provider, request)
            finally:
                self._last_submit_at = self.clock()

            if result.job_handle:
                with self._lock:
                    self._active[result.job_handle] = ActiveSubmission(
                        handle=result.job_handle,
                        provider=provider_name,
                        job_id=job_id,
                        meta=dict(result.meta or {}),
                    )
                print(f"[Controller] submitted job={job_id} handle={result.job_handle} "
                      f"active={self.active_count}/{self.max_active}")
            return result

    def release(self, handle: str) -> None:
        with self._lock:
            self._active.pop(handle, None)

    # ── Slots ─────────────────────────────────────────────────
    def _has_free_slot(self) -> bool:
        with self._lock:
            return len(self._active) < self.max_active

    def evict_terminal(self) -> int:
        """Drop active entries whose job has finished. Returns how many went."""
        with self._lock:
            entries = list(self._active.values())

        evicted = 0
        for entry in entries:
            if self._is_terminal(entry):
                self.release(entry.handle)
                evicted += 1
        if evicted:
            print(f"[Controller] evicted {evicted} finished job(s), active={self.active_count}")
        return evicted

    def _is_terminal(self, entry: ActiveSubmission) -> bool:
        if self.store is not None and entry.job_id:
            job = self.store.get(entry.job_id)
            if job is None or job["status"] in JobStatus.TERMINAL:
                return True
        try:
            outcome = self.provider_lookup(entry.provider).poll_status(entry.handle, entry.meta)
        except Exception as e:
            # Unknown state; keep the slot taken until a later check
            print(f"[Controller] status check failed for {entry.handle}: {type(e).__name__}: {e}")
            return False
        return outcome.state != PollState.PENDING

    def _wait_for_slot(self) -> None:
        if self._has_free_slot():
            return
        self.evict_terminal()
        if self._has_free_slot():
            return

        wait = self.wait_initial_secs
        waited = 0.0
        while waited < self.wait_max_secs:
            print(f"[Controller] {self.active_count}/{self.max_active} active, waiting {wait:.1f}s for a slot")
            self.sleep(wait)
            waited += wait
            wait = min(wait * 1.5, self.wait_ceiling_secs)
            self.evict_terminal()
            if self._has_free_slot():
                return
        raise SlotWaitTimeout(waited)

    def _apply_spacing(self) -> None:
        if self._last_submit_at is None or self.spacing_secs <= 0:
            return
        remaining = self.spacing_secs - (self.clock() - self._last_submit_at)
        if remaining > 0:
            self.sleep(remaining)

    # ── Retry ─────────────────────────────────────────────────
    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base_secs * (2 ** attempt) + self.jitter(), self.backoff_max_secs)

    def _submit_with_retry(self, provider: GenerationProvider, request: GenerationRequest) -> SubmitResult:
        attempt = 0
        while True:
            try:
                return provider.submit(request)
            except ProviderError as e:
                if not e.is_rate_limit or attempt >= self.rate_limit_retries:
                    raise
                delay = self.backoff_delay(attempt)
                attempt += 1
                print(f"[Controller] rate limited by {provider.name}, retry {attempt}/{self.rate_limit_retries} "
                      f"in {delay:.1f}s")
                self.sleep(delay)
