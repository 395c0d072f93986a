"""
Async dispatch service.

Background work (provider submission, webhook materialization, passive
auto-post) runs on one shared ThreadPoolExecutor. Every task goes through
submit_supervised() so a crash is always logged with the job id instead
of vanishing inside a Future nobody reads.
"""

from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor
import time
import traceback
from typing import Any, Callable, Optional

import requests

from genstudio.services.job_store import BaseJobStore, ErrorCode
from genstudio.services.providers.base import GenerationProvider, GenerationRequest, ProviderError
from genstudio.utils import log_event

# Shared executor for background tasks
_background_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="job_worker")


def get_executor() -> ThreadPoolExecutor:
    return _background_executor


def submit_supervised(
    fn: Callable[..., Any],
    *args: Any,
    job_id: Optional[str] = None,
    label: str = "task",
    executor: Optional[Executor] = None,
    **kwargs: Any,
) -> Future:
    """Run fn in the background; any exception is logged with the job id."""
    future = (executor or get_executor()).submit(fn, *args, **kwargs)

    def _on_done(f: Future):
        if f.cancelled():
            print(f"[ASYNC] {label} cancelled job_id={job_id}")
            return
        exc = f.exception()
        if exc is not None:
            print(f"[ASYNC] ERROR: {label} failed job_id={job_id}: {type(exc).__name__}: {exc}")
            log_event("background_task_failed", {"job_id": job_id, "label": label, "error": str(exc)})

    future.add_done_callback(_on_done)
    return future


def dispatch_generation(
    store: BaseJobStore,
    provider: GenerationProvider,
    job_id: str,
    request: GenerationRequest,
    reconciler=None,
) -> Optional[str]:
    """
    Submit one job to its provider and record the outcome.

    - handle returned  -> stored on the job, reconciler armed
    - immediate result -> completed through the reconciler (claim + materialize)
    - provider error   -> job failed with the classified error code
    - anything else    -> job failed INVALID_REQUEST (ValueError) or UNKNOWN_ERROR

    Returns the handle (None for immediate or failed submissions).
    """
    start_time = time.time()
    print(f"[JOB] provider_started job_id={job_id} provider={provider.name} kind={request.kind}")

    try:
        result = provider.submit(request)
    except ProviderError as e:
        print(f"[ASYNC] ERROR: {provider.name} submit failed job_id={job_id} code={e.error_code}: {e}")
        store.mark_failed(job_id, e.error_code, str(e))
        return None
    except requests.RequestException as e:
        print(f"[ASYNC] ERROR: {provider.name} network error job_id={job_id}: {e}")
        store.mark_failed(job_id, ErrorCode.UNKNOWN_ERROR, f"Network error: {e}")
        return None
    except Exception as e:
        # Bad input media (e.g. undecodable base64) surfaces as ValueError
        code = ErrorCode.INVALID_REQUEST if isinstance(e, ValueError) else ErrorCode.UNKNOWN_ERROR
        print(f"[ASYNC] ERROR: {provider.name} submit crashed job_id={job_id}: {type(e).__name__}: {e}")
        traceback.print_exc()
        store.mark_failed(job_id, code, f"{type(e).__name__}: {e}")
        return None

    duration_ms = int((time.time() - start_time) * 1000)

    if result.job_handle:
        if not store.set_handle(job_id, result.job_handle, result.meta or None):
            print(f"[ASYNC] job {job_id} already terminal, handle {result.job_handle} dropped")
            return None
        print(f"[JOB] provider_done job_id={job_id} duration_ms={duration_ms} upstream_id={result.job_handle}")
        if reconciler is not None:
            reconciler.on_job_submitted()
        return result.job_handle

    if result.immediate:
        print(f"[JOB] provider_done job_id={job_id} duration_ms={duration_ms} immediate=true")
        if reconciler is not None:
            reconciler.complete_immediate(job_id, result)
        else:
            store.claim_completion(job_id, result.video_url, result.image_url, result.thumbnail_url)
        return None

    store.mark_failed(job_id, ErrorCode.GENERATION_FAILED, f"{provider.name} returned no job handle or artifact")
    return None
