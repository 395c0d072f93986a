"""
Job Store - durable GenerationJob records.

Every terminal transition is a single conditional write guarded by
`status = 'in_progress'`, so whichever of the poller, the webhook or a
manual status check gets there first wins and every later writer is a
no-op. Nothing ever moves a job back to in_progress.

Backends:
- PostgresJobStore: psycopg, used when DATABASE_URL is set
- MemoryJobStore: lock-guarded dict for local dev and tests

Job Statuses:
- in_progress: accepted, provider still working
- completed: output recorded (transient URL first, durable after upload)
- failed: error_code + error_message recorded
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from psycopg.types.json import Jsonb

from genstudio.db import USE_DB, Tables, execute, execute_returning, now_utc, query_all, query_one, sql_in_clause


class JobStatus:
    """Valid job statuses."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class ErrorCode:
    """Failure taxonomy stored on failed jobs."""
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    AUTH_ERROR = "AUTH_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_REQUEST = "INVALID_REQUEST"
    GENERATION_FAILED = "GENERATION_FAILED"
    POLLING_ERROR = "POLLING_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class GenerationKind:
    """What a job produces from what."""
    TEXT_TO_VIDEO = "text-to-video"
    IMAGE_TO_VIDEO = "image-to-video"
    VIDEO_TO_VIDEO = "video-to-video"
    MOTION_CONTROL = "motion-control"
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"

    VIDEO_KINDS = (TEXT_TO_VIDEO, IMAGE_TO_VIDEO, VIDEO_TO_VIDEO, MOTION_CONTROL)
    IMAGE_KINDS = (TEXT_TO_IMAGE, IMAGE_TO_IMAGE)
    ALL = VIDEO_KINDS + IMAGE_KINDS


class ArtifactState:
    TRANSIENT = "transient"
    DURABLE = "durable"


# Columns a caller may set on create()
_CREATE_FIELDS = (
    "generation_type",
    "feature",
    "provider",
    "model_name",
    "prompt",
    "duration",
    "aspect_ratio",
    "resolution",
    "audio_enabled",
    "strength",
    "input_image_url",
    "input_video_url",
    "character_image_url",
    "end_frame_url",
    "provider_job_id",
    "status",
    "video_url",
    "image_url",
    "thumbnail_url",
    "artifact_state",
    "error_code",
    "error_message",
    "pipeline_run_id",
    "stage_order",
    "auto_post",
    "meta",
)

_DEFAULTS = {
    "feature": None,
    "prompt": None,
    "duration": None,
    "aspect_ratio": None,
    "resolution": None,
    "audio_enabled": True,
    "strength": None,
    "input_image_url": None,
    "input_video_url": None,
    "character_image_url": None,
    "end_frame_url": None,
    "provider_job_id": None,
    "status": JobStatus.IN_PROGRESS,
    "video_url": None,
    "image_url": None,
    "thumbnail_url": None,
    "artifact_state": None,
    "error_code": None,
    "error_message": None,
    "pipeline_run_id": None,
    "stage_order": None,
    "auto_post": False,
    "auto_post_id": None,
    "auto_post_status": None,
    "meta": None,
}


def _new_record(fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    unknown = set(fields) - set(_CREATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown job fields: {sorted(unknown)}")
    for required in ("generation_type", "provider", "model_name"):
        if not fields.get(required):
            raise ValueError(f"{required} is required")
    if fields.get("status", JobStatus.IN_PROGRESS) not in (JobStatus.IN_PROGRESS,) + JobStatus.TERMINAL:
        raise ValueError(f"Invalid status: {fields.get('status')}")

    record = dict(_DEFAULTS)
    record.update(fields)
    record["meta"] = dict(record.get("meta") or {})
    record["id"] = str(uuid.uuid4())
    record["created_at"] = now
    record["updated_at"] = now
    return record


class BaseJobStore:
    """
    Operations shared by both backends.

    Terminal writers return the updated record when they won the race,
    or None when the job was missing or already terminal.
    """

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def list_jobs(
        self,
        limit: int = 20,
        cursor: Optional[datetime] = None,
        status: Optional[str] = None,
        feature: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def list_by_pipeline(self, pipeline_run_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def find_by_handle(self, handle: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set_handle(self, job_id: str, handle: str, meta_patch: Optional[Dict[str, Any]] = None) -> bool:
        """Record the provider handle (and extra poll metadata) while in_progress."""
        raise NotImplementedError

    def claim_completion(
        self,
        job_id: str,
        video_url: Optional[str] = None,
        image_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def mark_failed(self, job_id: str, error_code: str, error_message: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def finalize_artifacts(
        self,
        job_id: str,
        video_url: Optional[str] = None,
        image_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def list_in_progress_with_handle(self, limit: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def list_in_progress_without_handle(self, limit: int) -> List[Dict[str, Any]]:
        """in_progress jobs that never got a provider handle, oldest first."""
        raise NotImplementedError

    def set_auto_post(self, job_id: str, post_id: Optional[str], post_status: str) -> bool:
        raise NotImplementedError

    def delete_many(self, job_ids: List[str]) -> int:
        raise NotImplementedError

    def delete(self, job_id: str) -> bool:
        return self.delete_many([job_id]) > 0

    def get_many(self, job_ids: List[str]) -> List[Dict[str, Any]]:
        """Fetch jobs preserving the requested order; missing ids are skipped."""
        found = []
        for job_id in job_ids:
            job = self.get(job_id)
            if job:
                found.append(job)
        return found


# ─────────────────────────────────────────────────────────────
# In-memory backend
# ─────────────────────────────────────────────────────────────
class MemoryJobStore(BaseJobStore):
    """Lock-guarded in-process store. Returned records are copies."""

    def __init__(self, clock: Callable[[], datetime] = now_utc):
        self._clock = clock
        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _copy(self, job):
        return copy.deepcopy(job) if job is not None else None

    def create(self, fields):
        record = _new_record(fields, self._clock())
        with self._lock:
            self._jobs[record["id"]] = record
            return self._copy(record)

    def get(self, job_id):
        with self._lock:
            return self._copy(self._jobs.get(job_id))

    def list_jobs(self, limit=20, cursor=None, status=None, feature=None):
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if (status is None or j["status"] == status)
                and (feature is None or j["feature"] == feature)
                and (cursor is None or j["created_at"] < cursor)
            ]
            jobs.sort(key=lambda j: j["created_at"], reverse=True)
            return [self._copy(j) for j in jobs[:limit]]

    def list_by_pipeline(self, pipeline_run_id):
        with self._lock:
            jobs = [j for j in self._jobs.values() if j["pipeline_run_id"] == pipeline_run_id]
            jobs.sort(key=lambda j: j["created_at"])
            return [self._copy(j) for j in jobs]

    def find_by_handle(self, handle):
        if not handle:
            return None
        with self._lock:
            for job in self._jobs.values():
                if job["provider_job_id"] == handle:
                    return self._copy(job)
        return None

    def _update_in_progress(self, job_id, **changes):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job["status"] != JobStatus.IN_PROGRESS:
                return None
            job.update(changes)
            job["updated_at"] = self._clock()
            return self._copy(job)

    def set_handle(self, job_id, handle, meta_patch=None):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job["status"] != JobStatus.IN_PROGRESS:
                return False
            job["provider_job_id"] = handle
            if meta_patch:
                job["meta"] = {**(job.get("meta") or {}), **meta_patch}
            job["updated_at"] = self._clock()
            return True

    def claim_completion(self, job_id, video_url=None, image_url=None, thumbnail_url=None):
        return self._update_in_progress(
            job_id,
            status=JobStatus.COMPLETED,
            video_url=video_url,
            image_url=image_url,
            thumbnail_url=thumbnail_url,
            artifact_state=ArtifactState.TRANSIENT,
        )

    def mark_failed(self, job_id, error_code, error_message):
        return self._update_in_progress(
            job_id,
            status=JobStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
        )

    def finalize_artifacts(self, job_id, video_url=None, image_url=None, thumbnail_url=None):
        with self._lock:
            job = self._jobs.get(job_id)
            if (
                job is None
                or job["status"] != JobStatus.COMPLETED
                or job["artifact_state"] != ArtifactState.TRANSIENT
            ):
                return None
            job["video_url"] = video_url if video_url is not None else job["video_url"]
            job["image_url"] = image_url if image_url is not None else job["image_url"]
            job["thumbnail_url"] = thumbnail_url if thumbnail_url is not None else job["thumbnail_url"]
            job["artifact_state"] = ArtifactState.DURABLE
            job["updated_at"] = self._clock()
            return self._copy(job)

    def list_in_progress_with_handle(self, limit):
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if j["status"] == JobStatus.IN_PROGRESS and j["provider_job_id"]
            ]
            jobs.sort(key=lambda j: j["created_at"])
            return [self._copy(j) for j in jobs[:limit]]

    def list_in_progress_without_handle(self, limit):
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if j["status"] == JobStatus.IN_PROGRESS and not j["provider_job_id"]
            ]
            jobs.sort(key=lambda j: j["created_at"])
            return [self._copy(j) for j in jobs[:limit]]

    def set_auto_post(self, job_id, post_id, post_status):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job["auto_post_id"] = post_id
            job["auto_post_status"] = post_status
            job["updated_at"] = self._clock()
            return True

    def delete_many(self, job_ids):
        with self._lock:
            deleted = 0
            for job_id in job_ids:
                if self._jobs.pop(job_id, None) is not None:
                    deleted += 1
            return deleted


# ─────────────────────────────────────────────────────────────
# PostgreSQL backend
# ─────────────────────────────────────────────────────────────
class PostgresJobStore(BaseJobStore):
    """Raw-SQL store over the generations table."""

    def create(self, fields):
        record = _new_record(fields, now_utc())
        record["meta"] = Jsonb(record["meta"])
        columns = list(record.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        return execute_returning(
            f"""
            INSERT INTO {Tables.GENERATIONS} ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING *
            """,
            tuple(record[c] for c in columns),
        )

    def get(self, job_id):
        return query_one(f"SELECT * FROM {Tables.GENERATIONS} WHERE id = %s", (job_id,))

    def list_jobs(self, limit=20, cursor=None, status=None, feature=None):
        clauses, params = [], []
        if status:
            clauses.append("status = %s")
            params.append(status)
        if feature:
            clauses.append("feature = %s")
            params.append(feature)
        if cursor:
            clauses.append("created_at < %s")
            params.append(cursor)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        return query_all(
            f"SELECT * FROM {Tables.GENERATIONS} {where} ORDER BY created_at DESC LIMIT %s",
            tuple(params),
        )

    def list_by_pipeline(self, pipeline_run_id):
        return query_all(
            f"SELECT * FROM {Tables.GENERATIONS} WHERE pipeline_run_id = %s ORDER BY created_at ASC",
            (pipeline_run_id,),
        )

    def find_by_handle(self, handle):
        if not handle:
            return None
        return query_one(
            f"SELECT * FROM {Tables.GENERATIONS} WHERE provider_job_id = %s ORDER BY created_at DESC LIMIT 1",
            (handle,),
        )

    def set_handle(self, job_id, handle, meta_patch=None):
        row = execute_returning(
            f"""
            UPDATE {Tables.GENERATIONS}
            SET provider_job_id = %s,
                meta = COALESCE(meta, '{{}}'::jsonb) || %s,
                updated_at = NOW()
            WHERE id = %s AND status = 'in_progress'
            RETURNING id
            """,
            (handle, Jsonb(meta_patch or {}), job_id),
        )
        return row is not None

    def claim_completion(self, job_id, video_url=None, image_url=None, thumbnail_url=None):
        return execute_returning(
            f"""
            UPDATE {Tables.GENERATIONS}
            SET status = 'completed',
                video_url = %s,
                image_url = %s,
                thumbnail_url = %s,
                artifact_state = 'transient',
                updated_at = NOW()
            WHERE id = %s AND status = 'in_progress'
            RETURNING *
            """,
            (video_url, image_url, thumbnail_url, job_id),
        )

    def mark_failed(self, job_id, error_code, error_message):
        return execute_returning(
            f"""
            UPDATE {Tables.GENERATIONS}
            SET status = 'failed',
                error_code = %s,
                error_message = %s,
                updated_at = NOW()
            WHERE id = %s AND status = 'in_progress'
            RETURNING *
            """,
            (error_code, error_message, job_id),
        )

    def finalize_artifacts(self, job_id, video_url=None, image_url=None, thumbnail_url=None):
        return execute_returning(
            f"""
            UPDATE {Tables.GENERATIONS}
            SET video_url = COALESCE(%s, video_url),
                image_url = COALESCE(%s, image_url),
                thumbnail_url = COALESCE(%s, thumbnail_url),
                artifact_state = 'durable',
                updated_at = NOW()
            WHERE id = %s AND status = 'completed' AND artifact_state = 'transient'
            RETURNING *
            """,
            (video_url, image_url, thumbnail_url, job_id),
        )

    def list_in_progress_with_handle(self, limit):
        return query_all(
            f"""
            SELECT * FROM {Tables.GENERATIONS}
            WHERE status = 'in_progress' AND provider_job_id IS NOT NULL
            ORDER BY created_at ASC
            LIMIT %s
            """,
            (limit,),
        )

    def list_in_progress_without_handle(self, limit):
        return query_all(
            f"""
            SELECT * FROM {Tables.GENERATIONS}
            WHERE status = 'in_progress' AND provider_job_id IS NULL
            ORDER BY created_at ASC
            LIMIT %s
            """,
            (limit,),
        )

    def set_auto_post(self, job_id, post_id, post_status):
        count = execute(
            f"""
            UPDATE {Tables.GENERATIONS}
            SET auto_post_id = %s, auto_post_status = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (post_id, post_status, job_id),
        )
        return count > 0

    def delete_many(self, job_ids):
        if not job_ids:
            return 0
        placeholders, params = sql_in_clause(list(job_ids))
        return execute(f"DELETE FROM {Tables.GENERATIONS} WHERE id IN ({placeholders})", params)


# ─────────────────────────────────────────────────────────────
# Response shaping
# ─────────────────────────────────────────────────────────────
def _iso(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def format_job(job: Dict[str, Any]) -> Dict[str, Any]:
    """Render a job record as the camelCase API shape."""
    return {
        "id": job["id"],
        "generationType": job.get("generation_type"),
        "feature": job.get("feature"),
        "provider": job.get("provider"),
        "modelName": job.get("model_name"),
        "prompt": job.get("prompt"),
        "duration": job.get("duration"),
        "aspectRatio": job.get("aspect_ratio"),
        "resolution": job.get("resolution"),
        "audioEnabled": job.get("audio_enabled"),
        "strength": job.get("strength"),
        "inputImageUrl": job.get("input_image_url"),
        "inputVideoUrl": job.get("input_video_url"),
        "characterImageUrl": job.get("character_image_url"),
        "endFrameUrl": job.get("end_frame_url"),
        "providerJobId": job.get("provider_job_id"),
        "status": job.get("status"),
        "videoUrl": job.get("video_url"),
        "imageUrl": job.get("image_url"),
        "thumbnailUrl": job.get("thumbnail_url"),
        "artifactState": job.get("artifact_state"),
        "errorCode": job.get("error_code"),
        "errorMessage": job.get("error_message"),
        "pipelineRunId": job.get("pipeline_run_id"),
        "stageOrder": job.get("stage_order"),
        "autoPostToTiktok": bool(job.get("auto_post")),
        "tiktokPostId": job.get("auto_post_id"),
        "tiktokPostStatus": job.get("auto_post_status"),
        "meta": job.get("meta") or {},
        "createdAt": _iso(job.get("created_at")),
        "updatedAt": _iso(job.get("updated_at")),
    }


def job_age_seconds(job: Dict[str, Any], now: datetime) -> float:
    created = job.get("created_at")
    if not isinstance(created, datetime):
        return 0.0
    return (now - created).total_seconds()


def parse_cursor(value: Optional[str]) -> Optional[datetime]:
    """Cursor is the createdAt of the last item of the previous page."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def page_cursor(items: List[Dict[str, Any]], limit: int) -> Tuple[bool, Optional[str]]:
    if len(items) < limit or not items:
        return False, None
    return True, _iso(items[-1]["created_at"])


def create_default_store() -> BaseJobStore:
    if USE_DB:
        print("[JobStore] Using PostgreSQL store")
        return PostgresJobStore()
    print("[JobStore] DATABASE_URL not set - using in-memory store")
    return MemoryJobStore()
