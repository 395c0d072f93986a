"""
Video merge - stitch completed video jobs into one durable video.

The sources are downloaded concurrently into memory, concatenated with
ffmpeg (temp files are removed as soon as the stitch finishes) and the
result is stored as a new completed job with provider "internal".
Reported duration is the sum of the source durations; the thumbnail is
extracted from the merged video and falls back to the video URL.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from genstudio.services.job_store import ArtifactState, BaseJobStore, GenerationKind, JobStatus
from genstudio.services.materializer import ArtifactMaterializer, default_downloader
from genstudio.services.media_tools import MediaToolError, concat_videos, probe_duration
from genstudio.services.storage_service import S3Storage
from genstudio.utils import format_duration, parse_duration_seconds

MERGE_MODEL_NAME = "ffmpeg-concat"


class MergeError(ValueError):
    """Bad merge request; status is the HTTP status the route should use."""

    def __init__(self, message: str, status: int = 400):
        self.status = status
        super().__init__(message)


class VideoMergeService:
    def __init__(
        self,
        store: BaseJobStore,
        storage: S3Storage,
        materializer: ArtifactMaterializer,
        downloader: Callable[[str], Tuple[bytes, str]] = default_downloader,
        concat: Callable[[List[bytes]], bytes] = concat_videos,
        probe: Callable[[bytes], float] = probe_duration,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.storage = storage
        self.materializer = materializer
        self.downloader = downloader
        self.concat = concat
        self.probe = probe
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="merge")

    def _load_sources(self, ordered_job_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not ordered_job_ids or len(ordered_job_ids) < 2:
            raise MergeError("orderedJobIds must list at least two jobs")
        if len(set(ordered_job_ids)) != len(ordered_job_ids):
            raise MergeError("orderedJobIds contains duplicates")

        jobs = self.store.get_many(list(ordered_job_ids))
        if len(jobs) != len(ordered_job_ids):
            found = {j["id"] for j in jobs}
            missing = [i for i in ordered_job_ids if i not in found]
            raise MergeError(f"Generations not found: {', '.join(missing)}", status=404)

        for job in jobs:
            if job["status"] != JobStatus.COMPLETED or not job.get("video_url"):
                raise MergeError(f"Generation {job['id']} has no completed video")
        return jobs

    def merge(
        self,
        ordered_job_ids: Sequence[str],
        pipeline_run_id: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Returns the new merge job.

        Raises:
            MergeError: bad ids or sources not ready
            requests.RequestException, ProviderError: a source video could not be downloaded
            MediaToolError: ffmpeg failed
            StorageUnavailableError: merged file could not be stored
        """
        jobs = self._load_sources(ordered_job_ids)
        print(f"[Merge] merging {len(jobs)} videos run={pipeline_run_id}")

        downloads = list(self._executor.map(lambda j: self.downloader(j["video_url"]), jobs))
        videos = [data for data, _ in downloads]

        total = 0.0
        for job, data in zip(jobs, videos):
            total += self._duration_of(job, data)

        merged = self.concat(videos)
        video_url = self.storage.upload_bytes(merged, "video/mp4", prefix="videos", provider="merge")
        thumbnail_url = self.materializer.thumbnail_for_video(merged, fallback_url=video_url, provider="merge")

        record = self.store.create({
            "generation_type": GenerationKind.VIDEO_TO_VIDEO,
            "feature": "merge",
            "provider": "internal",
            "model_name": MERGE_MODEL_NAME,
            "prompt": prompt or f"Merged {len(jobs)} videos",
            "duration": format_duration(total),
            "aspect_ratio": jobs[0].get("aspect_ratio"),
            "resolution": jobs[0].get("resolution"),
            "audio_enabled": False,
            "status": JobStatus.COMPLETED,
            "video_url": video_url,
            "thumbnail_url": thumbnail_url,
            "artifact_state": ArtifactState.DURABLE,
            "pipeline_run_id": pipeline_run_id,
            "meta": {"source_job_ids": list(ordered_job_ids), "duration_seconds": total},
        })
        print(f"[Merge] job={record['id']} duration={total}s url={video_url}")
        return record

    def _duration_of(self, job: Dict[str, Any], data: bytes) -> float:
        seconds = parse_duration_seconds(job.get("duration"))
        if seconds:
            return seconds
        try:
            return self.probe(data)
        except MediaToolError as e:
            print(f"[Merge] could not probe duration of {job['id']}: {e}")
            return 0.0
