"""
TikTok auto-post for finished motion-control videos.

Passive cross-reference only: the result is written to auto_post_id /
auto_post_status and never touches the job's own status. Posting uses
TikTok's PULL_FROM_URL source, so the video must already be durable.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from genstudio.config import config
from genstudio.services.job_store import ArtifactState, BaseJobStore, GenerationKind, JobStatus

DEFAULT_TITLE = "AI Generated Motion Control Video #AI #MotionControl"


class TikTokError(Exception):
    pass


def _headers(access_token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json; charset=UTF-8",
    }


def _raise_for_body(resp: requests.Response, what: str) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    err = body.get("error") or {}
    if not resp.ok or (err.get("code") and err.get("code") != "ok"):
        message = err.get("message") or resp.text[:200]
        raise TikTokError(f"TikTok {what} error: {message}")
    return body.get("data") or {}


def init_post_from_url(
    video_url: str,
    title: str,
    access_token: Optional[str] = None,
    privacy_level: Optional[str] = None,
) -> str:
    """Start a pull-from-URL post. Returns the publish id."""
    token = access_token or config.TIKTOK_ACCESS_TOKEN
    payload = {
        "post_info": {
            "title": title[:150],
            "privacy_level": privacy_level or config.TIKTOK_PRIVACY_LEVEL,
            "disable_duet": False,
            "disable_comment": False,
            "disable_stitch": False,
            "video_cover_timestamp_ms": 1000,
        },
        "source_info": {
            "source": "PULL_FROM_URL",
            "video_url": video_url,
        },
    }
    resp = requests.post(
        f"{config.TIKTOK_API_BASE}/post/publish/video/init/",
        headers=_headers(token),
        json=payload,
        timeout=30,
    )
    data = _raise_for_body(resp, "post init")
    publish_id = data.get("publish_id")
    if not publish_id:
        raise TikTokError("TikTok post init returned no publish_id")
    return publish_id


class AutoPoster:
    """Posts eligible completed jobs; every failure is recorded, never raised."""

    def __init__(self, store: BaseJobStore, enabled: Optional[bool] = None, poster=init_post_from_url):
        self.store = store
        if enabled is None:
            enabled = config.AUTO_POST_MOTION_CONTROL and config.TIKTOK_CONFIGURED
        self.enabled = enabled
        self._poster = poster

    def is_eligible(self, job: Dict[str, Any]) -> bool:
        return (
            self.enabled
            and bool(job.get("auto_post"))
            and job.get("generation_type") == GenerationKind.MOTION_CONTROL
            and job.get("status") == JobStatus.COMPLETED
            and job.get("artifact_state") == ArtifactState.DURABLE
            and not job.get("auto_post_id")
            and bool(job.get("video_url"))
        )

    def maybe_post(self, job: Optional[Dict[str, Any]]) -> Optional[str]:
        if not job or not self.is_eligible(job):
            return None
        title = job.get("prompt") or DEFAULT_TITLE
        try:
            publish_id = self._poster(job["video_url"], title)
        except (TikTokError, requests.RequestException) as e:
            print(f"[AutoPost] job={job['id']} failed: {e}")
            self.store.set_auto_post(job["id"], None, f"failed: {e}")
            return None
        print(f"[AutoPost] job={job['id']} publish_id={publish_id}")
        self.store.set_auto_post(job["id"], publish_id, "PROCESSING_DOWNLOAD")
        return publish_id
