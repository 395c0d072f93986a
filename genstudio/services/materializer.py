"""
Artifact Materializer - turns transient provider URLs into durable ones.

Video flow:
1. Download the video and the provider thumbnail (if any) concurrently
2. Upload both concurrently; no provider thumbnail -> extract the frame at 0.5s
3. Any thumbnail failure -> thumbnail = durable video URL

Image flow: upload the image; the thumbnail is the image itself.

Degraded mode: storage unset/unreachable or the source cannot be fetched ->
the transient refs come back with durable=False. materialize() never
raises, so a completed job is never lost to a storage problem.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import requests

from genstudio.services.google_client import download_bytes, is_google_hosted
from genstudio.services.media_tools import DEFAULT_THUMBNAIL_TIMESTAMP, extract_video_thumbnail
from genstudio.services.providers.base import ProviderError
from genstudio.services.storage_service import S3Storage, StorageUnavailableError, fetch_source_bytes


Downloader = Callable[[str], Tuple[bytes, str]]
Thumbnailer = Callable[[bytes, float], Optional[bytes]]


def default_downloader(url: str) -> Tuple[bytes, str]:
    """Google-hosted files need the API key; everything else is a plain GET."""
    if is_google_hosted(url):
        return download_bytes(url, tag="Materialize", provider="google")
    return fetch_source_bytes(url)


@dataclass
class MaterializedArtifact:
    video_url: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    durable: bool = False


class ArtifactMaterializer:
    def __init__(
        self,
        storage: Optional[S3Storage] = None,
        downloader: Downloader = default_downloader,
        thumbnailer: Thumbnailer = extract_video_thumbnail,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.storage = storage or S3Storage()
        self.downloader = downloader
        self.thumbnailer = thumbnailer
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="materialize")

    # ── Public API ────────────────────────────────────────────
    def materialize(
        self,
        video_url: Optional[str] = None,
        image_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        provider: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> MaterializedArtifact:
        tag = f"[Materialize] job={job_id}"
        transient = MaterializedArtifact(
            video_url=video_url,
            image_url=image_url,
            thumbnail_url=thumbnail_url or video_url or image_url,
            durable=False,
        )

        if not self.storage.is_configured():
            print(f"{tag} storage not configured, keeping transient URLs")
            return transient

        try:
            if video_url:
                return self._materialize_video(video_url, thumbnail_url, provider, tag)
            if image_url:
                durable_image = self.storage.upload_source(image_url, prefix="images", provider=provider)
                return MaterializedArtifact(image_url=durable_image, thumbnail_url=durable_image, durable=True)
        except (StorageUnavailableError, ProviderError, requests.RequestException, ValueError) as e:
            print(f"{tag} failed, keeping transient URLs: {type(e).__name__}: {e}")
            return transient

        return transient

    def thumbnail_for_video(
        self,
        video_bytes: bytes,
        fallback_url: str,
        provider: Optional[str] = None,
    ) -> str:
        """Extract + upload a thumbnail; on any failure return fallback_url."""
        thumb = self._safe_thumbnail(video_bytes)
        if not thumb:
            return fallback_url
        try:
            return self.storage.upload_bytes(thumb, "image/jpeg", prefix="thumbnails", provider=provider)
        except StorageUnavailableError as e:
            print(f"[Materialize] thumbnail upload failed: {e}")
            return fallback_url

    # ── Internals ─────────────────────────────────────────────
    def _materialize_video(self, video_url, thumbnail_url, provider, tag) -> MaterializedArtifact:
        video_future = self._executor.submit(self.downloader, video_url)
        thumb_future = self._executor.submit(self._download_thumbnail, thumbnail_url) if thumbnail_url else None

        video_bytes, content_type = video_future.result()
        provider_thumb = thumb_future.result() if thumb_future else None
        if not content_type.startswith("video/"):
            content_type = "video/mp4"

        upload_future = self._executor.submit(
            self.storage.upload_bytes, video_bytes, content_type, "videos", provider
        )
        thumb_upload_future = self._executor.submit(self._upload_thumbnail, provider_thumb, video_bytes, provider)

        durable_video = upload_future.result()
        durable_thumb = thumb_upload_future.result() or durable_video

        print(f"{tag} stored video={durable_video} thumbnail={durable_thumb}")
        return MaterializedArtifact(video_url=durable_video, thumbnail_url=durable_thumb, durable=True)

    def _download_thumbnail(self, url: str) -> Optional[bytes]:
        try:
            data, _ = self.downloader(url)
            return data
        except (ProviderError, requests.RequestException, ValueError) as e:
            print(f"[Materialize] provider thumbnail download failed: {e}")
            return None

    def _safe_thumbnail(self, video_bytes: bytes) -> Optional[bytes]:
        try:
            return self.thumbnailer(video_bytes, DEFAULT_THUMBNAIL_TIMESTAMP)
        except OSError as e:
            print(f"[Materialize] thumbnail extraction failed: {e}")
            return None

    def _upload_thumbnail(self, provider_thumb: Optional[bytes], video_bytes: bytes, provider) -> Optional[str]:
        thumb = provider_thumb or self._safe_thumbnail(video_bytes)
        if not thumb:
            return None
        try:
            return self.storage.upload_bytes(thumb, "image/jpeg", prefix="thumbnails", provider=provider)
        except StorageUnavailableError as e:
            print(f"[Materialize] thumbnail upload failed: {e}")
            return None
