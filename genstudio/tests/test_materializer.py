"""
Tests for the artifact materializer.
"""

from __future__ import annotations

from genstudio.services.materializer import ArtifactMaterializer
from genstudio.services.providers.base import ProviderError
from genstudio.tests.conftest import FakeStorage, InlineExecutor, fake_downloader, fake_thumbnailer


def _materializer(storage, thumbnailer=fake_thumbnailer, downloader=fake_downloader):
    return ArtifactMaterializer(
        storage=storage, downloader=downloader, thumbnailer=thumbnailer, executor=InlineExecutor(),
    )


def test_video_with_extracted_thumbnail(storage, materializer):
    result = materializer.materialize(video_url="https://kling.example/v.mp4", provider="kling", job_id="j1")

    assert result.durable is True
    assert result.video_url == "https://media.example.com/videos/1"
    assert result.thumbnail_url == "https://media.example.com/thumbnails/2"
    assert storage.uploads[1]["data"] == b"extracted-frame"
    assert storage.uploads[1]["content_type"] == "image/jpeg"


def test_video_prefers_provider_thumbnail(storage, materializer):
    result = materializer.materialize(
        video_url="https://kling.example/v.mp4", thumbnail_url="https://kling.example/thumb.jpg",
    )
    assert result.durable is True
    assert storage.uploads[1]["data"] == b"provider-thumb"


def test_thumbnail_falls_back_to_video_url(storage):
    materializer = _materializer(storage, thumbnailer=lambda data, ts: None)
    result = materializer.materialize(video_url="https://kling.example/v.mp4")

    assert result.durable is True
    assert result.thumbnail_url == result.video_url
    assert len(storage.uploads) == 1


def test_broken_provider_thumbnail_falls_back_to_extraction(storage):
    def downloader(url):
        if "thumb" in url:
            raise ProviderError("HTTP 404", status_code=404)
        return b"video", "video/mp4"

    result = _materializer(storage, downloader=downloader).materialize(
        video_url="https://kling.example/v.mp4", thumbnail_url="https://kling.example/thumb.jpg",
    )
    assert result.thumbnail_url == "https://media.example.com/thumbnails/2"
    assert storage.uploads[1]["data"] == b"extracted-frame"


def test_non_video_content_type_is_stored_as_mp4(storage):
    _materializer(storage, downloader=lambda url: (b"v", "application/octet-stream")).materialize(
        video_url="https://x/v",
    )
    assert storage.uploads[0]["content_type"] == "video/mp4"


def test_image(storage, materializer):
    result = materializer.materialize(image_url="https://gemini.example/i.png", provider="gemini")
    assert result.durable is True
    assert result.image_url == "https://media.example.com/images/1"
    assert result.thumbnail_url == result.image_url


class TestDegradedMode:
    def test_storage_not_configured(self):
        storage = FakeStorage(configured=False)
        result = _materializer(storage).materialize(
            video_url="https://kling.example/v.mp4", thumbnail_url="https://kling.example/t.jpg",
        )
        assert result.durable is False
        assert result.video_url == "https://kling.example/v.mp4"
        assert result.thumbnail_url == "https://kling.example/t.jpg"
        assert storage.uploads == []

    def test_storage_outage(self):
        storage = FakeStorage(fail=True)
        result = _materializer(storage).materialize(video_url="https://kling.example/v.mp4")
        assert result.durable is False
        assert result.thumbnail_url == "https://kling.example/v.mp4"

    def test_source_download_fails(self, storage):
        def downloader(url):
            raise ProviderError("HTTP 403", status_code=403)

        result = _materializer(storage, downloader=downloader).materialize(image_url="https://x/i.png")
        # Images are fetched by the storage layer, videos by the downloader
        assert result.durable is True

        result = _materializer(storage, downloader=downloader).materialize(video_url="https://x/v.mp4")
        assert result.durable is False
        assert result.video_url == "https://x/v.mp4"


class TestThumbnailForVideo:
    def test_uploads_extracted_frame(self, storage, materializer):
        url = materializer.thumbnail_for_video(b"merged", "https://s3/merged.mp4", provider="internal")
        assert url == "https://media.example.com/thumbnails/1"
        assert storage.uploads[0]["provider"] == "internal"

    def test_falls_back_when_extraction_fails(self, storage):
        url = _materializer(storage, thumbnailer=lambda data, ts: None).thumbnail_for_video(
            b"merged", "https://s3/merged.mp4",
        )
        assert url == "https://s3/merged.mp4"

    def test_falls_back_when_upload_fails(self):
        url = _materializer(FakeStorage(fail=True)).thumbnail_for_video(b"merged", "https://s3/merged.mp4")
        assert url == "https://s3/merged.mp4"
