"""
Tests for the model registry and parameter snapping.
"""

from __future__ import annotations

import pytest

from genstudio.services.job_store import GenerationKind
from genstudio.services.model_registry import (
    UnknownModelError,
    UnknownProviderError,
    get_provider,
    list_models,
    resolve_model,
    snap_aspect_ratio,
    snap_duration,
    snap_resolution,
)


def test_resolve_known_and_alias():
    assert resolve_model("Kling 2.6").provider == "kling"
    assert resolve_model(" Veo 3.0 ").name == "Veo 3"
    assert resolve_model("Nano Banana").provider == "gemini-image"


@pytest.mark.parametrize("name", ["Sora 2", "", None])
def test_unknown_model(name):
    with pytest.raises(UnknownModelError):
        resolve_model(name)


def test_list_by_category():
    images = list_models("image")
    assert images and all(m.category == "image" for m in images)
    assert len(list_models()) == len(images) + len(list_models("video"))


def test_to_dict_capabilities():
    body = resolve_model("Veo 3").to_dict()
    assert body["provider"] == "veo"
    assert body["capabilities"]["durations"] == ["4s", "6s", "8s"]
    assert body["capabilities"]["defaultDuration"] == "6s"


def test_kling_o1_uses_image_model_id_for_images():
    spec = resolve_model("Kling O1")
    assert spec.model_id_for(GenerationKind.TEXT_TO_IMAGE) == "kling-image-o1"
    assert spec.model_id_for(GenerationKind.IMAGE_TO_VIDEO) == "kling-video-o1"


class TestSnapDuration:
    @pytest.mark.parametrize("requested,expected", [(7, 5), (8, 10), (7.5, 10), (3, 5), (30, 10)])
    def test_kling(self, requested, expected):
        assert snap_duration(resolve_model("Kling 2.6"), requested) == expected

    @pytest.mark.parametrize("requested,expected", [(5, 6), (7, 8), (4, 4)])
    def test_veo(self, requested, expected):
        assert snap_duration(resolve_model("Veo 3"), requested) == expected

    def test_missing_uses_default(self):
        assert snap_duration(resolve_model("Veo 3 Fast"), None) == 4

    def test_image_models_have_none(self):
        assert snap_duration(resolve_model("Imagen 4"), 5) is None


class TestSnapAspectRatio:
    def test_supported_is_kept(self):
        assert snap_aspect_ratio(resolve_model("Veo 3"), "9:16") == "9:16"

    @pytest.mark.parametrize("requested,expected", [("4:3", "16:9"), ("3:4", "9:16"), ("21:9", "16:9")])
    def test_same_orientation(self, requested, expected):
        assert snap_aspect_ratio(resolve_model("Veo 3"), requested) == expected

    @pytest.mark.parametrize("requested", ["1:1", "garbage", None])
    def test_falls_back_to_default(self, requested):
        assert snap_aspect_ratio(resolve_model("Veo 3"), requested) == "16:9"


def test_snap_resolution():
    fast = resolve_model("Veo 3 Fast")
    assert snap_resolution(fast, "1080p") == "720p"
    assert snap_resolution(fast, "480P") == "480p"
    assert snap_resolution(fast, None) == "720p"


def test_unknown_provider():
    with pytest.raises(UnknownProviderError):
        get_provider("midjourney")
