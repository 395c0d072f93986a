"""
Model registry.

Declarative table of every model the backend accepts: owning provider,
provider-side model id, supported generation kinds and the parameter
grid each model accepts. Requests are snapped onto that grid instead of
rejected; an unknown model name is an explicit error.

Providers:
- kling         (Kling 2.6 / 2.6 Standard / 2.5 Turbo / O1 / Motion Control)
- veo           (Veo 3 / 3.1 / 3 Fast)
- imagen        (Imagen 4 / 4 Fast / 4 Ultra, legacy Imagen 3 names)
- gemini-image  (Nano Banana / Nano Banana Pro)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from genstudio.services.job_store import GenerationKind
from genstudio.services.providers.base import GenerationProvider

K = GenerationKind


class UnknownModelError(ValueError):
    """Raised when a request names a model the registry does not know."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Unknown model: {model_name!r}")


class UnknownProviderError(LookupError):
    pass


@dataclass(frozen=True)
class ModelSpec:
    name: str
    provider: str
    provider_model_id: str
    category: str  # "video" or "image"
    kinds: Tuple[str, ...]
    durations: Tuple[int, ...] = ()
    default_duration: Optional[int] = None
    aspect_ratios: Tuple[str, ...] = ("16:9",)
    default_aspect_ratio: str = "16:9"
    resolutions: Tuple[str, ...] = ("720p",)
    default_resolution: str = "720p"
    supports_audio: bool = False
    # Some Kling models use a different id for image tasks
    image_model_id: Optional[str] = None

    def supports(self, kind: str) -> bool:
        return kind in self.kinds

    def model_id_for(self, kind: str) -> str:
        if kind in K.IMAGE_KINDS and self.image_model_id:
            return self.image_model_id
        return self.provider_model_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.name,
            "name": self.name,
            "provider": self.provider,
            "category": self.category,
            "capabilities": {
                "features": list(self.kinds),
                "durations": [f"{d}s" for d in self.durations],
                "defaultDuration": f"{self.default_duration}s" if self.default_duration else None,
                "aspectRatios": list(self.aspect_ratios),
                "defaultAspectRatio": self.default_aspect_ratio,
                "resolutions": list(self.resolutions),
                "defaultResolution": self.default_resolution,
                "supportsAudio": self.supports_audio,
            },
        }


# ── Model table ───────────────────────────────────────────────
_VEO_ASPECTS = ("16:9", "9:16")
_KLING_ASPECTS = ("1:1", "16:9", "9:16", "4:3", "3:4")
_IMAGE_ASPECTS = ("1:1", "3:4", "4:3", "9:16", "16:9")
_KLING_GENERAL = (K.TEXT_TO_VIDEO, K.IMAGE_TO_VIDEO, K.VIDEO_TO_VIDEO, K.TEXT_TO_IMAGE, K.IMAGE_TO_IMAGE)


def _veo(name, model_id, default_duration=6, resolutions=("480p", "720p", "1080p")):
    return ModelSpec(
        name=name,
        provider="veo",
        provider_model_id=model_id,
        category="video",
        kinds=(K.TEXT_TO_VIDEO, K.IMAGE_TO_VIDEO),
        durations=(4, 6, 8),
        default_duration=default_duration,
        aspect_ratios=_VEO_ASPECTS,
        resolutions=resolutions,
        supports_audio=True,
    )


def _kling(name, model_id, resolutions=("480p", "720p", "1080p"), audio=True, image_model_id=None):
    return ModelSpec(
        name=name,
        provider="kling",
        provider_model_id=model_id,
        category="video",
        kinds=_KLING_GENERAL,
        durations=(5, 10),
        default_duration=5,
        aspect_ratios=_KLING_ASPECTS,
        resolutions=resolutions,
        supports_audio=audio,
        image_model_id=image_model_id,
    )


def _image(name, provider, model_id):
    return ModelSpec(
        name=name,
        provider=provider,
        provider_model_id=model_id,
        category="image",
        kinds=(K.TEXT_TO_IMAGE, K.IMAGE_TO_IMAGE),
        aspect_ratios=_IMAGE_ASPECTS,
        default_aspect_ratio="1:1",
        resolutions=("1k",),
        default_resolution="1k",
    )


MODELS: Dict[str, ModelSpec] = {
    spec.name: spec
    for spec in (
        _veo("Veo 3", "veo-3.0-generate-001"),
        _veo("Veo 3.1", "veo-3.1-generate-preview"),
        _veo("Veo 3 Fast", "veo-3.0-fast-generate-001", default_duration=4, resolutions=("480p", "720p")),
        _kling("Kling 2.6", "kling-v2.6-pro"),
        _kling("Kling 2.6 Standard", "kling-v2.6-std"),
        _kling("Kling 2.5 Turbo", "kling-v2.5-turbo", resolutions=("480p", "720p"), audio=False),
        _kling("Kling O1", "kling-video-o1", image_model_id="kling-image-o1"),
        ModelSpec(
            name="Kling Motion Control",
            provider="kling",
            provider_model_id="kling-motion-control",
            category="video",
            kinds=(K.MOTION_CONTROL,),
            durations=(5, 10),
            default_duration=5,
            aspect_ratios=("1:1", "16:9", "9:16"),
            resolutions=("480p", "720p", "1080p"),
        ),
        _image("Imagen 4", "imagen", "imagen-4.0-generate-001"),
        _image("Imagen 4 Fast", "imagen", "imagen-4.0-fast-generate-001"),
        _image("Imagen 4 Ultra", "imagen", "imagen-4.0-ultra-generate-001"),
        _image("Imagen Nano", "imagen", "imagen-4.0-fast-generate-001"),
        # Legacy names kept so old clients keep working
        _image("Imagen 3", "imagen", "imagen-4.0-generate-001"),
        _image("Imagen 3 Fast", "imagen", "imagen-4.0-fast-generate-001"),
        _image("Nano Banana", "gemini-image", "gemini-2.5-flash-image"),
        _image("Nano Banana Pro", "gemini-image", "gemini-3-pro-image-preview"),
    )
}

# Display aliases that map onto an entry above
_ALIASES = {
    "Veo 3.0": "Veo 3",
}


def resolve_model(model_name: Optional[str]) -> ModelSpec:
    """Look up a model by display name. Raises UnknownModelError."""
    name = (model_name or "").strip()
    name = _ALIASES.get(name, name)
    spec = MODELS.get(name)
    if spec is None:
        raise UnknownModelError(model_name or "")
    return spec


def list_models(category: Optional[str] = None) -> List[ModelSpec]:
    return [m for m in MODELS.values() if category is None or m.category == category]


# ── Parameter snapping ────────────────────────────────────────
def snap_duration(spec: ModelSpec, requested: Optional[float]) -> Optional[int]:
    """
    Nearest supported duration; an exact midpoint goes to the longer value.
    Image models have no duration.
    """
    if not spec.durations:
        return None
    if requested is None or requested <= 0:
        return spec.default_duration or spec.durations[0]
    return min(spec.durations, key=lambda d: (abs(d - requested), -d))


def _ratio_value(aspect_ratio: str) -> Optional[float]:
    try:
        w, h = aspect_ratio.split(":", 1)
        return float(w) / float(h)
    except (ValueError, ZeroDivisionError, AttributeError):
        return None


def snap_aspect_ratio(spec: ModelSpec, requested: Optional[str]) -> str:
    """
    Keep a supported ratio; otherwise pick the supported ratio with the
    same orientation closest in shape, falling back to the model default.
    """
    if requested in spec.aspect_ratios:
        return requested
    value = _ratio_value(requested or "")
    if value is None or value == 1.0:
        return spec.default_aspect_ratio

    portrait = value < 1.0
    candidates = [
        (abs(v - value), r)
        for r in spec.aspect_ratios
        for v in [_ratio_value(r)]
        if v is not None and v != 1.0 and (v < 1.0) == portrait
    ]
    if not candidates:
        return spec.default_aspect_ratio
    return min(candidates)[1]


def snap_resolution(spec: ModelSpec, requested: Optional[str]) -> str:
    if requested and requested.lower() in spec.resolutions:
        return requested.lower()
    return spec.default_resolution


# ── Adapter lookup ────────────────────────────────────────────
_PROVIDERS: Dict[str, GenerationProvider] = {}


def register_provider(provider: GenerationProvider) -> None:
    _PROVIDERS[provider.name] = provider


def get_provider(name: str) -> GenerationProvider:
    if not _PROVIDERS:
        _register_defaults()
    provider = _PROVIDERS.get(name)
    if provider is None:
        raise UnknownProviderError(f"No adapter registered for provider {name!r}")
    return provider


def _register_defaults() -> None:
    from genstudio.services.providers.kling_provider import KlingProvider
    from genstudio.services.providers.veo_provider import VeoProvider
    from genstudio.services.providers.imagen_provider import ImagenProvider
    from genstudio.services.providers.gemini_image_provider import GeminiImageProvider

    for provider in (KlingProvider(), VeoProvider(), ImagenProvider(), GeminiImageProvider()):
        _PROVIDERS.setdefault(provider.name, provider)
