"""Imagen Provider - synchronous image generation (artifact returned inline)."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from genstudio.services.google_client import check_google_configured
from genstudio.services.imagen_service import imagen_generate, parse_imagen_response
from genstudio.services.job_store import GenerationKind
from genstudio.services.providers.base import GenerationProvider, GenerationRequest, ProviderError, SubmitResult


class ImagenProvider(GenerationProvider):
    name = "imagen"

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return check_google_configured()

    def submit(self, request: GenerationRequest) -> SubmitResult:
        image_source = request.input_image_url if request.kind == GenerationKind.IMAGE_TO_IMAGE else None
        data_uri = imagen_generate(
            model_id=request.provider_model_id,
            prompt=request.prompt or "",
            aspect_ratio=request.aspect_ratio or "1:1",
            image_source=image_source,
            strength=request.strength,
        )
        return SubmitResult(image_url=data_uri)

    def extract_artifact_ref(self, response: Dict[str, Any]) -> Optional[str]:
        try:
            return parse_imagen_response(response)
        except ProviderError:
            return None
