"""Gemini image Provider ("Nano Banana") - synchronous, artifact returned inline."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from genstudio.services.gemini_image_service import gemini_generate_image, parse_gemini_image_response
from genstudio.services.google_client import check_google_configured
from genstudio.services.job_store import GenerationKind
from genstudio.services.providers.base import GenerationProvider, GenerationRequest, ProviderError, SubmitResult


class GeminiImageProvider(GenerationProvider):
    name = "gemini-image"

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return check_google_configured()

    def submit(self, request: GenerationRequest) -> SubmitResult:
        image_source = request.input_image_url if request.kind == GenerationKind.IMAGE_TO_IMAGE else None
        data_uri = gemini_generate_image(
            model_id=request.provider_model_id,
            prompt=request.prompt or "",
            image_source=image_source,
        )
        return SubmitResult(image_url=data_uri)

    def extract_artifact_ref(self, response: Dict[str, Any]) -> Optional[str]:
        try:
            return parse_gemini_image_response(response)
        except ProviderError:
            return None
