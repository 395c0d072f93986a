"""
Imagen Image Generation Service.

Endpoint: POST {GOOGLE_API_BASE}/models/<model>:predict

CURL Test Example:
    curl -X POST \
      'https://generativelanguage.googleapis.com/v1beta/models/imagen-4.0-generate-001:predict' \
      -H 'x-goog-api-key: YOUR_GEMINI_API_KEY' \
      -H 'Content-Type: application/json' \
      -d '{
        "instances": [{"prompt": "A cute robot painting a sunset"}],
        "parameters": {"sampleCount": 1, "aspectRatio": "1:1"}
      }'

The response carries the image inline, so results are returned as data URIs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from genstudio.services.google_client import api_url, google_post, inline_media
from genstudio.services.job_store import ErrorCode
from genstudio.services.providers.base import ProviderError

IMAGEN_TIMEOUT = (15, 120)

ALLOWED_ASPECT_RATIOS = {"1:1", "3:4", "4:3", "9:16", "16:9"}
DEFAULT_EDIT_STRENGTH = 0.7


def imagen_generate(
    model_id: str,
    prompt: str,
    aspect_ratio: str = "1:1",
    image_source: Optional[str] = None,
    strength: Optional[float] = None,
) -> str:
    """
    Generate (or edit, when image_source is given) one image.
    Returns a data URI.
    """
    if aspect_ratio not in ALLOWED_ASPECT_RATIOS:
        aspect_ratio = "1:1"

    instance: Dict[str, Any] = {"prompt": prompt}
    parameters: Dict[str, Any] = {"sampleCount": 1, "aspectRatio": aspect_ratio}

    if image_source:
        image_b64, mime_type = inline_media(image_source)
        instance["image"] = {"bytesBase64Encoded": image_b64, "mimeType": mime_type}
        parameters["editMode"] = "inpainting-insert"
        parameters["strength"] = strength if strength is not None else DEFAULT_EDIT_STRENGTH

    print(f"[Imagen] Request: model={model_id}, aspectRatio={aspect_ratio}, edit={bool(image_source)}")

    result = google_post(
        api_url(f"models/{model_id}:predict"),
        {"instances": [instance], "parameters": parameters},
        tag="Imagen",
        provider="imagen",
        timeout=IMAGEN_TIMEOUT,
    )
    return parse_imagen_response(result)


def parse_imagen_response(result: Dict[str, Any]) -> str:
    """
    Extract the first image as a data URI.

    Imagen response format:
    {"predictions": [{"bytesBase64Encoded": "<base64>", "mimeType": "image/png"}]}
    """
    for pred in result.get("predictions") or []:
        image_b64 = pred.get("bytesBase64Encoded")
        if image_b64:
            mime_type = pred.get("mimeType") or "image/png"
            return f"data:{mime_type};base64,{image_b64}"

    error = result.get("error") or {}
    if error:
        raise ProviderError(f"Imagen error: {error.get('message', 'Unknown error')}", provider="imagen")
    raise ProviderError(
        "Imagen returned no images (prompt may have been filtered)",
        error_code=ErrorCode.GENERATION_FAILED,
        provider="imagen",
    )
