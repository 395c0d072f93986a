"""
Gemini Image Generation Service ("Nano Banana").

Endpoint: POST {GOOGLE_API_BASE}/models/<model>:generateContent

CURL Test Example:
    curl -X POST \
      'https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash-image:generateContent' \
      -H 'x-goog-api-key: YOUR_GEMINI_API_KEY' \
      -H 'Content-Type: application/json' \
      -d '{"contents": [{"parts": [{"text": "A watercolor fox"}]}]}'

Image-to-image sends the reference image as an inlineData part ahead of
the text part. Output comes back inline and is returned as a data URI.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from genstudio.services.google_client import api_url, google_post, inline_media
from genstudio.services.job_store import ErrorCode
from genstudio.services.providers.base import ProviderError

GEMINI_IMAGE_TIMEOUT = (15, 120)

GENERATION_CONFIG = {
    "temperature": 1.0,
    "topK": 40,
    "topP": 0.95,
}


def gemini_generate_image(model_id: str, prompt: str, image_source: Optional[str] = None) -> str:
    """
    Generate one image, optionally conditioned on a reference image.
    Returns a data URI.
    """
    parts: List[Dict[str, Any]] = []
    if image_source:
        image_b64, mime_type = inline_media(image_source)
        parts.append({"inlineData": {"mimeType": mime_type, "data": image_b64}})
    parts.append({"text": prompt})

    payload = {
        "contents": [{"parts": parts}],
        "generationConfig": dict(GENERATION_CONFIG),
    }

    print(f"[Gemini Image] Request: model={model_id}, reference={'yes' if image_source else 'no'}")
    result = google_post(
        api_url(f"models/{model_id}:generateContent"),
        payload,
        tag="Gemini Image",
        provider="gemini-image",
        timeout=GEMINI_IMAGE_TIMEOUT,
    )
    return parse_gemini_image_response(result)


def parse_gemini_image_response(result: Dict[str, Any]) -> str:
    """Pull the first inline image out of a generateContent response."""
    for candidate in result.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return f"data:{mime_type};base64,{inline['data']}"

    # Older responses used the Imagen predictions shape
    for pred in result.get("predictions") or []:
        if pred.get("bytesBase64Encoded"):
            mime_type = pred.get("mimeType") or "image/png"
            return f"data:{mime_type};base64,{pred['bytesBase64Encoded']}"

    block_reason = (result.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise ProviderError(
            f"Gemini blocked the prompt: {block_reason}",
            error_code=ErrorCode.GENERATION_FAILED,
            provider="gemini-image",
        )
    raise ProviderError(
        "Gemini returned no image data",
        error_code=ErrorCode.GENERATION_FAILED,
        provider="gemini-image",
    )
