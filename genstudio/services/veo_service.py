"""
Veo 3 Video Generation Service.

Uses the Gemini Developer API long-running predict endpoint.

Start Endpoint: POST {GOOGLE_API_BASE}/models/<model>:predictLongRunning
Poll Endpoint:  GET  {GOOGLE_API_BASE}/<operation_name>

CURL Test Examples:

1) Start video generation:
    curl -X POST \
      'https://generativelanguage.googleapis.com/v1beta/models/veo-3.1-generate-preview:predictLongRunning' \
      -H 'x-goog-api-key: YOUR_GEMINI_API_KEY' \
      -H 'Content-Type: application/json' \
      -d '{
        "instances": [{"prompt": "A cat walking on a beach at sunset"}],
        "parameters": {"sampleCount": 1, "aspectRatio": "16:9", "resolution": "720p", "durationSeconds": 6}
      }'

2) Poll operation status:
    curl 'https://generativelanguage.googleapis.com/v1beta/models/veo-3.1-generate-preview/operations/XYZ' \
      -H 'x-goog-api-key: YOUR_GEMINI_API_KEY'

CRITICAL CONSTRAINTS:
- aspectRatio: ONLY "16:9" or "9:16"
- durationSeconds: ONLY 4, 6, 8 (integers)
- 1080p requires durationSeconds = 8
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from genstudio.services.google_client import api_url, google_get, google_post, inline_media
from genstudio.services.providers.base import ProviderError, error_message_from_response

VEO_TIMEOUT = (15, 300)  # (connect_timeout, read_timeout)

ALLOWED_VIDEO_ASPECT_RATIOS = {"16:9", "9:16"}
ALLOWED_DURATIONS = (4, 6, 8)
WIRE_RESOLUTIONS = {"720p", "1080p"}


def build_veo_parameters(duration_seconds: int, aspect_ratio: str, resolution: str) -> Dict[str, Any]:
    """Clamp parameters onto what the Veo endpoint accepts."""
    if aspect_ratio not in ALLOWED_VIDEO_ASPECT_RATIOS:
        aspect_ratio = "16:9"
    if duration_seconds not in ALLOWED_DURATIONS:
        duration_seconds = 4 if duration_seconds <= 4 else 6 if duration_seconds <= 6 else 8
    # 480p is offered in the UI but rendered at 720p
    if resolution not in WIRE_RESOLUTIONS:
        resolution = "720p"
    if resolution == "1080p":
        duration_seconds = 8
    return {
        "sampleCount": 1,
        "durationSeconds": duration_seconds,
        "aspectRatio": aspect_ratio,
        "resolution": resolution,
    }


def veo_start_generation(
    model_id: str,
    prompt: str,
    duration_seconds: int,
    aspect_ratio: str,
    resolution: str,
    image_source: Optional[str] = None,
) -> str:
    """
    Start a Veo text-to-video or image-to-video operation.
    Returns the operation name used for polling.
    """
    instance: Dict[str, Any] = {"prompt": prompt}
    if image_source:
        image_b64, mime_type = inline_media(image_source)
        instance["image"] = {"bytesBase64Encoded": image_b64, "mimeType": mime_type}

    payload = {
        "instances": [instance],
        "parameters": build_veo_parameters(duration_seconds, aspect_ratio, resolution),
    }
    print(
        f"[Veo] Start: model={model_id} params={payload['parameters']} "
        f"image={'yes' if image_source else 'no'}"
    )
    result = google_post(
        api_url(f"models/{model_id}:predictLongRunning"),
        payload,
        tag="Veo",
        provider="veo",
        timeout=VEO_TIMEOUT,
    )
    operation_name = result.get("name")
    if not operation_name:
        raise ProviderError("Veo returned no operation name", provider="veo")
    print(f"[Veo] Operation started: {operation_name}")
    return operation_name


def veo_operation_status(operation_name: str) -> Dict[str, Any]:
    """
    Check a long-running operation.

    Returns:
        Dict with status "processing", "done" or "failed", plus
        video_url / thumbnail_url (done) or message (failed).

    Raises:
        ProviderError: transport failures and 5xx (the caller counts them)
    """
    if operation_name.startswith(("models/", "operations/")):
        url = api_url(operation_name)
    else:
        url = api_url(f"operations/{operation_name}")

    r = google_get(url, tag="Veo", provider="veo")
    if not r.ok:
        message = error_message_from_response(r)
        if 400 <= r.status_code < 500:
            return {"status": "failed", "message": f"Veo API error ({r.status_code}): {message}"}
        raise ProviderError(f"Veo API error ({r.status_code}): {message}", status_code=r.status_code, provider="veo")

    result = r.json()
    if not result.get("done"):
        progress = (result.get("metadata") or {}).get("progressPercent", 0)
        return {"status": "processing", "progress": progress}

    if result.get("error"):
        message = result["error"].get("message", "Unknown error")
        print(f"[Veo] Operation failed: {message}")
        return {"status": "failed", "message": message}

    video_url = extract_video_url(result)
    if not video_url:
        filtered = _filtered_reason(result)
        return {"status": "failed", "message": filtered or "No video in response"}

    return {
        "status": "done",
        "video_url": video_url,
        "thumbnail_url": extract_thumbnail_url(result),
    }


def _samples(result: Dict[str, Any]) -> list:
    response = result.get("response") or {}
    video_response = response.get("generateVideoResponse") or {}
    return video_response.get("generatedSamples") or response.get("generatedSamples") or []


def extract_video_url(result: Dict[str, Any]) -> Optional[str]:
    """
    Extract video URL from a completed operation response.

    Tries the response formats Veo has used.
    """
    samples = _samples(result)
    if samples:
        uri = (samples[0].get("video") or {}).get("uri")
        if uri:
            return uri

    predictions = (result.get("response") or {}).get("predictions") or []
    if predictions:
        pred = predictions[0]
        return pred.get("videoUri") or (pred.get("video") or {}).get("uri")
    return None


def extract_thumbnail_url(result: Dict[str, Any]) -> Optional[str]:
    samples = _samples(result)
    if samples:
        return (samples[0].get("thumbnail") or {}).get("uri")
    return None


def _filtered_reason(result: Dict[str, Any]) -> Optional[str]:
    video_response = (result.get("response") or {}).get("generateVideoResponse") or {}
    reasons = video_response.get("raiMediaFilteredReasons") or []
    if reasons:
        return f"Video blocked by safety filters: {reasons[0]}"
    return None
