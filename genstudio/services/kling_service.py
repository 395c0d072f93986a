"""
Kling AI Service - raw HTTP calls to the Kling API.

Authentication (either):
- KLING_ACCESS_KEY + KLING_SECRET_KEY: short-lived HS256 JWT per request
- KLING_API_KEY: static bearer token

Endpoints:
- POST /v1/videos/text2video
- POST /v1/videos/image2video      (optional tail frame)
- POST /v1/videos/video2video
- POST /v1/videos/motion-control
- POST /v1/images/omni-image       (text-to-image and image-to-image)
- GET  /v1/videos/<task_type>/<task_id>
- GET  /v1/images/omni-image/<task_id>

Task statuses: submitted -> processing -> succeed | failed

When KLING_CALLBACK_URL is set every request carries callback_url so Kling
notifies /api/webhooks/kling on completion; polling stays on as a backstop.
"""

from __future__ import annotations

import base64
import time
from typing import Any, Dict, Optional, Tuple

import jwt  # PyJWT
import requests
from requests.exceptions import Timeout, ConnectionError as RequestsConnectionError

from genstudio.config import config
from genstudio.services.job_store import ErrorCode
from genstudio.services.providers.base import ProviderConfigError, ProviderError, error_message_from_response
from genstudio.utils import decode_data_uri, is_data_uri, is_public_url

KLING_TIMEOUT = (15, 60)
JWT_TTL_SECONDS = 1800

NEGATIVE_PROMPT = "blurry, low quality, distorted"

# Models that accept sound="on"
AUDIO_MODELS = {"kling-v2.6-pro", "kling-v2.6-std"}

# Kling business error codes (HTTP 200/4xx body "code")
_QUOTA_CODES = {1102, 1103, 1302, 1303}
_AUTH_CODES = {1000, 1001, 1002, 1003, 1004}

# task_type -> submit path
TASK_PATHS = {
    "text2video": "/v1/videos/text2video",
    "image2video": "/v1/videos/image2video",
    "video2video": "/v1/videos/video2video",
    "motion-control": "/v1/videos/motion-control",
    "text2image": "/v1/images/omni-image",
    "image2image": "/v1/images/omni-image",
}
IMAGE_TASK_TYPES = {"text2image", "image2image"}


def check_kling_configured() -> Tuple[bool, Optional[str]]:
    """Returns (is_configured, error_message)."""
    if config.KLING_CONFIGURED:
        return True, None
    return False, "KLING_ACCESS_KEY/KLING_SECRET_KEY (or KLING_API_KEY) not set"


def build_jwt_token(access_key: str, secret_key: str, now: Optional[int] = None) -> str:
    """HS256 token: iss=access key, valid from 5s ago for 30 minutes."""
    now = int(now if now is not None else time.time())
    payload = {
        "iss": access_key,
        "exp": now + JWT_TTL_SECONDS,
        "nbf": now - 5,
    }
    return jwt.encode(payload, secret_key, algorithm="HS256", headers={"typ": "JWT"})


def _get_headers() -> Dict[str, str]:
    if config.KLING_ACCESS_KEY and config.KLING_SECRET_KEY:
        token = build_jwt_token(config.KLING_ACCESS_KEY, config.KLING_SECRET_KEY)
    elif config.KLING_API_KEY:
        token = config.KLING_API_KEY
    else:
        raise ProviderConfigError("Kling credentials are not configured", provider="kling")
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }


def _raise_for_body(body: Dict[str, Any], status_code: int) -> None:
    code = body.get("code")
    if code in (None, 0):
        return
    message = body.get("message") or "Unknown error"
    error_code = None
    if code in _QUOTA_CODES:
        error_code = ErrorCode.QUOTA_EXCEEDED
    elif code in _AUTH_CODES:
        error_code = ErrorCode.AUTH_ERROR
    raise ProviderError(
        f"Kling API error ({status_code}): {code} - {message}",
        error_code=error_code,
        status_code=status_code if status_code >= 400 else None,
        provider="kling",
    )


def kling_request(method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Perform one Kling call and return the `data` object.

    Raises:
        ProviderConfigError: credentials missing
        ProviderError: HTTP/business errors and transport failures
    """
    url = f"{config.KLING_API_BASE_URL}{path}"
    try:
        r = requests.request(method, url, headers=_get_headers(), json=payload, timeout=KLING_TIMEOUT)
    except Timeout as e:
        raise ProviderError(f"Kling request timeout: {e}", error_code=ErrorCode.TIMEOUT, provider="kling") from e
    except RequestsConnectionError as e:
        raise ProviderError(f"Kling connection error: {e}", provider="kling") from e

    if not r.ok:
        message = error_message_from_response(r)
        print(f"[Kling] Error {r.status_code} on {method} {path}: {message[:300]}")
        try:
            body = r.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("code"):
            _raise_for_body(body, r.status_code)
        if r.status_code == 401:
            message = f"Kling API authentication failed: {message}"
        raise ProviderError(
            f"Kling API error ({r.status_code}): {message}",
            status_code=r.status_code,
            provider="kling",
        )

    body = r.json()
    _raise_for_body(body, r.status_code)
    return body.get("data") or {}


def _to_base64(source: str) -> str:
    """Raw base64 (no data: prefix) for a data URI or URL."""
    if is_data_uri(source):
        data, _ = decode_data_uri(source)
        return base64.b64encode(data).decode("ascii")
    try:
        r = requests.get(source, timeout=30)
    except (Timeout, RequestsConnectionError) as e:
        raise ProviderError(f"Failed to fetch media for base64 conversion: {e}", provider="kling") from e
    if not r.ok:
        raise ProviderError(f"Failed to fetch media for base64 conversion: HTTP {r.status_code}", provider="kling")
    return base64.b64encode(r.content).decode("ascii")


def _with_callback(payload: Dict[str, Any]) -> Dict[str, Any]:
    if config.KLING_CALLBACK_URL:
        payload["callback_url"] = config.KLING_CALLBACK_URL
    return payload


def kling_duration(seconds: Optional[float]) -> int:
    """Kling renders 5s or 10s clips."""
    return 5 if (seconds or 5) < 7.5 else 10


def _submit(task_type: str, payload: Dict[str, Any]) -> str:
    data = kling_request("POST", TASK_PATHS[task_type], _with_callback(payload))
    task_id = data.get("task_id")
    if not task_id:
        raise ProviderError("Kling returned no task_id", provider="kling")
    print(f"[Kling] {task_type} task submitted: {task_id}")
    return task_id


# ── Submissions ───────────────────────────────────────────────
def kling_text_to_video(model_id, prompt, duration_seconds, aspect_ratio, audio_enabled=False) -> str:
    payload = {
        "model_name": model_id,
        "prompt": prompt,
        "aspect_ratio": aspect_ratio,
        "duration": kling_duration(duration_seconds),
        "negative_prompt": NEGATIVE_PROMPT,
    }
    if model_id in AUDIO_MODELS and audio_enabled:
        payload["sound"] = "on"
    return _submit("text2video", payload)


def kling_image_to_video(
    model_id,
    image_source,
    prompt,
    duration_seconds,
    aspect_ratio,
    audio_enabled=False,
    end_image_source=None,
) -> str:
    """
    Image-to-video with an optional tail frame.

    Public URLs are passed by reference. With a tail frame Kling wants both
    frames inline as base64, and the clip length is fixed at 5 seconds.
    """
    if not image_source:
        raise ProviderError(
            "Image URL is required for image-to-video generation",
            error_code=ErrorCode.INVALID_REQUEST,
            provider="kling",
        )

    payload: Dict[str, Any] = {
        "model_name": model_id,
        "prompt": prompt,
        "aspect_ratio": aspect_ratio,
        "negative_prompt": NEGATIVE_PROMPT,
    }

    force_base64 = bool(end_image_source) or model_id == "kling-video-o1"
    if force_base64 or not is_public_url(image_source):
        payload["image"] = _to_base64(image_source)
    else:
        payload["image_url"] = image_source

    if end_image_source:
        payload["image_tail"] = _to_base64(end_image_source)
        payload["duration"] = 5
    else:
        payload["duration"] = kling_duration(duration_seconds)

    if model_id in AUDIO_MODELS and audio_enabled:
        payload["sound"] = "on"
    return _submit("image2video", payload)


def kling_video_to_video(model_id, video_source, prompt, duration_seconds, aspect_ratio, audio_enabled=False) -> str:
    payload: Dict[str, Any] = {
        "model_name": model_id,
        "prompt": prompt,
        "aspect_ratio": aspect_ratio,
        "duration": kling_duration(duration_seconds),
        "negative_prompt": NEGATIVE_PROMPT,
    }
    if is_public_url(video_source):
        payload["video_url"] = video_source
    elif model_id == "kling-video-o1":
        raise ProviderError(
            "Kling O1 requires a publicly accessible video URL",
            error_code=ErrorCode.INVALID_REQUEST,
            provider="kling",
        )
    else:
        payload["video"] = _to_base64(video_source)

    if model_id == "kling-video-o1" and audio_enabled:
        payload["keep_audio"] = True
    elif model_id in AUDIO_MODELS and audio_enabled:
        payload["sound"] = "on"
    return _submit("video2video", payload)


def kling_motion_control(video_url, character_image_url, prompt, resolution, character_orientation=None) -> str:
    if not video_url or not character_image_url:
        raise ProviderError(
            "Motion Control requires a reference video and a character image",
            error_code=ErrorCode.INVALID_REQUEST,
            provider="kling",
        )
    payload = {
        "model_name": "kling-motion-control",
        "video_url": video_url,
        "image_url": character_image_url,
        "character_orientation": character_orientation or "video",
        "prompt": prompt,
        "mode": "pro" if resolution == "1080p" else "std",
    }
    return _submit("motion-control", payload)


def kling_generate_image(model_id, prompt, aspect_ratio, image_source=None, strength=None) -> str:
    payload: Dict[str, Any] = {
        "model_name": model_id,
        "prompt": prompt,
        "aspect_ratio": aspect_ratio or "1:1",
        "resolution": "1k",
        "n": 1,
    }
    task_type = "text2image"
    if image_source:
        task_type = "image2image"
        payload["strength"] = strength if strength is not None else 0.7
        if is_public_url(image_source):
            payload["image_url"] = image_source
        else:
            payload["image"] = _to_base64(image_source)
    elif model_id != "kling-image-o1":
        payload["negative_prompt"] = NEGATIVE_PROMPT
    return _submit(task_type, payload)


# ── Status ────────────────────────────────────────────────────
def kling_task_status(task_id: str, task_type: str = "text2video") -> Dict[str, Any]:
    """
    Returns:
        Dict with status "processing", "done" or "failed", and
        video_url / image_url / thumbnail_url (done) or message (failed).

    Raises:
        ProviderError: when the status call itself fails
    """
    if task_type in IMAGE_TASK_TYPES:
        path = f"/v1/images/omni-image/{task_id}"
    else:
        path = f"/v1/videos/{task_type}/{task_id}"

    data = kling_request("GET", path)
    return normalize_kling_task(data)


def normalize_kling_task(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map a Kling task object (status response or callback body) to our dict shape."""
    task_status = (data.get("task_status") or "").lower()
    if task_status == "succeed":
        result = data.get("task_result") or {}
        videos = result.get("videos") or []
        images = result.get("images") or []
        video_url = videos[0].get("url") if videos else None
        image_url = images[0].get("url") if images else None
        if not video_url and not image_url:
            return {"status": "failed", "message": "Kling reported success without a result URL"}
        return {
            "status": "done",
            "video_url": video_url,
            "image_url": image_url,
            "thumbnail_url": videos[0].get("cover_url") if videos else None,
        }
    if task_status == "failed":
        return {"status": "failed", "message": data.get("task_status_msg") or "Kling generation failed"}
    return {"status": "processing"}
