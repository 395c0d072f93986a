"""
General helper utilities shared by services and routes.

These functions are intentionally dependency-light so they can be reused
across services and routes without pulling in Flask app globals.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import re
from typing import Any
from urllib.parse import urlparse


def clamp_int(value: Any, minimum: int, maximum: int, default: int) -> int:
    """Clamp a value to an integer within [minimum, maximum]."""
    try:
        return max(minimum, min(maximum, int(value)))
    except (TypeError, ValueError):
        return default


def parse_bool(value: Any, default: bool = False) -> bool:
    """Parse JSON booleans and multipart form strings ("true", "1", "on")."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in ("true", "1", "yes", "on"):
        return True
    if raw in ("false", "0", "no", "off", ""):
        return False
    return default


def parse_float(value: Any, default: float | None = None) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_duration_seconds(value: Any) -> float | None:
    """
    Parse "5s", "5", 5 or "5.0s" into seconds.
    Returns None for anything unparsable.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(r"^\s*(\d+(?:\.\d+)?)\s*s?\s*$", str(value))
    if not match:
        return None
    return float(match.group(1))


def format_duration(seconds: float) -> str:
    """Format seconds the way jobs store durations ("5s", "7.5s")."""
    if float(seconds).is_integer():
        return f"{int(seconds)}s"
    return f"{round(float(seconds), 2)}s"


def sanitize_filename(name: str, max_length: int = 50) -> str:
    """
    Sanitize a string to be safe for use in keys/filenames.
    - Converts to lowercase
    - Replaces spaces and special chars with underscores
    - Limits length
    """
    if not name:
        return ""
    safe = name.lower().strip()
    safe = re.sub(r"[^a-z0-9_\-]", "_", safe)
    safe = re.sub(r"_+", "_", safe)
    safe = safe.strip("_")
    if len(safe) > max_length:
        safe = safe[:max_length].rstrip("_")
    return safe


def compute_sha256(data_bytes: bytes) -> str:
    """Compute a SHA256 hex digest for raw bytes."""
    return hashlib.sha256(data_bytes).hexdigest()


def get_extension_for_content_type(content_type: str) -> str:
    """Get file extension based on content type."""
    ext_map = {
        "video/mp4": ".mp4",
        "video/quicktime": ".mov",
        "video/webm": ".webm",
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/jpg": ".jpg",
        "image/webp": ".webp",
    }
    return ext_map.get((content_type or "").split(";")[0].strip().lower(), "")


def get_content_type_for_extension(ext: str) -> str:
    """Get MIME type based on file extension."""
    ext_map = {
        ".mp4": "video/mp4",
        ".mov": "video/quicktime",
        ".webm": "video/webm",
        ".png": "image/png",
        ".jpg": "image/jpeg",
        ".jpeg": "image/jpeg",
        ".webp": "image/webp",
    }
    return ext_map.get((ext or "").lower(), "application/octet-stream")


def get_content_type_from_url(url: str) -> str:
    """Infer MIME type from URL extension when possible."""
    path = urlparse(url or "").path or ""
    ext = os.path.splitext(path)[1]
    return get_content_type_for_extension(ext)


def is_data_uri(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def is_public_url(value: Any) -> bool:
    """True for http(s) URLs a provider can fetch on its own."""
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def decode_data_uri(data_uri: str) -> tuple[bytes, str]:
    """
    Decode a base64 data URI into (bytes, mime_type).

    Raises:
        ValueError: If the string is not a base64 data URI
    """
    match = re.match(r"^data:([^;,]+)?(;base64)?,(.*)$", data_uri or "", re.DOTALL)
    if not match or not match.group(2):
        raise ValueError("Not a base64 data URI")
    mime = match.group(1) or "application/octet-stream"
    try:
        return base64.b64decode(match.group(3)), mime
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def encode_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


_logger = logging.getLogger("genstudio.helpers")


def _mask_value(val: Any, max_len: int = 400) -> str:
    try:
        s = json.dumps(val, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        s = str(val)
    if len(s) > max_len:
        return s[:max_len] + "…"
    return s


def _scrub_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        cleaned = {}
        for k, v in data.items():
            key = str(k).lower()
            if any(t in key for t in ("key", "token", "secret", "auth")):
                cleaned[k] = "***"
            elif isinstance(v, str) and v.startswith("data:"):
                cleaned[k] = v[:40] + "…"
            else:
                cleaned[k] = _scrub_secrets(v)
        return cleaned
    if isinstance(data, list):
        return [_scrub_secrets(x) for x in data]
    return data


def log_event(event_name: str, data: dict) -> None:
    """Lightweight debug logging that avoids leaking secrets or inline media."""
    try:
        safe_payload = _scrub_secrets(data)
        _logger.info("[debug] %s :: %s", event_name, _mask_value(safe_payload))
    except Exception as e:
        _logger.warning("[debug] %s :: failed to log (%s)", event_name, e)


