"""
Shared HTTP plumbing for the Gemini Developer API (Veo, Imagen, Gemini image).

Authentication: GEMINI_API_KEY (or GOOGLE_API_KEY) via the x-goog-api-key header.
Base URL: GOOGLE_API_BASE, default https://generativelanguage.googleapis.com/v1beta

Requests are retried on timeouts, connection errors and 5xx responses with
exponential backoff. 4xx responses are never retried.
"""

from __future__ import annotations

import base64
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.exceptions import Timeout, ConnectionError as RequestsConnectionError

from genstudio.config import config
from genstudio.services.providers.base import ProviderConfigError, ProviderError, error_message_from_response
from genstudio.utils import decode_data_uri, is_data_uri

MAX_RETRIES = 3
BASE_RETRY_DELAY = 2  # seconds (exponential backoff)

GOOGLE_HOST = "generativelanguage.googleapis.com"


class GoogleServerError(Exception):
    """Raised for 5xx errors from Google (retryable)."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


def _get_api_key() -> str:
    key = config.GEMINI_API_KEY
    if not key:
        raise ProviderConfigError(
            "GEMINI_API_KEY is not set. Get your API key from https://aistudio.google.com/apikey",
            provider="google",
        )
    return key


def get_headers(json_body: bool = True) -> Dict[str, str]:
    headers = {"x-goog-api-key": _get_api_key()}
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


def check_google_configured() -> Tuple[bool, Optional[str]]:
    """Returns (is_configured, error_message)."""
    if not config.GEMINI_API_KEY:
        return False, "GEMINI_API_KEY is not set"
    return True, None


def api_url(path: str) -> str:
    return f"{config.GOOGLE_API_BASE}/{path.lstrip('/')}"


def is_google_hosted(url: Optional[str]) -> bool:
    """Files served by the Gemini API need the API key to download."""
    if not url or not url.startswith("http"):
        return False
    return urlparse(url).hostname == GOOGLE_HOST


def google_post(
    url: str,
    payload: Dict[str, Any],
    tag: str,
    provider: str,
    timeout: Tuple[int, int] = (15, 120),
) -> Dict[str, Any]:
    """
    POST with retries. Returns the parsed JSON body.

    Raises:
        ProviderConfigError: If the API key is missing
        ProviderError: On any 4xx, or when every retry failed
    """
    last_error = None

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            print(f"[{tag}] Attempt {attempt}/{MAX_RETRIES}")
            r = requests.post(url, headers=get_headers(), json=payload, timeout=timeout)

            if not r.ok:
                error_msg = error_message_from_response(r)
                print(f"[{tag}] Error {r.status_code}: {error_msg[:300]}")

                if r.status_code in (401, 403):
                    raise ProviderError(
                        f"{tag} authentication failed: {error_msg}",
                        status_code=r.status_code,
                        provider=provider,
                    )
                if 400 <= r.status_code < 500:
                    raise ProviderError(
                        f"{tag} API error ({r.status_code}): {error_msg}",
                        status_code=r.status_code,
                        provider=provider,
                    )
                raise GoogleServerError(r.status_code, f"{tag} server error {r.status_code}: {error_msg}")

            return r.json()

        except (Timeout, RequestsConnectionError, GoogleServerError) as e:
            last_error = e
            if attempt < MAX_RETRIES:
                delay = BASE_RETRY_DELAY * (2 ** (attempt - 1))
                print(f"[{tag}] Attempt {attempt} failed, retrying in {delay}s...")
                time.sleep(delay)
            else:
                print(f"[{tag}] All {MAX_RETRIES} attempts failed")

    status_code = getattr(last_error, "status_code", None)
    message = f"{tag} request failed after {MAX_RETRIES} attempts: {last_error}"
    if isinstance(last_error, Timeout):
        message = f"{tag} request timeout after {MAX_RETRIES} attempts"
    raise ProviderError(message, status_code=status_code, provider=provider)


def google_get(url: str, tag: str, provider: str, timeout: Tuple[int, int] = (15, 60)) -> requests.Response:
    """Single GET (status polls are retried by the reconciler, not here)."""
    try:
        return requests.get(url, headers=get_headers(json_body=False), timeout=timeout)
    except (Timeout, RequestsConnectionError) as e:
        raise ProviderError(f"{tag} connection error: {e}", provider=provider) from e


def inline_media(source: str, default_mime: str = "image/png") -> Tuple[str, str]:
    """
    Return (base64_data, mime_type) for a data URI or a fetchable URL.
    Google endpoints take reference media inline.
    """
    if is_data_uri(source):
        data, mime = decode_data_uri(source)
        return base64.b64encode(data).decode("ascii"), mime

    if not source.startswith("http"):
        raise ProviderError("Reference media must be a URL or data URI", provider="google")

    headers = get_headers(json_body=False) if is_google_hosted(source) else None
    try:
        r = requests.get(source, headers=headers, timeout=30)
    except (Timeout, RequestsConnectionError) as e:
        raise ProviderError(f"Failed to download reference media: {e}", provider="google") from e
    if not r.ok:
        raise ProviderError(f"Failed to download reference media: HTTP {r.status_code}", provider="google")
    mime = (r.headers.get("Content-Type") or default_mime).split(";")[0].strip()
    if not mime.startswith(("image/", "video/")):
        mime = default_mime
    return base64.b64encode(r.content).decode("ascii"), mime


def download_bytes(url: str, tag: str, provider: str) -> Tuple[bytes, str]:
    """Download a generated artifact, adding the API key for Google-hosted files."""
    headers = get_headers(json_body=False) if is_google_hosted(url) else None
    print(f"[{tag}] Downloading from: {url[:100]}...")
    try:
        r = requests.get(url, headers=headers, timeout=120, allow_redirects=True)
    except (Timeout, RequestsConnectionError) as e:
        raise ProviderError(f"{tag} download failed: {e}", provider=provider) from e
    if not r.ok:
        raise ProviderError(f"{tag} download failed: HTTP {r.status_code}", status_code=r.status_code, provider=provider)
    content_type = r.headers.get("Content-Type", "application/octet-stream")
    print(f"[{tag}] Downloaded {len(r.content)} bytes, type={content_type}")
    return r.content, content_type
