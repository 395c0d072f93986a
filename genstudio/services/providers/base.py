"""
Provider adapter contract.

Every adapter turns a GenerationRequest into either an immediate artifact
(Imagen, Gemini image) or a job handle that is later polled (Kling, Veo).
Provider errors are surfaced as ProviderError carrying a taxonomy code so
the reconciler and submission controller never parse message strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import requests

from genstudio.services.job_store import ErrorCode


# ── Request / result types ────────────────────────────────────
@dataclass
class GenerationRequest:
    """Provider-agnostic request; parameters are already snapped."""

    kind: str
    model_name: str
    provider_model_id: str
    prompt: Optional[str] = None
    duration_seconds: Optional[int] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    audio_enabled: bool = False
    input_image_url: Optional[str] = None
    input_video_url: Optional[str] = None
    character_image_url: Optional[str] = None
    end_frame_url: Optional[str] = None
    strength: Optional[float] = None
    character_orientation: Optional[str] = None


@dataclass
class SubmitResult:
    job_handle: Optional[str] = None
    video_url: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    # Extra values the poller needs later (e.g. Kling task type)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def immediate(self) -> bool:
        return self.job_handle is None and bool(self.video_url or self.image_url)


class PollState:
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PollOutcome:
    state: str
    video_url: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def pending(cls) -> "PollOutcome":
        return cls(PollState.PENDING)

    @classmethod
    def succeeded(cls, video_url=None, image_url=None, thumbnail_url=None) -> "PollOutcome":
        return cls(PollState.SUCCEEDED, video_url=video_url, image_url=image_url, thumbnail_url=thumbnail_url)

    @classmethod
    def failed(cls, reason: str, error_code: str = ErrorCode.GENERATION_FAILED) -> "PollOutcome":
        return cls(PollState.FAILED, reason=reason, error_code=error_code)

    @classmethod
    def from_status(cls, status: Dict[str, Any]) -> "PollOutcome":
        """Convert the service-level {"status": processing|done|failed} dicts."""
        state = status.get("status")
        if state == "done":
            return cls.succeeded(
                video_url=status.get("video_url"),
                image_url=status.get("image_url"),
                thumbnail_url=status.get("thumbnail_url"),
            )
        if state == "failed":
            return cls.failed(status.get("message") or "Generation failed")
        return cls.pending()


# ── Errors ────────────────────────────────────────────────────
class ProviderError(Exception):
    """Any failure talking to a provider, tagged with a taxonomy code."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        provider: str = "",
    ):
        self.status_code = status_code
        self.provider = provider
        self.error_code = error_code or classify_error(message, status_code)
        super().__init__(message)

    @property
    def is_rate_limit(self) -> bool:
        return self.error_code == ErrorCode.QUOTA_EXCEEDED or self.status_code == 429


class ProviderConfigError(ProviderError):
    """Provider credentials are missing."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message, error_code=ErrorCode.AUTH_ERROR, provider=provider)


_QUOTA_TOKENS = ("quota", "billing", "resource_exhausted", "rate limit", "rate_limit", "too many requests")
_AUTH_TOKENS = ("authentication", "unauthorized", "api key not valid", "invalid credentials", "forbidden")


def classify_error(message: str, status_code: Optional[int] = None) -> str:
    """Map a provider error (HTTP status and/or message) onto the taxonomy."""
    if status_code == 429:
        return ErrorCode.QUOTA_EXCEEDED
    if status_code in (401, 403):
        return ErrorCode.AUTH_ERROR
    if status_code in (400, 422):
        return ErrorCode.INVALID_REQUEST

    lower = (message or "").lower()
    if any(tok in lower for tok in _QUOTA_TOKENS) or "429" in lower:
        return ErrorCode.QUOTA_EXCEEDED
    if any(tok in lower for tok in _AUTH_TOKENS):
        return ErrorCode.AUTH_ERROR
    if "timeout" in lower or "timed out" in lower:
        return ErrorCode.TIMEOUT
    if "invalid" in lower or "bad request" in lower:
        return ErrorCode.INVALID_REQUEST
    return ErrorCode.UNKNOWN_ERROR


def error_message_from_response(r: requests.Response) -> str:
    """Best-effort human message from a provider error response."""
    text = r.text[:500] if r.text else "No error details"
    try:
        body = r.json()
    except ValueError:
        return text
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
        if isinstance(err, str):
            return err
        if body.get("message"):
            return str(body["message"])
    return text


# ── Adapter base ──────────────────────────────────────────────
class GenerationProvider:
    """Base interface every provider adapter must implement."""

    name: str = "unknown"

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return False, "Not implemented"

    def submit(self, request: GenerationRequest) -> SubmitResult:
        raise NotImplementedError

    def poll_status(self, handle: str, meta: Optional[Dict[str, Any]] = None) -> PollOutcome:
        """Immediate providers never hand out handles, so never get polled."""
        raise NotImplementedError(f"{self.name} does not issue job handles")

    def extract_artifact_ref(self, response: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def download(self, url: str) -> Tuple[bytes, str]:
        """Fetch an artifact this provider produced."""
        r = requests.get(url, timeout=120, allow_redirects=True)
        if not r.ok:
            raise ProviderError(f"Failed to download artifact: HTTP {r.status_code}", provider=self.name)
        return r.content, r.headers.get("Content-Type", "application/octet-stream")
