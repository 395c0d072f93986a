"""Provider adapters (Kling, Veo, Imagen, Gemini image)."""

from genstudio.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    PollOutcome,
    PollState,
    ProviderConfigError,
    ProviderError,
    SubmitResult,
    classify_error,
)

__all__ = [
    "GenerationProvider",
    "GenerationRequest",
    "PollOutcome",
    "PollState",
    "ProviderConfigError",
    "ProviderError",
    "SubmitResult",
    "classify_error",
]
