"""Services package for the genstudio backend."""

from genstudio.services.job_store import ErrorCode, GenerationKind, JobStatus
from genstudio.services.model_registry import UnknownModelError, get_provider, list_models, resolve_model
from genstudio.services.providers.base import PollOutcome, ProviderError, SubmitResult
from genstudio.services.runtime import Runtime, build_runtime, get_runtime, set_runtime

__all__ = [
    "ErrorCode",
    "GenerationKind",
    "JobStatus",
    "UnknownModelError",
    "get_provider",
    "list_models",
    "resolve_model",
    "PollOutcome",
    "ProviderError",
    "SubmitResult",
    "Runtime",
    "build_runtime",
    "get_runtime",
    "set_runtime",
]
