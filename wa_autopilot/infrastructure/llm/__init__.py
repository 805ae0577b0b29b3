from .backends import (
    CompletionError,
    BackendNotConfiguredError,
    BackendAuthError,
    BackendQuotaError,
    BackendSafetyError,
    BackendUnavailableError,
    EmptyCompletionError,
    CompletionBackend,
    OpenAIBackend,
    OpenRouterBackend,
    GeminiBackend,
    build_backend,
)
from .completion_router import CompletionRouter, GenerationOutcome, apology_for
from .formatting import tidy_reply, split_for_transport

__all__ = [
    "CompletionError",
    "BackendNotConfiguredError",
    "BackendAuthError",
    "BackendQuotaError",
    "BackendSafetyError",
    "BackendUnavailableError",
    "EmptyCompletionError",
    "CompletionBackend",
    "OpenAIBackend",
    "OpenRouterBackend",
    "GeminiBackend",
    "build_backend",
    "CompletionRouter",
    "GenerationOutcome",
    "apology_for",
    "tidy_reply",
    "split_for_transport",
]
