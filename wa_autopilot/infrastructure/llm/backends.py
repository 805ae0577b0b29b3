"""
Completion Backends - Hosted LLM Chat APIs
===========================================

ARCHITECTURAL DECISION:
- One class per provider, all exposing the same complete() capability
- Plain HTTP via requests (all three APIs are simple JSON POSTs)
- Calls are blocking; the router runs them in a worker thread
- Failures are raised as CompletionError subclasses so the router can map
  them to a fixed apology instead of leaking raw errors into the chat

SUPPORTED:
- OpenAI       (chat/completions)
- OpenRouter   (OpenAI-compatible chat/completions + attribution headers)
- Gemini       (models/<model>:generateContent)
"""

import logging
import requests
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..config import BackendConfig, Provider, ProviderConfig
from ..conversation import Role, Turn

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Base exception for completion backend errors."""
    pass


class BackendNotConfiguredError(CompletionError):
    """Selected backend has no usable API key."""
    pass


class BackendAuthError(CompletionError):
    """API key rejected by the provider."""
    pass


class BackendQuotaError(CompletionError):
    """Quota exhausted or rate limited."""
    pass


class BackendSafetyError(CompletionError):
    """Provider refused the prompt for safety reasons."""
    pass


class BackendUnavailableError(CompletionError):
    """Network failure, timeout or unexpected HTTP error."""
    pass


class EmptyCompletionError(CompletionError):
    """Provider answered but without any text."""
    pass


class CompletionBackend(ABC):
    """
    Abstract base class for completion backends.
    Implement complete() to add a new provider.
    """

    provider: Provider

    def __init__(self, config: BackendConfig, max_tokens: int = 1000,
                 temperature: float = 0.7, timeout: int = 60):
        self._config = config
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return self._config.configured

    @property
    def model(self) -> str:
        return self._config.model

    def ensure_configured(self) -> None:
        if not self.configured:
            raise BackendNotConfiguredError(
                f"{self.provider.value} API key is not configured"
            )

    @abstractmethod
    def complete(self, system_prompt: str, history: Sequence[Turn], text: str) -> str:
        """Return reply text for text, given the system prompt and prior turns."""
        ...

    def _post(self, url: str, headers: dict, payload: dict, params: Optional[dict] = None) -> dict:
        """POST JSON and translate transport/HTTP failures into CompletionErrors."""
        try:
            response = requests.post(
                url,
                headers=headers,
                params=params,
                json=payload,
                timeout=self._timeout,
            )
        except requests.Timeout:
            raise BackendUnavailableError(f"{self.provider.value} API timeout")
        except requests.RequestException as e:
            raise BackendUnavailableError(f"{self.provider.value} API error: {e}")

        if response.status_code >= 400:
            self._raise_for_status(response)

        try:
            return response.json()
        except ValueError:
            raise BackendUnavailableError(f"{self.provider.value} returned invalid JSON")

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        body = response.text or ""
        logger.warning(f"{self.provider.value} API HTTP {status}: {body[:200]}")

        if status in (401, 403) or "API_KEY_INVALID" in body or "invalid_api_key" in body:
            raise BackendAuthError(f"{self.provider.value} API key rejected")
        if status == 429 or "insufficient_quota" in body or "RESOURCE_EXHAUSTED" in body:
            raise BackendQuotaError(f"{self.provider.value} quota exceeded")
        raise BackendUnavailableError(f"{self.provider.value} API HTTP {status}")


class OpenAICompatibleBackend(CompletionBackend):
    """Chat-completions style API (OpenAI and anything cloning it)."""

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, system_prompt: str, history: Sequence[Turn], text: str) -> dict:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(turn.to_dict() for turn in history)
        messages.append({"role": "user", "content": text})
        return {
            "model": self._config.model,
            "messages": messages,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }

    def complete(self, system_prompt: str, history: Sequence[Turn], text: str) -> str:
        self.ensure_configured()
        payload = self.build_payload(system_prompt, history, text)
        logger.info(f"Sending to {self.provider.value} ({self._config.model}): {text[:50]}")

        data = self._post(self._config.api_url, self._headers(), payload)
        content = self._extract_response_content(data)
        if not content:
            raise EmptyCompletionError(f"{self.provider.value} returned an empty response")
        return content

    def _extract_response_content(self, data: dict) -> str:
        """Extract text content from API response."""
        try:
            choices = data.get("choices", [])
            if choices:
                message = choices[0].get("message", {})
                return (message.get("content") or "").strip()
        except (KeyError, IndexError, TypeError, AttributeError):
            pass
        return ""


class OpenAIBackend(OpenAICompatibleBackend):
    provider = Provider.OPENAI


class OpenRouterBackend(OpenAICompatibleBackend):
    provider = Provider.OPENROUTER

    def __init__(self, config: BackendConfig, referer: str = "http://localhost:8000",
                 title: str = "WA Autopilot", **kwargs):
        super().__init__(config, **kwargs)
        self._referer = referer
        self._title = title

    def _headers(self) -> dict:
        headers = super()._headers()
        # Attribution headers recommended by OpenRouter
        headers["HTTP-Referer"] = self._referer
        headers["X-Title"] = self._title
        return headers


class GeminiBackend(CompletionBackend):
    provider = Provider.GEMINI

    def build_payload(self, system_prompt: str, history: Sequence[Turn], text: str) -> dict:
        contents = [
            {
                "role": "model" if turn.role is Role.ASSISTANT else "user",
                "parts": [{"text": turn.text}],
            }
            for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": text}]})
        return {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": self._max_tokens,
                "temperature": self._temperature,
            },
        }

    def complete(self, system_prompt: str, history: Sequence[Turn], text: str) -> str:
        self.ensure_configured()
        url = f"{self._config.api_url.rstrip('/')}/models/{self._config.model}:generateContent"
        payload = self.build_payload(system_prompt, history, text)
        logger.info(f"Sending to gemini ({self._config.model}): {text[:50]}")

        data = self._post(
            url,
            {"Content-Type": "application/json"},
            payload,
            params={"key": self._config.api_key},
        )

        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise BackendSafetyError(f"Gemini blocked prompt: {feedback['blockReason']}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise EmptyCompletionError("Gemini returned no candidates")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        content = "".join(part.get("text", "") for part in parts).strip()

        if not content and candidate.get("finishReason") == "SAFETY":
            raise BackendSafetyError("Gemini stopped the reply for safety reasons")
        if not content:
            raise EmptyCompletionError("Gemini returned an empty response")
        return content


def build_backend(config: ProviderConfig) -> CompletionBackend:
    """Create the backend for the selected provider."""
    options = {
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
        "timeout": config.timeout_seconds,
    }
    backend_config = config.backend()

    if config.selected is Provider.OPENAI:
        return OpenAIBackend(backend_config, **options)
    elif config.selected is Provider.OPENROUTER:
        return OpenRouterBackend(
            backend_config,
            referer=config.openrouter_referer,
            title=config.openrouter_title,
            **options,
        )
    elif config.selected is Provider.GEMINI:
        return GeminiBackend(backend_config, **options)
    raise ValueError(f"Unsupported provider: {config.selected}")
