"""
Completion Router - Prompt Assembly and Backend Dispatch
=========================================================

Turns (sender, text) into a reply:

    filter -> backend configured? -> system prompt + product context
           -> history + new turn -> backend -> store exchange -> tidy

FAILURE HANDLING:
- Blocked text returns a blocked outcome; no backend is contacted
- Backend errors are logged and replaced by a fixed apology
- No retry, no backoff: the chat gets an apology and moves on
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..catalog import ProductContextBuilder
from ..config import PromptStore, Provider, ProviderConfig
from ..conversation import ConversationStore
from ..filter import FilterResult, MessageFilter
from .backends import (
    BackendAuthError,
    BackendNotConfiguredError,
    BackendQuotaError,
    BackendSafetyError,
    CompletionBackend,
    CompletionError,
    EmptyCompletionError,
    build_backend,
)
from .formatting import tidy_reply

logger = logging.getLogger(__name__)


APOLOGY_NOT_CONFIGURED = "Sorry, the AI service is not configured yet. Please contact the admin."
APOLOGY_INVALID_KEY = "Sorry, the AI service credentials are invalid. Please contact the admin."
APOLOGY_QUOTA = "Sorry, the AI service is busy right now. Please try again later."
APOLOGY_SAFETY = "Sorry, I can't help with that message."
APOLOGY_EMPTY = "Sorry, I can't give an answer right now."
APOLOGY_GENERIC = "Sorry, something went wrong while processing your message. Please try again later."


def apology_for(error: Exception) -> str:
    """Map a backend failure to the user-facing apology."""
    if isinstance(error, BackendNotConfiguredError):
        return APOLOGY_NOT_CONFIGURED
    if isinstance(error, BackendAuthError):
        return APOLOGY_INVALID_KEY
    if isinstance(error, BackendQuotaError):
        return APOLOGY_QUOTA
    if isinstance(error, BackendSafetyError):
        return APOLOGY_SAFETY
    if isinstance(error, EmptyCompletionError):
        return APOLOGY_EMPTY
    return APOLOGY_GENERIC


@dataclass(frozen=True)
class GenerationOutcome:
    """
    Result of CompletionRouter.generate().

    blocked=True means the blacklist caught the text and nothing should be
    sent. error is set when reply is an apology rather than a model answer.
    """

    blocked: bool
    provider: Provider
    reply: Optional[str] = None
    filter_result: Optional[FilterResult] = None
    error: Optional[str] = None

    @property
    def is_apology(self) -> bool:
        return self.error is not None


class CompletionRouter:
    """
    Produces replies using the currently selected backend.

    USAGE:
        router = CompletionRouter(ProviderConfig.from_env(), message_filter,
                                  conversations, prompt_store, product_context)
        outcome = await router.generate("628123@c.us", "Hi, what do you sell?")
        if not outcome.blocked:
            print(outcome.reply)
    """

    def __init__(
        self,
        provider_config: ProviderConfig,
        message_filter: MessageFilter,
        conversations: ConversationStore,
        prompt_store: PromptStore,
        product_context: Optional[ProductContextBuilder] = None,
        backend_factory: Callable[[ProviderConfig], CompletionBackend] = build_backend,
    ):
        self._filter = message_filter
        self._conversations = conversations
        self._prompt_store = prompt_store
        self._product_context = product_context
        self._backend_factory = backend_factory
        self._config = provider_config
        self._backend = backend_factory(provider_config)
        logger.info(f"AI provider: {provider_config.selected.value}")

    @property
    def provider_config(self) -> ProviderConfig:
        return self._config

    @property
    def provider(self) -> Provider:
        return self._config.selected

    @property
    def conversations(self) -> ConversationStore:
        return self._conversations

    def reload_provider(self, provider_config: ProviderConfig) -> None:
        """Swap in a new provider snapshot and its backend together."""
        backend = self._backend_factory(provider_config)
        self._config, self._backend = provider_config, backend
        logger.info(f"AI provider reloaded: {provider_config.selected.value}")

    def build_system_prompt(self, text: str) -> str:
        prompt = self._prompt_store.prompt
        if self._product_context is None:
            return prompt
        try:
            return self._product_context.augment_prompt(prompt, text)
        except Exception as e:
            # Catalog trouble should not cost the user a reply
            logger.exception(f"Product context failed: {e}")
            return prompt

    async def generate(self, sender_id: str, text: str) -> GenerationOutcome:
        config, backend = self._config, self._backend
        provider = config.selected

        result = self._filter.check(text)
        if result.blocked:
            logger.info(f"Blocked message from {sender_id} ({result.reason.value}: {result.term})")
            return GenerationOutcome(blocked=True, provider=provider, filter_result=result)

        if not backend.configured:
            logger.warning(f"{provider.value} is selected but has no API key")
            return GenerationOutcome(
                blocked=False,
                provider=provider,
                reply=APOLOGY_NOT_CONFIGURED,
                filter_result=result,
                error="not_configured",
            )

        system_prompt = self.build_system_prompt(text)
        history = self._conversations.get(sender_id)

        try:
            reply = await asyncio.to_thread(backend.complete, system_prompt, history, text)
        except CompletionError as e:
            logger.warning(f"{provider.value} completion failed for {sender_id}: {e}")
            return GenerationOutcome(
                blocked=False,
                provider=provider,
                reply=apology_for(e),
                filter_result=result,
                error=type(e).__name__,
            )
        except Exception as e:
            logger.exception(f"Unexpected error from {provider.value}: {e}")
            return GenerationOutcome(
                blocked=False,
                provider=provider,
                reply=APOLOGY_GENERIC,
                filter_result=result,
                error=type(e).__name__,
            )

        self._conversations.append_exchange(sender_id, text, reply)
        logger.info(f"{provider.value} replied to {sender_id}: {reply[:50]}")
        return GenerationOutcome(
            blocked=False,
            provider=provider,
            reply=tidy_reply(reply),
            filter_result=result,
        )
