"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses for safety and clarity
- Provider selection is a snapshot: switching providers builds a new
  ProviderConfig from the environment instead of mutating the old one

EXTENSIBILITY:
- To add another AI backend: add a Provider member, a BackendConfig entry
  in ProviderConfig.from_env and a backend class in llm/backends.py
"""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional
from pathlib import Path
from functools import lru_cache

from dotenv import load_dotenv, set_key

# Load .env file if present (development convenience)
load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for {name}, using default {default}")
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for {name}, using default {default}")
        return default


DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly and helpful WhatsApp assistant. "
    "Answer questions in a relaxed, informative tone and keep replies short."
)

# Values shipped in .env.example - treated as "no key"
PLACEHOLDER_KEYS = {
    "",
    "your_openai_api_key_here",
    "your-openrouter-api-key-here",
    "your-gemini-api-key-here",
}


class Provider(Enum):
    """
    Closed set of supported completion backends.

    The enum value is the key used in AI_PROVIDER and on the HTTP API.
    """
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Provider":
        """Parse a provider name, raising ValueError for anything unknown."""
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        valid = ", ".join(p.value for p in cls)
        raise ValueError(f"Invalid provider '{value}'. Must be one of: {valid}")

    @classmethod
    def names(cls) -> list[str]:
        return [p.value for p in cls]


@dataclass(frozen=True)
class BackendConfig:
    """Credentials and model for one completion backend."""

    api_key: str = ""
    model: str = ""
    api_url: str = ""

    @property
    def configured(self) -> bool:
        return self.api_key.strip() not in PLACEHOLDER_KEYS


@dataclass(frozen=True)
class ProviderConfig:
    """
    Immutable snapshot of the AI provider configuration.

    Exactly one backend is selected at any time. Hot reload swaps the whole
    snapshot (see CompletionRouter.reload_provider).
    """

    selected: Provider = Provider.OPENAI
    backends: Dict[Provider, BackendConfig] = field(default_factory=dict)
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout_seconds: int = 60
    openrouter_referer: str = "http://localhost:8000"
    openrouter_title: str = "WA Autopilot"

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        """Build a snapshot from the current process environment."""
        raw_provider = os.getenv("AI_PROVIDER", Provider.OPENAI.value)
        try:
            selected = Provider.parse(raw_provider)
        except ValueError:
            logger.warning(f"Unknown AI_PROVIDER '{raw_provider}', falling back to openai")
            selected = Provider.OPENAI

        backends = {
            Provider.OPENAI: BackendConfig(
                api_key=os.getenv("OPENAI_API_KEY", ""),
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                api_url=os.getenv("OPENAI_API_URL", "https://api.openai.com/v1/chat/completions"),
            ),
            Provider.OPENROUTER: BackendConfig(
                api_key=os.getenv("OPENROUTER_API_KEY", ""),
                model=os.getenv(
                    "OPENROUTER_MODEL",
                    os.getenv("OPENROUTER_MODEL_NAME", "openai/gpt-4o-mini"),
                ),
                api_url=os.getenv("OPENROUTER_API_URL", "https://openrouter.ai/api/v1/chat/completions"),
            ),
            Provider.GEMINI: BackendConfig(
                api_key=os.getenv("GEMINI_API_KEY", ""),
                model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
                api_url=os.getenv("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta"),
            ),
        }

        return cls(
            selected=selected,
            backends=backends,
            max_tokens=_env_int("MAX_TOKENS", 1000),
            temperature=_env_float("TEMPERATURE", 0.7),
            timeout_seconds=_env_int("AI_TIMEOUT_SECONDS", 60),
            openrouter_referer=os.getenv("OPENROUTER_REFERER", "http://localhost:8000"),
            openrouter_title=os.getenv("OPENROUTER_TITLE", "WA Autopilot"),
        )

    def backend(self, provider: Optional[Provider] = None) -> BackendConfig:
        return self.backends.get(provider or self.selected, BackendConfig())

    def to_dict(self) -> dict:
        """Public view for the dashboard - never includes the keys themselves."""
        return {
            "currentProvider": self.selected.value,
            "availableProviders": Provider.names(),
            "providerConfig": {
                provider.value: {
                    "hasApiKey": self.backend(provider).configured,
                    "model": self.backend(provider).model,
                }
                for provider in Provider
            },
        }


@dataclass(frozen=True)
class WhatsAppSettings:
    """WhatsApp Web session settings."""

    # Chrome profile directory - this IS the persisted session
    session_dir: Path = field(
        default_factory=lambda: Path(os.getenv("SESSION_DIR", "session/whatsapp-profile"))
    )

    # The QR code is forwarded to the dashboard, so headless works
    headless: bool = field(default_factory=lambda: _env_bool("WHATSAPP_HEADLESS", True))

    # Reconnect / teardown timing (seconds)
    reconnect_delay: float = field(default_factory=lambda: _env_float("RECONNECT_DELAY", 3.0))
    clear_session_grace: float = 2.0
    busy_retry_delay: float = 1.0

    # How often the watcher polls the page for QR / state / unread chats
    poll_interval: float = field(default_factory=lambda: _env_float("WHATSAPP_POLL_INTERVAL", 2.0))

    # WhatsApp rejects text beyond ~4096 characters
    message_limit: int = 4000
    continuation_marker: str = "\n\n_(continued...)_"


@dataclass(frozen=True)
class StorageSettings:
    """Locations of the editable configuration files."""

    config_dir: Path = field(default_factory=lambda: Path(os.getenv("CONFIG_DIR", "config")))
    env_file: Path = field(default_factory=lambda: Path(os.getenv("ENV_FILE", ".env")))

    @property
    def system_prompt_file(self) -> Path:
        return self.config_dir / "system-prompt.txt"

    @property
    def blacklist_file(self) -> Path:
        return self.config_dir / "blacklist-words.txt"

    @property
    def auto_reply_file(self) -> Path:
        return self.config_dir / "auto-reply-config.json"

    @property
    def products_db(self) -> Path:
        return self.config_dir / "products.db"


@dataclass(frozen=True)
class LLMSettings:
    """Prompt defaults used when no config file exists yet."""

    default_system_prompt: str = field(
        default_factory=lambda: os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)
    )
    default_blacklist: str = field(default_factory=lambda: os.getenv("BLACKLIST_WORDS", ""))


@dataclass(frozen=True)
class WebSettings:
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _env_int("PORT", 8000))
    # Start the WhatsApp session as soon as the server boots
    autostart_session: bool = field(default_factory=lambda: _env_bool("AUTOSTART_SESSION", False))


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from wa_autopilot.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.whatsapp.session_dir)
    """

    whatsapp: WhatsAppSettings = field(default_factory=WhatsAppSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)
    web: WebSettings = field(default_factory=WebSettings)

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings.
        Returns empty list if all settings are valid.
        """
        issues = []
        providers = ProviderConfig.from_env()

        if not providers.backend().configured:
            issues.append(
                f"WARNING: AI_PROVIDER is '{providers.selected.value}' but its API key is not set. "
                "Incoming messages will get a 'not configured' reply."
            )

        if not self.whatsapp.session_dir.exists():
            issues.append(
                f"INFO: No WhatsApp session at {self.whatsapp.session_dir}. "
                "A QR code will be shown on first start."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()


def update_env_value(key: str, value: str, env_file: Path) -> None:
    """
    Persist KEY=value in the .env file and apply it to this process.

    Raises OSError if the file cannot be written; os.environ is only
    updated after the write succeeded.
    """
    env_file.parent.mkdir(parents=True, exist_ok=True)
    env_file.touch(exist_ok=True)
    set_key(str(env_file), key, value, quote_mode="never")
    os.environ[key] = value
    logger.info(f"Updated {key} in {env_file}")


def reload_env(env_file: Path) -> None:
    """Re-read the .env file so manual edits win over the process environment."""
    if env_file.exists():
        load_dotenv(env_file, override=True)
        logger.info(f"Environment reloaded from {env_file}")
