from .settings import (
    Settings,
    WhatsAppSettings,
    StorageSettings,
    LLMSettings,
    WebSettings,
    Provider,
    BackendConfig,
    ProviderConfig,
    get_settings,
    update_env_value,
    reload_env,
)
from .files import (
    PromptStore,
    BlacklistStore,
    AutoReplyConfig,
    AutoReplyStore,
    write_text_atomic,
)

__all__ = [
    "Settings",
    "WhatsAppSettings",
    "StorageSettings",
    "LLMSettings",
    "WebSettings",
    "Provider",
    "BackendConfig",
    "ProviderConfig",
    "get_settings",
    "update_env_value",
    "reload_env",
    "PromptStore",
    "BlacklistStore",
    "AutoReplyConfig",
    "AutoReplyStore",
    "write_text_atomic",
]
