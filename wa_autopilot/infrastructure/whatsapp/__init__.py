from .messaging_provider import (
    PageState,
    TransportEventType,
    TransportEvent,
    InboundMessage,
    MessagingProvider,
    SeleniumProvider,
)
from .session_bridge import (
    SessionState,
    SessionError,
    SessionNotReadyError,
    SessionBridge,
    normalize_chat_id,
)

__all__ = [
    "PageState",
    "TransportEventType",
    "TransportEvent",
    "InboundMessage",
    "MessagingProvider",
    "SeleniumProvider",
    "SessionState",
    "SessionError",
    "SessionNotReadyError",
    "SessionBridge",
    "normalize_chat_id",
]
