"""
Messaging Provider - Abstraction Layer for the WhatsApp Transport
==================================================================

The SessionBridge drives a MessagingProvider and never talks to Selenium
directly. A provider pushes TransportEvents through the emit callback it is
given on connect():

    QR             -> pairing code to show on the dashboard
    AUTHENTICATED  -> credentials accepted
    OPEN           -> chats are usable
    MESSAGE        -> an InboundMessage
    CLOSE          -> connection gone (logged_out tells whether to retry)

USAGE:
    provider = SeleniumProvider(Path("session/whatsapp-profile"), headless=True)
    await provider.connect(bridge_emit)
    await provider.send_message("628123456789@c.us", "Hello!")
    await provider.close()
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PageState(Enum):
    """What the WhatsApp Web tab is currently showing."""
    LOADING = "loading"
    QR = "qr"
    MAIN = "main"
    BLOCKED = "blocked"


class TransportEventType(Enum):
    QR = "qr"
    AUTHENTICATED = "authenticated"
    OPEN = "open"
    CLOSE = "close"
    MESSAGE = "message"


@dataclass(frozen=True)
class InboundMessage:
    """A chat message as seen by the transport."""

    message_id: str
    chat_id: str
    sender_id: str
    text: str
    from_me: bool = False
    is_group: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.message_id,
            "from": self.chat_id,
            "sender": self.sender_id,
            "message": self.text,
            "isGroup": self.is_group,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TransportEvent:
    type: TransportEventType
    qr: Optional[str] = None
    message: Optional[InboundMessage] = None
    reason: Optional[str] = None
    logged_out: bool = False

    @classmethod
    def closed(cls, reason: str, logged_out: bool = False) -> "TransportEvent":
        return cls(TransportEventType.CLOSE, reason=reason, logged_out=logged_out)


EmitFn = Callable[[TransportEvent], None]


class MessagingProvider(ABC):
    """
    Abstract base class for WhatsApp transports.
    Implement this interface to add new messaging backends.
    """

    @abstractmethod
    async def connect(self, emit: EmitFn) -> None:
        """Open the connection; lifecycle and messages arrive through emit."""
        ...

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> None:
        """Send one text message. Raises on failure."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Must be safe to call more than once."""
        ...


class SeleniumProvider(MessagingProvider):
    """
    WhatsApp Web through Selenium.

    A watcher task polls the page every poll_interval seconds. Every
    Selenium call runs in a worker thread so the event loop never blocks.
    """

    def __init__(
        self,
        profile_dir: Path,
        headless: bool = True,
        poll_interval: float = 2.0,
        client_factory: Optional[Callable[[], object]] = None,
    ):
        self._profile_dir = Path(profile_dir)
        self._headless = headless
        self._poll_interval = poll_interval
        self._client_factory = client_factory or self._default_client
        self._client = None
        self._watcher: Optional[asyncio.Task] = None
        self._closed = False
        # One browser tab: client calls must never overlap
        self._browser_lock = asyncio.Lock()

    def _default_client(self):
        # Selenium is only imported once a real browser is needed
        from .whatsapp_client import WhatsAppClient
        return WhatsAppClient(self._profile_dir, headless=self._headless)

    async def _call(self, fn, *args):
        """Run a blocking client call in a worker thread, one at a time."""
        async with self._browser_lock:
            return await asyncio.to_thread(fn, *args)

    async def connect(self, emit: EmitFn) -> None:
        self._closed = False
        self._client = await asyncio.to_thread(self._client_factory)
        self._watcher = asyncio.create_task(self._watch(emit))
        logger.info("WhatsApp Web watcher started")

    async def _watch(self, emit: EmitFn) -> None:
        client = self._client
        last_qr = None
        is_open = False

        while not self._closed:
            try:
                state = await self._call(client.page_state)

                if state is PageState.BLOCKED:
                    emit(TransportEvent.closed("account blocked by WhatsApp", logged_out=True))
                    return

                if state is PageState.QR:
                    if is_open:
                        # QR after a live session means the phone unlinked us
                        emit(TransportEvent.closed("logged out", logged_out=True))
                        return
                    qr = await self._call(client.read_qr_code)
                    if qr and qr != last_qr:
                        last_qr = qr
                        emit(TransportEvent(TransportEventType.QR, qr=qr))

                elif state is PageState.MAIN:
                    if not is_open:
                        is_open = True
                        emit(TransportEvent(TransportEventType.AUTHENTICATED))
                        emit(TransportEvent(TransportEventType.OPEN))
                    messages = await self._call(client.fetch_unread_messages)
                    for message in messages:
                        emit(TransportEvent(TransportEventType.MESSAGE, message=message))

            except Exception as e:
                if self._closed:
                    return
                logger.error(f"WhatsApp Web connection lost: {e}")
                emit(TransportEvent.closed(f"connection lost: {e}"))
                return

            await asyncio.sleep(self._poll_interval)

    async def send_message(self, chat_id: str, text: str) -> None:
        if self._client is None:
            raise RuntimeError("Transport is not connected")
        await self._call(self._client.send_message, chat_id, text)

    async def close(self) -> None:
        self._closed = True
        watcher, self._watcher = self._watcher, None
        if watcher and not watcher.done() and watcher is not asyncio.current_task():
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass

        client, self._client = self._client, None
        if client is not None:
            try:
                await asyncio.to_thread(client.close)
            except Exception as e:
                logger.debug(f"Error closing browser: {e}")
