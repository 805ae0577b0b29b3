"""
Session Bridge - Lifecycle of the One WhatsApp Connection
==========================================================

ARCHITECTURAL DECISION:
- The bridge owns exactly one transport at a time and recreates it
  wholesale on reconnect
- Transport callbacks never touch bridge state directly: they are put on
  two asyncio queues (lifecycle, inbound) each drained by its own task
- Every transport gets a generation number; events from a transport that
  has been replaced are dropped
- start/stop/clear/close-handling run under one asyncio.Lock

STATES:
    uninitialized -> connecting -> awaiting_pairing -> connecting -> ready
    ready -> disconnected -> (3s) -> connecting ...   (non-logout close)
    ready -> disconnected, needsReauth                (logout, no retry)

USAGE:
    bridge = SessionBridge(make_transport, Path("session/whatsapp-profile"), relay.publish)
    bridge.on_inbound_message(auto_reply.handle_message)
    await bridge.start()
    await bridge.send_message("628123456789", "Hi!")
"""

import asyncio
import errno
import logging
import re
import shutil
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set

from ..llm.formatting import CONTINUATION_MARKER, DEFAULT_LIMIT, split_for_transport
from .messaging_provider import (
    InboundMessage,
    MessagingProvider,
    TransportEvent,
    TransportEventType,
)

logger = logging.getLogger(__name__)

STATUS_BROADCAST = "status@broadcast"

PublishFn = Callable[[str, dict], Awaitable[None]]
InboundHandler = Callable[[InboundMessage], Awaitable[None]]


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"


class SessionError(Exception):
    """Base exception for session lifecycle errors."""
    pass


class SessionNotReadyError(SessionError):
    """Raised when sending while the session is not ready."""
    pass


def normalize_chat_id(to: str) -> str:
    """Bare phone numbers become <digits>@c.us; JIDs pass through."""
    to = (to or "").strip()
    if "@" in to:
        return to
    digits = re.sub(r"\D", "", to)
    if not digits:
        raise ValueError(f"Invalid recipient: '{to}'")
    return f"{digits}@c.us"


def _is_busy(error: OSError) -> bool:
    return isinstance(error, PermissionError) or error.errno in (errno.EBUSY, errno.ENOTEMPTY)


async def _noop_publish(event: str, data: dict) -> None:
    return None


class SessionBridge:
    """Owns the WhatsApp transport and turns its callbacks into events."""

    def __init__(
        self,
        transport_factory: Callable[[], MessagingProvider],
        session_dir: Path,
        publish: PublishFn = _noop_publish,
        reconnect_delay: float = 3.0,
        clear_grace: float = 2.0,
        busy_retry_delay: float = 1.0,
        message_limit: int = DEFAULT_LIMIT,
        continuation_marker: str = CONTINUATION_MARKER,
    ):
        self._transport_factory = transport_factory
        self._session_dir = Path(session_dir)
        self._publish = publish
        self._reconnect_delay = reconnect_delay
        self._clear_grace = clear_grace
        self._busy_retry_delay = busy_retry_delay
        self._message_limit = message_limit
        self._marker = continuation_marker

        self._state = SessionState.UNINITIALIZED
        self._transport: Optional[MessagingProvider] = None
        self._generation = 0
        self._needs_reauth = False
        self._handler: Optional[InboundHandler] = None

        self._lock = asyncio.Lock()
        self._lifecycle: asyncio.Queue = asyncio.Queue()
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._consumers: list = []
        self._message_tasks: Set[asyncio.Task] = set()
        self._reconnect_task: Optional[asyncio.Task] = None

    # ── Introspection ──────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY and self._transport is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def has_credentials(self) -> bool:
        return self._session_dir.is_dir() and any(self._session_dir.iterdir())

    def status(self) -> dict:
        return {
            "state": self._state.value,
            "isReady": self.is_ready,
            "hasClient": self._transport is not None,
            "hasCredentials": self.has_credentials(),
            "needsReauth": self._needs_reauth,
        }

    def on_inbound_message(self, handler: InboundHandler) -> None:
        """Register the single consumer of accepted inbound messages."""
        self._handler = handler

    # ── Lifecycle ──────────────────────────────────────────────────

    def _ensure_consumers(self) -> None:
        if self._consumers:
            return
        self._consumers = [
            asyncio.create_task(self._consume_lifecycle()),
            asyncio.create_task(self._consume_inbound()),
        ]

    def _emitter(self, generation: int) -> Callable[[TransportEvent], None]:
        def emit(event: TransportEvent) -> None:
            queue = self._inbound if event.type is TransportEventType.MESSAGE else self._lifecycle
            queue.put_nowait((generation, event))
        return emit

    async def start(self) -> dict:
        """Create and connect a transport. No-op while one is live."""
        self._ensure_consumers()
        async with self._lock:
            if self._transport is not None:
                logger.info("WhatsApp session already started")
                return self.status()

            self._cancel_reconnect()
            self._generation += 1
            generation = self._generation
            transport = self._transport_factory()
            self._transport = transport
            self._needs_reauth = False
            self._state = SessionState.CONNECTING
            logger.info(
                "Starting WhatsApp session "
                f"({'resuming saved credentials' if self.has_credentials() else 'pairing required'})"
            )

            try:
                await transport.connect(self._emitter(generation))
            except Exception as e:
                logger.exception(f"Failed to start WhatsApp session: {e}")
                self._transport = None
                self._generation += 1
                self._state = SessionState.DISCONNECTED
                await self._close_quietly(transport)
                await self._publish("error", {"message": f"Failed to start WhatsApp session: {e}"})
                raise SessionError(f"Failed to start WhatsApp session: {e}") from e

            return self.status()

    async def stop(self) -> dict:
        """Tear down the transport. Credentials stay on disk."""
        async with self._lock:
            self._cancel_reconnect()
            transport = self._detach()
            self._state = SessionState.UNINITIALIZED
            if transport is not None:
                await self._close_quietly(transport)
                logger.info("WhatsApp session stopped")
        status = self.status()
        await self._publish("status", status)
        return status

    async def clear_credentials(self) -> bool:
        """
        Log out locally: close the transport and delete the session profile.

        Returns True if a session directory was removed. A non-transient
        OSError from the removal propagates.
        """
        async with self._lock:
            self._cancel_reconnect()
            transport = self._detach()
            self._state = SessionState.UNINITIALIZED
            self._needs_reauth = False
            if transport is not None:
                await self._close_quietly(transport)
                # Chrome keeps files locked for a moment after quitting
                await asyncio.sleep(self._clear_grace)

            removed = False
            if self._session_dir.exists():
                await self._remove_session_dir()
                removed = True
                logger.info(f"Session directory removed: {self._session_dir}")

        await self._publish("session-cleared", {"removed": removed})
        return removed

    async def _remove_session_dir(self) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, self._session_dir)
        except OSError as e:
            if not _is_busy(e):
                raise
            logger.warning(f"Session directory busy ({e}), retrying once")
            await asyncio.sleep(self._busy_retry_delay)
            await asyncio.to_thread(shutil.rmtree, self._session_dir)

    async def aclose(self) -> None:
        """Stop the session and the consumer tasks (application shutdown)."""
        async with self._lock:
            self._cancel_reconnect()
            transport = self._detach()
            self._state = SessionState.UNINITIALIZED
            if transport is not None:
                await self._close_quietly(transport)

        tasks = self._consumers + list(self._message_tasks)
        self._consumers = []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until queued events and running message handlers are done."""
        await self._lifecycle.join()
        await self._inbound.join()
        while self._message_tasks:
            await asyncio.gather(*list(self._message_tasks), return_exceptions=True)

    def _detach(self) -> Optional[MessagingProvider]:
        """Forget the live transport; its later events become stale."""
        transport = self._transport
        self._transport = None
        self._generation += 1
        return transport

    async def _close_quietly(self, transport: MessagingProvider) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing WhatsApp transport: {e}")

    # ── Reconnect ──────────────────────────────────────────────────

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        logger.info(f"Reconnecting in {self._reconnect_delay}s")
        self._reconnect_task = asyncio.create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_task = None
        try:
            await self.start()
        except SessionError:
            # Already logged and published by start()
            pass

    # ── Event consumers ────────────────────────────────────────────

    async def _consume_lifecycle(self) -> None:
        while True:
            generation, event = await self._lifecycle.get()
            try:
                if generation == self._generation:
                    await self._handle_lifecycle(generation, event)
                else:
                    logger.debug(f"Ignoring stale {event.type.value} event")
            except Exception as e:
                logger.exception(f"Error handling {event.type.value} event: {e}")
            finally:
                self._lifecycle.task_done()

    async def _handle_lifecycle(self, generation: int, event: TransportEvent) -> None:
        if event.type is TransportEventType.QR:
            self._state = SessionState.AWAITING_PAIRING
            logger.info("QR code received, waiting for scan")
            await self._publish("qr-code", {"qr": event.qr})

        elif event.type is TransportEventType.AUTHENTICATED:
            self._state = SessionState.CONNECTING
            logger.info("WhatsApp authenticated")
            await self._publish("authenticated", {})

        elif event.type is TransportEventType.OPEN:
            self._state = SessionState.READY
            logger.info("WhatsApp session ready")
            await self._publish("ready", {})

        elif event.type is TransportEventType.CLOSE:
            await self._handle_close(generation, event)

    async def _handle_close(self, generation: int, event: TransportEvent) -> None:
        async with self._lock:
            if generation != self._generation:
                return
            transport = self._detach()
            self._state = SessionState.DISCONNECTED
            if transport is not None:
                await self._close_quietly(transport)

            if event.logged_out:
                self._needs_reauth = True
                logger.warning(f"WhatsApp logged out ({event.reason}); scan a new QR code")
            else:
                logger.warning(f"WhatsApp connection closed ({event.reason})")
                self._schedule_reconnect()

        await self._publish("disconnected", {
            "reason": event.reason,
            "shouldReconnect": not event.logged_out,
            "needsReauth": event.logged_out,
        })

    async def _consume_inbound(self) -> None:
        while True:
            generation, event = await self._inbound.get()
            try:
                self._accept(generation, event.message)
            finally:
                self._inbound.task_done()

    def _accept(self, generation: int, message: Optional[InboundMessage]) -> None:
        if message is None or generation != self._generation:
            return
        if self._state is not SessionState.READY:
            logger.debug("Ignoring message received before the session was ready")
            return
        if message.from_me or message.chat_id == STATUS_BROADCAST:
            return
        if self._handler is None:
            logger.warning("Inbound message dropped: no handler registered")
            return

        task = asyncio.create_task(self._dispatch(message))
        self._message_tasks.add(task)
        task.add_done_callback(self._message_tasks.discard)

    async def _dispatch(self, message: InboundMessage) -> None:
        try:
            await self._handler(message)
        except Exception as e:
            logger.exception(f"Error handling message from {message.chat_id}: {e}")
            await self._publish("error", {
                "message": f"Error handling message: {e}",
                "from": message.chat_id,
            })

    # ── Outbound ───────────────────────────────────────────────────

    async def send_message(self, to: str, text: str) -> dict:
        """
        Send text to a chat, split into transport-sized chunks.

        Raises SessionNotReadyError when not ready and ValueError for an
        invalid recipient or empty text.
        """
        transport = self._transport
        if self._state is not SessionState.READY or transport is None:
            raise SessionNotReadyError("WhatsApp session is not ready")

        chat_id = normalize_chat_id(to)
        chunks = split_for_transport(text, self._message_limit, self._marker)
        if not chunks:
            raise ValueError("Message text is empty")

        for chunk in chunks:
            await transport.send_message(chat_id, chunk)

        logger.info(f"Message sent to {chat_id} ({len(chunks)} part(s))")
        await self._publish("message-sent", {"to": chat_id, "message": text, "parts": len(chunks)})
        return {"to": chat_id, "parts": len(chunks)}
