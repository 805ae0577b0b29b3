"""
Event Relay - Live Dashboard Feed over WebSocket
=================================================

Fan-out of session/AI events to every connected dashboard, plus a small
command channel the other way.

Wire format (server -> browser):
    {"event": "qr-code", "data": {...}, "timestamp": "2026-01-01T12:00:00+00:00"}

Commands (browser -> server):
    {"command": "start-session", "payload": {}}

Every command is answered with a "command-result" event. Events are not
stored; a browser that connects late only sees what happens afterwards.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

CommandHandler = Callable[[dict], Awaitable[Any]]


class EventRelay:
    """
    Broadcasts events to dashboard WebSockets and runs dashboard commands.

    USAGE:
        relay = EventRelay()
        relay.register_command("start-session", lambda payload: bridge.start())
        task = asyncio.create_task(relay.run_commands())
        await relay.publish("ready", {})
    """

    def __init__(self):
        self._clients: List[WebSocket] = []
        self._commands: Dict[str, CommandHandler] = {}
        self._queue: asyncio.Queue = asyncio.Queue()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def commands(self) -> List[str]:
        return sorted(self._commands)

    def connect(self, websocket: WebSocket) -> None:
        self._clients.append(websocket)
        logger.info(f"Dashboard client connected ({len(self._clients)} total)")

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self._clients:
            self._clients.remove(websocket)
            logger.info(f"Dashboard client disconnected ({len(self._clients)} left)")

    async def publish(self, event: str, data: Optional[dict] = None) -> None:
        """Push an event to all connected dashboards, dropping dead sockets."""
        message = {
            "event": event,
            "data": data if data is not None else {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        disconnected = []
        for client in list(self._clients):
            try:
                await client.send_json(message)
            except Exception:
                disconnected.append(client)

        for client in disconnected:
            self.disconnect(client)

    # ── Commands ───────────────────────────────────────────────────

    def register_command(self, name: str, handler: CommandHandler) -> None:
        self._commands[name] = handler

    async def submit(self, command: str, payload: Optional[dict] = None) -> None:
        await self._queue.put((command, payload or {}))

    async def execute(self, command: str, payload: dict) -> dict:
        """Run one command and publish its command-result."""
        handler = self._commands.get(command)
        if handler is None:
            result = {"command": command, "success": False, "error": f"Unknown command: {command}"}
        else:
            try:
                value = await handler(payload)
                result = {"command": command, "success": True, "result": value}
            except Exception as e:
                logger.error(f"Command '{command}' failed: {e}")
                result = {"command": command, "success": False, "error": str(e)}

        await self.publish("command-result", result)
        return result

    async def run_commands(self) -> None:
        """Consume submitted commands one at a time until cancelled."""
        while True:
            command, payload = await self._queue.get()
            try:
                await self.execute(command, payload)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every submitted command has been executed."""
        await self._queue.join()
