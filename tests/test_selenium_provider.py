import asyncio
import tempfile
import threading
import time
import unittest
from pathlib import Path

from wa_autopilot.infrastructure.whatsapp import (
    PageState,
    SeleniumProvider,
    TransportEventType,
)
from wa_autopilot.infrastructure.whatsapp.whatsapp_client import RecentIds, parse_message_id

from tests.fakes import inbound


class FakeClient:
    """Scripted stand-in for WhatsAppClient; the last page state repeats."""

    def __init__(self, states, qr_codes=("2@one",), messages=()):
        self.states = list(states)
        self.qr_codes = list(qr_codes)
        self.messages = list(messages)
        self.sent = []
        self.closed = False

    def page_state(self):
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, Exception):
            raise state
        return state

    def read_qr_code(self):
        return self.qr_codes.pop(0) if len(self.qr_codes) > 1 else self.qr_codes[0]

    def fetch_unread_messages(self):
        messages, self.messages = self.messages, []
        return messages

    def send_message(self, chat_id, text):
        self.sent.append((chat_id, text))

    def close(self):
        self.closed = True


class ChatSwitchingClient(FakeClient):
    """Opens the chat, pauses, then types into whichever chat is open."""

    def __init__(self, states):
        super().__init__(states)
        self.current_chat = None
        self.typed = []
        self.active = 0
        self.max_active = 0
        self._count_lock = threading.Lock()

    def _enter(self) -> None:
        with self._count_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def _leave(self) -> None:
        with self._count_lock:
            self.active -= 1

    def page_state(self):
        self._enter()
        try:
            time.sleep(0.005)
            return super().page_state()
        finally:
            self._leave()

    def fetch_unread_messages(self):
        self._enter()
        try:
            self.current_chat = "999@c.us"
            time.sleep(0.005)
            return super().fetch_unread_messages()
        finally:
            self._leave()

    def send_message(self, chat_id, text):
        self._enter()
        try:
            self.current_chat = chat_id
            time.sleep(0.05)
            self.typed.append((self.current_chat, text))
        finally:
            self._leave()


class TestSeleniumProvider(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.profile_dir = Path(td.name) / "profile"
        self.events = []
        self.finished = asyncio.Event()

    def emit(self, event) -> None:
        self.events.append(event)
        if event.type is TransportEventType.CLOSE:
            self.finished.set()

    async def run_watcher(self, client) -> SeleniumProvider:
        provider = SeleniumProvider(self.profile_dir, poll_interval=0, client_factory=lambda: client)
        self.addAsyncCleanup(provider.close)
        await provider.connect(self.emit)
        await asyncio.wait_for(self.finished.wait(), timeout=2)
        return provider

    def types(self):
        return [event.type for event in self.events]

    async def test_pairing_then_messages_then_logout(self) -> None:
        message = inbound("hello")
        client = FakeClient(
            [PageState.LOADING, PageState.QR, PageState.QR, PageState.QR, PageState.MAIN, PageState.QR],
            qr_codes=["2@one", "2@one", "2@two"],
            messages=[message],
        )
        await self.run_watcher(client)

        self.assertEqual(self.types(), [
            TransportEventType.QR,
            TransportEventType.QR,
            TransportEventType.AUTHENTICATED,
            TransportEventType.OPEN,
            TransportEventType.MESSAGE,
            TransportEventType.CLOSE,
        ])
        self.assertEqual([e.qr for e in self.events[:2]], ["2@one", "2@two"])
        self.assertIs(self.events[4].message, message)
        self.assertTrue(self.events[-1].logged_out)

    async def test_blocked_account_is_a_logout(self) -> None:
        await self.run_watcher(FakeClient([PageState.BLOCKED]))
        self.assertEqual(self.types(), [TransportEventType.CLOSE])
        self.assertTrue(self.events[0].logged_out)

    async def test_browser_failure_closes_without_logout(self) -> None:
        await self.run_watcher(FakeClient([PageState.MAIN, RuntimeError("chrome died")]))

        close = self.events[-1]
        self.assertEqual(close.type, TransportEventType.CLOSE)
        self.assertFalse(close.logged_out)
        self.assertIn("chrome died", close.reason)

    async def test_send_and_close(self) -> None:
        client = FakeClient([PageState.MAIN])
        provider = SeleniumProvider(self.profile_dir, poll_interval=0.01, client_factory=lambda: client)
        await provider.connect(self.emit)

        await provider.send_message("628123@c.us", "hi")
        await provider.close()
        await provider.close()

        self.assertEqual(client.sent, [("628123@c.us", "hi")])
        self.assertTrue(client.closed)
        with self.assertRaises(RuntimeError):
            await provider.send_message("628123@c.us", "again")

    async def test_client_calls_never_overlap(self) -> None:
        client = ChatSwitchingClient([PageState.MAIN])
        provider = SeleniumProvider(self.profile_dir, poll_interval=0, client_factory=lambda: client)
        self.addAsyncCleanup(provider.close)
        await provider.connect(self.emit)

        await asyncio.gather(
            provider.send_message("111@c.us", "reply for alice"),
            provider.send_message("222@c.us", "reply for bob"),
        )

        self.assertEqual(sorted(client.typed), [
            ("111@c.us", "reply for alice"),
            ("222@c.us", "reply for bob"),
        ])
        self.assertEqual(client.max_active, 1)


class TestParseMessageId(unittest.TestCase):
    def test_private_message(self) -> None:
        key = parse_message_id("false_628123@c.us_3EB0C1")
        self.assertFalse(key.from_me)
        self.assertEqual(key.chat_id, "628123@c.us")
        self.assertEqual(key.message_id, "3EB0C1")
        self.assertFalse(key.is_group)
        self.assertEqual(key.sender_id, "628123@c.us")

    def test_group_message_uses_participant(self) -> None:
        key = parse_message_id("false_1203@g.us_ABC_628999@c.us")
        self.assertTrue(key.is_group)
        self.assertEqual(key.sender_id, "628999@c.us")

    def test_own_message(self) -> None:
        self.assertTrue(parse_message_id("true_628123@c.us_XYZ").from_me)

    def test_non_message_rows(self) -> None:
        self.assertIsNone(parse_message_id(None))
        self.assertIsNone(parse_message_id(""))
        self.assertIsNone(parse_message_id("date-divider"))
        self.assertIsNone(parse_message_id("maybe_628123@c.us_X"))


class TestRecentIds(unittest.TestCase):
    def test_oldest_ids_are_forgotten(self) -> None:
        seen = RecentIds(limit=3)
        for message_id in ("a", "b", "c", "b", "d"):
            seen.add(message_id)

        self.assertEqual(len(seen), 3)
        self.assertNotIn("a", seen)
        for message_id in ("b", "c", "d"):
            self.assertIn(message_id, seen)


if __name__ == "__main__":
    unittest.main()
