"""
WhatsApp Client - Selenium-Based WhatsApp Web Automation
=========================================================

Blocking client around one Chrome tab on web.whatsapp.com. The Chrome
profile directory holds the login, so deleting it forces a new QR pairing.

Message rows carry a data-id of the form

    <fromMe>_<chatJid>_<messageId>[_<participantJid>]

e.g. "false_628123456789@c.us_3EB0C4..." for an incoming private message.
"""

import logging
import time
import random
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from selenium import webdriver
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.support.ui import WebDriverWait
from selenium.webdriver.support import expected_conditions as EC
from selenium.common.exceptions import (
    NoSuchElementException,
    TimeoutException,
    StaleElementReferenceException,
)
from webdriver_manager.chrome import ChromeDriverManager

from .messaging_provider import InboundMessage, PageState

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"


class WhatsAppClientError(Exception):
    """Base exception for WhatsApp client errors."""
    pass


class WhatsAppBlockedError(WhatsAppClientError):
    """Raised when WhatsApp shows blocking/warning indicators."""
    pass


@dataclass(frozen=True)
class MessageKey:
    from_me: bool
    chat_id: str
    message_id: str
    participant: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")

    @property
    def sender_id(self) -> str:
        return self.participant if self.is_group and self.participant else self.chat_id


def parse_message_id(data_id: Optional[str]) -> Optional[MessageKey]:
    """Parse a message row's data-id. Returns None for non-message rows."""
    if not data_id:
        return None
    parts = data_id.split("_")
    if len(parts) < 3 or parts[0] not in ("true", "false"):
        return None
    return MessageKey(
        from_me=parts[0] == "true",
        chat_id=parts[1],
        message_id=parts[2],
        participant=parts[3] if len(parts) > 3 and parts[3] else None,
    )


class RecentIds:
    """Remembers the last `limit` message ids; older ids are forgotten."""

    def __init__(self, limit: int = 2000):
        self._order: deque = deque()
        self._ids: set = set()
        self._limit = limit

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> None:
        if message_id in self._ids:
            return
        self._order.append(message_id)
        self._ids.add(message_id)
        while len(self._order) > self._limit:
            self._ids.discard(self._order.popleft())


class WhatsAppClient:
    """
    Selenium-based WhatsApp Web client.

    Every method blocks; SeleniumProvider calls them from worker threads.
    """

    SELECTORS = {
        "qr_code": "div[data-ref]",
        "chat_list": "#pane-side",
        "search_box": 'div[contenteditable="true"][data-tab="3"]',
        "message_input": 'div[contenteditable="true"][data-tab="10"]',
        "message_input_alt": 'footer div[contenteditable="true"]',
        "chat_row": '#pane-side div[role="listitem"]',
        "unread_badge": 'span[aria-label*="unread message"]',
        "chat_title": "span[title]",
        "message_row": "#main div[data-id]",
    }

    BLOCK_INDICATORS = [
        "temporarily banned",
        "account is temporarily",
        "verify your phone",
        "unusual activity",
    ]

    def __init__(self, profile_dir: Path, headless: bool = True):
        self._profile_dir = Path(profile_dir).resolve()
        self._seen_ids = RecentIds()
        self._chat_titles: Dict[str, str] = {}

        self.driver = self._create_driver(headless)
        self._navigate_to_whatsapp()

    def _create_driver(self, headless: bool) -> webdriver.Chrome:
        """Create and configure Chrome WebDriver."""
        options = webdriver.ChromeOptions()

        if headless:
            # QR is read from the DOM and shown on the dashboard
            options.add_argument("--headless=new")
            options.add_argument("--window-size=1280,900")
        else:
            options.add_argument("--start-maximized")

        options.add_argument("--disable-gpu")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")

        self._profile_dir.mkdir(parents=True, exist_ok=True)
        options.add_argument(f"--user-data-dir={self._profile_dir}")
        logger.info(f"Using Chrome profile at: {self._profile_dir}")

        service = ChromeService(ChromeDriverManager().install())
        return webdriver.Chrome(service=service, options=options)

    def _navigate_to_whatsapp(self) -> None:
        self.driver.get(WHATSAPP_WEB_URL)
        logger.info("Opened WhatsApp Web")

    def _random_delay(self, min_s: float = 0.5, max_s: float = 2.0) -> None:
        """Add human-like random delay."""
        time.sleep(random.uniform(min_s, max_s))

    def _check_for_blocks(self) -> bool:
        """Check page for blocking/warning indicators."""
        page_text = self.driver.page_source.lower()
        for indicator in self.BLOCK_INDICATORS:
            if indicator in page_text:
                logger.error(f"Block indicator detected: {indicator}")
                return True
        return False

    # ── Page state ─────────────────────────────────────────────────

    def page_state(self) -> PageState:
        """Classify what the tab shows. WebDriver errors propagate."""
        if self._check_for_blocks():
            return PageState.BLOCKED
        if self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["qr_code"]):
            return PageState.QR
        if self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["chat_list"]):
            return PageState.MAIN
        return PageState.LOADING

    def read_qr_code(self) -> Optional[str]:
        """Return the raw pairing string behind the QR image, if shown."""
        elements = self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["qr_code"])
        if not elements:
            return None
        try:
            return elements[0].get_attribute("data-ref") or None
        except StaleElementReferenceException:
            # QR rotated between find and read; next poll picks it up
            return None

    # ── Inbound ────────────────────────────────────────────────────

    def _unread_chats(self) -> List[Tuple[str, int]]:
        """(title, unread count) for every chat row with an unread badge."""
        chats = []
        for row in self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["chat_row"]):
            try:
                badges = row.find_elements(By.CSS_SELECTOR, self.SELECTORS["unread_badge"])
                if not badges:
                    continue
                title_el = row.find_element(By.CSS_SELECTOR, self.SELECTORS["chat_title"])
                title = title_el.get_attribute("title")
                try:
                    count = int((badges[0].text or "1").strip())
                except ValueError:
                    count = 1
                if title:
                    chats.append((title, max(count, 1)))
            except (NoSuchElementException, StaleElementReferenceException):
                continue
        return chats

    def _click_chat(self, title: str) -> bool:
        escaped = title.replace("\\", "\\\\").replace('"', '\\"')
        try:
            self.driver.find_element(
                By.CSS_SELECTOR, f'#pane-side span[title="{escaped}"]'
            ).click()
        except (NoSuchElementException, StaleElementReferenceException):
            return False
        return self._wait_for_message_input(timeout=10)

    def _extract_text_from_message(self, element) -> Optional[str]:
        """Extract text content from a message element."""
        text_selectors = [
            "span.selectable-text.copyable-text > span",
            "span.selectable-text.copyable-text",
            "span.selectable-text",
            'span[dir="ltr"]',
        ]

        for selector in text_selectors:
            try:
                for text_el in element.find_elements(By.CSS_SELECTOR, selector):
                    text = text_el.text.strip()
                    if text:
                        return text
            except (NoSuchElementException, StaleElementReferenceException):
                continue
        return None

    def _read_open_chat(self, title: str, count: int) -> List[InboundMessage]:
        incoming = []
        for row in self.driver.find_elements(By.CSS_SELECTOR, self.SELECTORS["message_row"]):
            try:
                key = parse_message_id(row.get_attribute("data-id"))
                if key is None or key.from_me:
                    continue
                incoming.append((key, row))
            except StaleElementReferenceException:
                continue

        messages = []
        for key, row in incoming[-count:]:
            if key.message_id in self._seen_ids:
                continue
            self._seen_ids.add(key.message_id)
            self._chat_titles[key.chat_id] = title

            text = self._extract_text_from_message(row)
            if not text:
                # Media without caption, stickers, etc.
                continue
            messages.append(InboundMessage(
                message_id=key.message_id,
                chat_id=key.chat_id,
                sender_id=key.sender_id,
                text=text,
                from_me=key.from_me,
                is_group=key.is_group,
            ))
        return messages

    def fetch_unread_messages(self) -> List[InboundMessage]:
        """Open every chat with an unread badge and collect its new messages."""
        messages = []
        for title, count in self._unread_chats():
            if not self._click_chat(title):
                logger.warning(f"Could not open unread chat: {title}")
                continue
            self._random_delay(0.3, 0.7)
            found = self._read_open_chat(title, count)
            if found:
                logger.info(f"{len(found)} new message(s) in {title}")
            messages.extend(found)
        return messages

    # ── Outbound ───────────────────────────────────────────────────

    def _find_search_box(self):
        try:
            return self.driver.find_element(By.CSS_SELECTOR, self.SELECTORS["search_box"])
        except NoSuchElementException:
            return None

    def _find_message_input(self):
        """Find the message input box with fallback selectors."""
        for key in ("message_input", "message_input_alt"):
            try:
                return self.driver.find_element(By.CSS_SELECTOR, self.SELECTORS[key])
            except NoSuchElementException:
                continue
        return None

    def _wait_for_message_input(self, timeout: int = 15) -> bool:
        try:
            WebDriverWait(self.driver, timeout).until(
                EC.presence_of_element_located(
                    (By.CSS_SELECTOR, self.SELECTORS["message_input_alt"])
                )
            )
            return True
        except TimeoutException:
            return False

    def open_chat(self, chat_id: str) -> bool:
        """Open a chat by JID, using the title seen earlier or the phone number."""
        title = self._chat_titles.get(chat_id)
        if title and self._click_chat(title):
            return True

        query = title or chat_id.split("@")[0]
        search_box = self._find_search_box()
        if not search_box:
            return False

        logger.debug(f"Opening chat with: {query}")
        search_box.click()
        self._random_delay(0.3, 0.7)
        search_box.send_keys(Keys.CONTROL + "a")
        search_box.send_keys(Keys.BACKSPACE)

        for char in query:
            search_box.send_keys(char)
            self._random_delay(0.05, 0.15)

        time.sleep(2)
        search_box.send_keys(Keys.ENTER)

        if self._wait_for_message_input():
            logger.info(f"Chat opened successfully: {chat_id}")
            return True
        logger.warning(f"Could not verify chat opened for: {chat_id}")
        return False

    def send_message(self, chat_id: str, text: str) -> None:
        """Send text to chat_id. Line breaks are typed as Shift+Enter."""
        if self._check_for_blocks():
            raise WhatsAppBlockedError("WhatsApp blocking detected")
        if not self.open_chat(chat_id):
            raise WhatsAppClientError(f"Could not open chat {chat_id}")

        input_box = self._find_message_input()
        if not input_box:
            raise WhatsAppClientError("Could not find message input box")

        input_box.click()
        self._random_delay(0.3, 0.6)

        lines = text.split("\n")
        for index, line in enumerate(lines):
            if line:
                input_box.send_keys(line)
            if index < len(lines) - 1:
                input_box.send_keys(Keys.SHIFT, Keys.ENTER)

        self._random_delay(0.3, 0.5)
        input_box.send_keys(Keys.ENTER)
        logger.info(f"Sent message to {chat_id}: {text[:50]}")

    def close(self) -> None:
        """Close browser and cleanup."""
        try:
            self.driver.quit()
            logger.info("Browser closed")
        except Exception as e:
            logger.debug(f"Error closing browser: {e}")
