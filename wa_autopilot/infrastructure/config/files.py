"""
Editable Config Files - System Prompt, Blacklist, Auto-Reply Switches
=====================================================================

The dashboard edits these files at runtime. Every store follows the same
rules:

- The first load falls back to an environment default and writes the file
  so the operator has something to edit.
- Writes go to a temp file and are moved into place, so readers never see
  a half-written file.
- If a write fails the in-memory value is left as it was and the OSError
  propagates to the caller.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path

from ..filter import MessageFilter

logger = logging.getLogger(__name__)


def write_text_atomic(path: Path, content: str) -> None:
    """Write content to path via a sibling temp file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    tmp_path.replace(path)


class PromptStore:
    """
    System prompt kept in a plain text file.

    USAGE:
        store = PromptStore(Path("config/system-prompt.txt"), default="Be nice.")
        store.load()
        store.save("You are a sales assistant.")
    """

    def __init__(self, path: Path, default: str):
        self._path = path
        self._default = default
        self._prompt = default

    @property
    def path(self) -> Path:
        return self._path

    @property
    def prompt(self) -> str:
        return self._prompt

    def load(self) -> str:
        """Load from file, seeding the file with the default if missing."""
        if self._path.exists():
            self._prompt = self._path.read_text(encoding="utf-8")
            logger.info(f"System prompt loaded from {self._path}")
        else:
            self.save(self._default)
            logger.info("System prompt seeded from environment default")
        return self._prompt

    def save(self, prompt: str, apply: bool = True) -> None:
        """Persist the prompt; with apply=False the running prompt is kept until load()."""
        write_text_atomic(self._path, prompt)
        if apply:
            self._prompt = prompt
        logger.info(f"System prompt saved ({'applied' if apply else 'pending reload'})")


class BlacklistStore:
    """
    Comma-delimited blacklist file backing a MessageFilter.

    The filter's term set is replaced only after the file write succeeded.
    """

    def __init__(self, path: Path, message_filter: MessageFilter, default: str = ""):
        self._path = path
        self._filter = message_filter
        self._default = default

    @property
    def path(self) -> Path:
        return self._path

    @property
    def message_filter(self) -> MessageFilter:
        return self._filter

    def load(self) -> tuple[str, ...]:
        if self._path.exists():
            terms = MessageFilter.parse_terms(self._path.read_text(encoding="utf-8"))
            self._filter.replace(terms)
            logger.info(f"Loaded {len(terms)} blacklist words")
        else:
            terms = MessageFilter.parse_terms(self._default)
            if terms:
                self.save(self._default)
            else:
                self._filter.replace(terms)
            logger.info(f"Blacklist loaded from environment: {len(terms)} words")
        return self._filter.terms

    def save(self, blob: str) -> tuple[str, ...]:
        """Normalize, persist, then swap the filter's terms as one unit."""
        terms = MessageFilter.parse_terms(blob)
        write_text_atomic(self._path, ",".join(terms))
        self._filter.replace(terms)
        logger.info(f"Blacklist updated: {len(terms)} words")
        return terms

    def as_text(self) -> str:
        return self._filter.as_text()


@dataclass(frozen=True)
class AutoReplyConfig:
    """Which chats get an automatic AI reply."""

    enabled: bool = True
    private_chats: bool = True
    groups: bool = True

    def should_reply(self, is_group: bool) -> bool:
        if not self.enabled:
            return False
        return self.groups if is_group else self.private_chats

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "privateChats": self.private_chats, "groups": self.groups}

    @classmethod
    def from_dict(cls, data: dict) -> "AutoReplyConfig":
        return cls(
            enabled=bool(data.get("enabled", True)),
            private_chats=bool(data.get("privateChats", data.get("private_chats", True))),
            groups=bool(data.get("groups", True)),
        )


class AutoReplyStore:
    """JSON file holding the AutoReplyConfig switches."""

    def __init__(self, path: Path):
        self._path = path
        self._config = AutoReplyConfig()

    @property
    def config(self) -> AutoReplyConfig:
        return self._config

    def load(self) -> AutoReplyConfig:
        if not self._path.exists():
            self.save(self._config)
            logger.info("Default auto-reply config created")
            return self._config

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._config = AutoReplyConfig.from_dict(data)
            logger.info("Auto-reply config loaded from file")
        except (json.JSONDecodeError, AttributeError) as e:
            logger.error(f"Invalid auto-reply config ({e}), using defaults")
            self._config = AutoReplyConfig()
        return self._config

    def save(self, config: AutoReplyConfig) -> None:
        write_text_atomic(self._path, json.dumps(config.to_dict(), indent=2))
        self._config = config
        logger.info(f"Auto-reply config saved: {asdict(config)}")

    def should_reply(self, is_group: bool) -> bool:
        return self._config.should_reply(is_group)
