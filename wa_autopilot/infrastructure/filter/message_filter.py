"""
Message Filter - Blacklist Keyword Matching
============================================

Decides whether an inbound text is suppressed before it reaches the AI.

MATCHING ORDER:
1. Exact: the text is lowercased, punctuation becomes whitespace and the
   resulting tokens are tested against the blacklist (in list order).
2. Partial: only if no exact hit, every term is tested as a substring of
   the lowercased raw text (in list order).

KNOWN LIMITATION:
- The partial rule also matches inside unrelated words ("ass" blocks
  "class"). It is kept on purpose; use longer terms to avoid false hits.
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")


class MatchReason(Enum):
    EXACT = "exact"
    PARTIAL = "partial"


@dataclass(frozen=True)
class FilterResult:
    """Outcome of MessageFilter.check()."""

    blocked: bool
    term: Optional[str] = None
    reason: Optional[MatchReason] = None

    def to_dict(self) -> dict:
        return {
            "blocked": self.blocked,
            "term": self.term,
            "reason": self.reason.value if self.reason else None,
        }


NOT_BLOCKED = FilterResult(blocked=False)


class MessageFilter:
    """
    Blacklist matcher.

    The term tuple is swapped as a whole on update, so a concurrent check()
    sees either the old or the new list, never a mix.

    USAGE:
        message_filter = MessageFilter(MessageFilter.parse_terms("spam, scam"))
        message_filter.check("this is SPAM!")
        # FilterResult(blocked=True, term='spam', reason=MatchReason.EXACT)
    """

    def __init__(self, terms: Iterable[str] = ()):
        self._terms: tuple[str, ...] = self._normalize(terms)

    @staticmethod
    def _normalize(terms: Iterable[str]) -> tuple[str, ...]:
        seen = []
        for term in terms:
            cleaned = term.strip().lower()
            if cleaned and cleaned not in seen:
                seen.append(cleaned)
        return tuple(seen)

    @classmethod
    def parse_terms(cls, blob: Optional[str]) -> tuple[str, ...]:
        """Parse a comma-delimited blacklist blob into normalized terms."""
        if not blob:
            return ()
        return cls._normalize(blob.split(","))

    @property
    def terms(self) -> tuple[str, ...]:
        return self._terms

    def replace(self, terms: Iterable[str]) -> None:
        self._terms = self._normalize(terms)

    def as_text(self) -> str:
        return ",".join(self._terms)

    def check(self, text: Optional[str]) -> FilterResult:
        terms = self._terms
        if not text or not terms:
            return NOT_BLOCKED

        lowered = text.lower()
        tokens = set(_PUNCTUATION.sub(" ", lowered).split())

        for term in terms:
            if term in tokens:
                logger.info(f"Message blocked: contains blacklisted word '{term}'")
                return FilterResult(blocked=True, term=term, reason=MatchReason.EXACT)

        for term in terms:
            if term in lowered:
                logger.info(f"Message blocked: contains blacklisted term '{term}'")
                return FilterResult(blocked=True, term=term, reason=MatchReason.PARTIAL)

        return NOT_BLOCKED
