"""
Reply Formatting - Make Model Output Fit WhatsApp
==================================================

- tidy_reply(): light cleanup, Markdown emphasis to WhatsApp markup
- split_for_transport(): break long replies into sendable chunks
"""

import re
from typing import List

DEFAULT_LIMIT = 4000
CONTINUATION_MARKER = "\n\n_(continued...)_"

_SENTENCE_END = re.compile(r"[.!?](?=\s)")

_MARKDOWN_RULES = [
    (re.compile(r"\*\*(.+?)\*\*"), r"*\1*"),
    (re.compile(r"__(.+?)__"), r"_\1_"),
    (re.compile(r"~~(.+?)~~"), r"~\1~"),
    (re.compile(r"^#{1,6} +(.+)$", re.MULTILINE), r"*\1*"),
    (re.compile(r"^[*-] +(.+)$", re.MULTILINE), "• \\1"),
]


def tidy_reply(text: str) -> str:
    """Collapse stray whitespace and translate Markdown emphasis."""
    if not text:
        return ""
    formatted = text.strip()
    formatted = re.sub(r"[ \t]+", " ", formatted)
    formatted = re.sub(r"\n{3,}", "\n\n", formatted)
    for pattern, replacement in _MARKDOWN_RULES:
        formatted = pattern.sub(replacement, formatted)
    return formatted


def _find_break(text: str, budget: int) -> int:
    """Index to cut text at so that text[:index] fits in budget."""
    window = text[:budget + 1]

    # Prefer the last sentence end, unless it would leave a tiny chunk
    sentence_ends = [m.start() + 1 for m in _SENTENCE_END.finditer(window) if m.start() + 1 <= budget]
    if sentence_ends and sentence_ends[-1] >= budget // 2:
        return sentence_ends[-1]

    space = max(window.rfind(" "), window.rfind("\n"))
    if space > 0:
        return space

    return budget


def split_for_transport(text: str, limit: int = DEFAULT_LIMIT,
                        marker: str = CONTINUATION_MARKER) -> List[str]:
    """
    Split text into chunks of at most limit characters.

    Every chunk but the last ends with the continuation marker. Only the
    whitespace at a break point is dropped.
    """
    text = (text or "").strip()
    if not text:
        return []
    if len(text) <= limit:
        return [text]

    budget = limit - len(marker)
    if budget <= 0:
        raise ValueError("limit must be longer than the continuation marker")

    chunks = []
    remaining = text
    while len(remaining) > limit:
        cut = _find_break(remaining, budget)
        chunks.append(remaining[:cut].rstrip() + marker)
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return chunks
