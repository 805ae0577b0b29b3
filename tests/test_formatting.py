import unittest

from wa_autopilot.infrastructure.llm import split_for_transport, tidy_reply
from wa_autopilot.infrastructure.llm.formatting import CONTINUATION_MARKER


class TestTidyReply(unittest.TestCase):
    def test_markdown_becomes_whatsapp_markup(self) -> None:
        text = "## Menu\n\n\n\n**Bold** and __italic__ and ~~gone~~\n- first\n* second"
        self.assertEqual(
            tidy_reply(text),
            "*Menu*\n\n*Bold* and _italic_ and ~gone~\n• first\n• second",
        )

    def test_whitespace_is_collapsed(self) -> None:
        self.assertEqual(tidy_reply("  hello \t  world  "), "hello world")
        self.assertEqual(tidy_reply(""), "")


class TestSplitForTransport(unittest.TestCase):
    def test_short_text_is_one_chunk(self) -> None:
        self.assertEqual(split_for_transport("hello", limit=100), ["hello"])
        self.assertEqual(split_for_transport("   "), [])

    def test_prefers_sentence_boundary(self) -> None:
        text = "First sentence is here. " + "word " * 20
        chunks = split_for_transport(text, limit=60)

        self.assertEqual(chunks[0], "First sentence is here." + CONTINUATION_MARKER)
        for chunk in chunks:
            self.assertLessEqual(len(chunk), 60)
        for chunk in chunks[:-1]:
            self.assertTrue(chunk.endswith(CONTINUATION_MARKER))
        self.assertFalse(chunks[-1].endswith(CONTINUATION_MARKER))

    def test_no_words_are_lost(self) -> None:
        words = [f"w{i}" for i in range(300)]
        chunks = split_for_transport(" ".join(words), limit=100)
        rebuilt = " ".join(chunk.replace(CONTINUATION_MARKER, "") for chunk in chunks)
        self.assertEqual(rebuilt.split(), words)

    def test_text_without_spaces_is_hard_cut(self) -> None:
        chunks = split_for_transport("x" * 100, limit=50)
        self.assertGreater(len(chunks), 2)
        self.assertTrue(all(len(chunk) <= 50 for chunk in chunks))
        self.assertEqual("".join(c.replace(CONTINUATION_MARKER, "") for c in chunks), "x" * 100)

    def test_limit_must_fit_the_marker(self) -> None:
        with self.assertRaises(ValueError):
            split_for_transport("x" * 30, limit=10)


if __name__ == "__main__":
    unittest.main()
