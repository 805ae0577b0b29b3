import unittest

from wa_autopilot.infrastructure.filter import MatchReason, MessageFilter


class TestMessageFilter(unittest.TestCase):
    def test_parse_terms_normalizes_and_dedupes(self) -> None:
        terms = MessageFilter.parse_terms(" Spam, SCAM ,,spam , ")
        self.assertEqual(terms, ("spam", "scam"))
        self.assertEqual(MessageFilter.parse_terms(""), ())
        self.assertEqual(MessageFilter.parse_terms(None), ())

    def test_exact_match_ignores_case_and_punctuation(self) -> None:
        message_filter = MessageFilter(["spam"])
        result = message_filter.check("This is SPAM!")
        self.assertTrue(result.blocked)
        self.assertEqual(result.term, "spam")
        self.assertIs(result.reason, MatchReason.EXACT)

    def test_partial_match_inside_other_words(self) -> None:
        message_filter = MessageFilter(["ass"])
        result = message_filter.check("I missed my class today")
        self.assertTrue(result.blocked)
        self.assertIs(result.reason, MatchReason.PARTIAL)

    def test_exact_match_wins_over_earlier_partial(self) -> None:
        message_filter = MessageFilter(["cat", "dog"])
        result = message_filter.check("dogcat, dog")
        self.assertEqual(result.term, "dog")
        self.assertIs(result.reason, MatchReason.EXACT)

    def test_nothing_blocked_without_terms_or_text(self) -> None:
        self.assertFalse(MessageFilter().check("anything at all").blocked)
        self.assertFalse(MessageFilter(["spam"]).check("").blocked)
        self.assertFalse(MessageFilter(["spam"]).check("hello there").blocked)

    def test_replace_swaps_whole_list(self) -> None:
        message_filter = MessageFilter(["spam"])
        message_filter.replace(["Promo", "promo", "scam"])
        self.assertEqual(message_filter.terms, ("promo", "scam"))
        self.assertEqual(message_filter.as_text(), "promo,scam")
        self.assertFalse(message_filter.check("spam").blocked)

    def test_to_dict(self) -> None:
        result = MessageFilter(["spam"]).check("spam")
        self.assertEqual(result.to_dict(), {"blocked": True, "term": "spam", "reason": "exact"})
        self.assertEqual(
            MessageFilter(["spam"]).check("fine").to_dict(),
            {"blocked": False, "term": None, "reason": None},
        )


if __name__ == "__main__":
    unittest.main()
