import tempfile
import unittest
from pathlib import Path

from wa_autopilot.infrastructure.catalog import ProductContextBuilder
from wa_autopilot.infrastructure.config import BackendConfig, PromptStore, Provider, ProviderConfig
from wa_autopilot.infrastructure.conversation import ConversationStore
from wa_autopilot.infrastructure.filter import MessageFilter
from wa_autopilot.infrastructure.llm import BackendQuotaError, CompletionRouter
from wa_autopilot.infrastructure.llm.completion_router import (
    APOLOGY_GENERIC,
    APOLOGY_NOT_CONFIGURED,
    APOLOGY_QUOTA,
)
from wa_autopilot.infrastructure.persistence import ProductRepository

from tests.fakes import BackendFactory, FakeBackend


def provider_config(selected: Provider = Provider.OPENAI) -> ProviderConfig:
    return ProviderConfig(
        selected=selected,
        backends={p: BackendConfig(api_key="k", model="m", api_url="u") for p in Provider},
    )


class TestCompletionRouter(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.tmp = Path(td.name)

        self.backend = FakeBackend(reply="**Hello** there")
        self.factory = BackendFactory(self.backend)
        self.conversations = ConversationStore()
        self.prompt_store = PromptStore(self.tmp / "prompt.txt", default="You are a shop assistant.")
        self.router = CompletionRouter(
            provider_config(),
            MessageFilter(["scam"]),
            self.conversations,
            self.prompt_store,
            backend_factory=self.factory,
        )

    async def test_reply_is_tidied_and_history_recorded(self) -> None:
        outcome = await self.router.generate("user1", "hi")

        self.assertFalse(outcome.blocked)
        self.assertFalse(outcome.is_apology)
        self.assertEqual(outcome.reply, "*Hello* there")
        self.assertIs(outcome.provider, Provider.OPENAI)
        self.assertEqual(
            [t.to_dict() for t in self.conversations.get("user1")],
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "**Hello** there"}],
        )

        await self.router.generate("user1", "and then?")
        system_prompt, history, text = self.backend.calls[-1]
        self.assertEqual(system_prompt, "You are a shop assistant.")
        self.assertEqual(len(history), 2)
        self.assertEqual(text, "and then?")

    async def test_blocked_message_skips_backend(self) -> None:
        outcome = await self.router.generate("user1", "is this a SCAM?")

        self.assertTrue(outcome.blocked)
        self.assertIsNone(outcome.reply)
        self.assertEqual(outcome.filter_result.term, "scam")
        self.assertEqual(self.backend.calls, [])
        self.assertEqual(self.conversations.get("user1"), [])

    async def test_unconfigured_backend_gets_apology(self) -> None:
        self.backend.configured = False
        outcome = await self.router.generate("user1", "hi")

        self.assertEqual(outcome.reply, APOLOGY_NOT_CONFIGURED)
        self.assertTrue(outcome.is_apology)
        self.assertEqual(self.backend.calls, [])
        self.assertEqual(self.conversations.get("user1"), [])

    async def test_backend_error_maps_to_apology(self) -> None:
        self.backend.error = BackendQuotaError("quota")
        outcome = await self.router.generate("user1", "hi")

        self.assertEqual(outcome.reply, APOLOGY_QUOTA)
        self.assertEqual(outcome.error, "BackendQuotaError")
        self.assertEqual(self.conversations.get("user1"), [])

    async def test_unexpected_error_gets_generic_apology(self) -> None:
        self.backend.error = RuntimeError("boom")
        outcome = await self.router.generate("user1", "hi")
        self.assertEqual(outcome.reply, APOLOGY_GENERIC)

    async def test_reload_provider_swaps_backend(self) -> None:
        self.router.reload_provider(provider_config(Provider.GEMINI))

        self.assertIs(self.router.provider, Provider.GEMINI)
        self.assertIs(self.factory.configs[-1].selected, Provider.GEMINI)
        outcome = await self.router.generate("user1", "hi")
        self.assertIs(outcome.provider, Provider.GEMINI)

    async def test_product_context_is_added_to_prompt(self) -> None:
        repo = ProductRepository(self.tmp / "products.db")
        repo.init()
        repo.create_product({"name": "Logo Design", "description": "Custom logo",
                             "category": "service", "price": 150000})
        router = CompletionRouter(
            provider_config(),
            MessageFilter(),
            self.conversations,
            self.prompt_store,
            ProductContextBuilder(repo),
            backend_factory=self.factory,
        )

        await router.generate("user1", "How much is logo design?")
        system_prompt = self.backend.calls[-1][0]
        self.assertTrue(system_prompt.startswith("You are a shop assistant."))
        self.assertIn("=== PRODUCTS MENTIONED ===", system_prompt)
        self.assertIn("Rp 150.000", system_prompt)


if __name__ == "__main__":
    unittest.main()
