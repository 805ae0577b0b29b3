import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient

from wa_autopilot.infrastructure.config import (
    LLMSettings,
    Settings,
    StorageSettings,
    WebSettings,
    WhatsAppSettings,
)
from wa_autopilot.web.app import create_app

from tests.fakes import BackendFactory, FakeBackend, TransportFactory, inbound

ENV = {"AI_PROVIDER": "openai", "OPENAI_API_KEY": "sk-test"}

PRODUCT = {
    "name": "Coffee Mug",
    "description": "Ceramic mug, 350ml",
    "category": "product",
    "price": 45000,
    "stock": 10,
}


class WebAppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        root = Path(td.name)
        self.env_file = root / ".env"
        self.session_dir = root / "session"

        env = patch.dict(os.environ, ENV)
        env.start()
        self.addCleanup(env.stop)

        settings = Settings(
            whatsapp=WhatsAppSettings(
                session_dir=self.session_dir,
                headless=True,
                reconnect_delay=0.01,
                clear_session_grace=0,
                busy_retry_delay=0,
                poll_interval=0.1,
            ),
            storage=StorageSettings(config_dir=root / "config", env_file=self.env_file),
            llm=LLMSettings(default_system_prompt="Be helpful.", default_blacklist="spam"),
            web=WebSettings(host="127.0.0.1", port=8000, autostart_session=False),
        )
        self.transports = TransportFactory()
        self.backends = BackendFactory(FakeBackend(reply="**Hi** there"))
        self.app = create_app(settings, self.transports, self.backends)

        self.client = TestClient(self.app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)
        self.state = self.app.state

    def run_in_app(self, fn) -> None:
        """Run fn on the app's event loop, then let the bridge settle."""
        async def call():
            fn()
            await self.state.bridge.wait_idle()
        self.client.portal.call(call)

    def make_ready(self):
        self.assertEqual(self.client.post("/api/whatsapp/start").status_code, 200)
        transport = self.transports.last
        self.run_in_app(transport.open)
        return transport


class TestSessionRoutes(WebAppTestCase):
    def test_dashboard_page(self) -> None:
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("WA Autopilot", response.text)

    def test_product_rows_are_rendered_as_text(self) -> None:
        page = self.client.get("/").text
        loader = page[page.index("async function loadProducts"):]
        loader = loader[:loader.index("\n}\n")]

        self.assertIn("insertCell().textContent", loader)
        self.assertNotIn("innerHTML", loader)

    def test_status_and_start(self) -> None:
        status = self.client.get("/api/whatsapp/status").json()
        self.assertEqual(status["state"], "uninitialized")
        self.assertFalse(status["hasCredentials"])

        body = self.client.post("/api/whatsapp/start").json()
        self.assertTrue(body["success"])
        self.assertEqual(body["status"]["state"], "connecting")

    def test_send_validation(self) -> None:
        response = self.client.post("/api/whatsapp/send", json={"to": "", "message": "hi"})
        self.assertEqual(response.status_code, 400)

    def test_send_when_not_ready(self) -> None:
        response = self.client.post("/api/whatsapp/send", json={"to": "628123", "message": "hi"})
        self.assertEqual(response.status_code, 409)

    def test_send_when_ready(self) -> None:
        transport = self.make_ready()

        response = self.client.post("/api/whatsapp/send", json={"to": "+62 812", "message": "hello"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            "success": True, "message": "Message sent", "to": "62812@c.us", "parts": 1,
        })
        self.assertEqual(transport.sent, [("62812@c.us", "hello")])

    def test_send_failure_is_500(self) -> None:
        transport = self.make_ready()
        transport.fail_send = RuntimeError("page crashed")

        response = self.client.post("/api/whatsapp/send", json={"to": "628123", "message": "hi"})
        self.assertEqual(response.status_code, 500)
        self.assertIn("page crashed", response.json()["detail"])

    def test_stop(self) -> None:
        transport = self.make_ready()
        body = self.client.post("/api/whatsapp/stop").json()
        self.assertEqual(body["status"]["state"], "uninitialized")
        self.assertTrue(transport.closed)

    def test_clear_session(self) -> None:
        self.session_dir.mkdir()
        (self.session_dir / "Local State").write_text("{}")

        body = self.client.delete("/api/whatsapp/session").json()

        self.assertTrue(body["removed"])
        self.assertFalse(self.session_dir.exists())

    def test_inbound_message_gets_ai_reply(self) -> None:
        transport = self.make_ready()
        self.run_in_app(lambda: transport.receive(inbound("hello")))

        self.assertEqual(transport.sent, [("628123@c.us", "*Hi* there")])
        stats = self.client.get("/api/ai/stats").json()
        self.assertEqual(stats["totalUsers"], 1)
        self.assertEqual(stats["users"]["628123@c.us"]["messageCount"], 2)


class TestAISettingsRoutes(WebAppTestCase):
    def test_provider_switch_without_hot_reload(self) -> None:
        response = self.client.put("/api/ai/provider", json={"provider": "gemini"})

        body = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertFalse(body["hotReloaded"])
        self.assertEqual(body["currentProvider"], "openai")
        self.assertIn("AI_PROVIDER=gemini", self.env_file.read_text())

        reloaded = self.client.post("/api/ai/provider/reload").json()
        self.assertEqual(reloaded["currentProvider"], "gemini")
        self.assertEqual(self.client.get("/api/ai/provider").json()["currentProvider"], "gemini")

    def test_provider_switch_with_hot_reload(self) -> None:
        body = self.client.put(
            "/api/ai/provider", json={"provider": "OpenRouter", "hotReload": True}
        ).json()

        self.assertTrue(body["hotReloaded"])
        self.assertEqual(body["currentProvider"], "openrouter")
        self.assertEqual(self.backends.configs[-1].selected.value, "openrouter")

    def test_invalid_provider(self) -> None:
        response = self.client.put("/api/ai/provider", json={"provider": "claude"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(self.env_file.exists())

    def test_provider_view_hides_keys(self) -> None:
        body = self.client.get("/api/ai/provider").json()
        self.assertTrue(body["providerConfig"]["openai"]["hasApiKey"])
        self.assertNotIn("sk-test", str(body))

    def test_prompt_update_and_reload(self) -> None:
        self.assertEqual(self.client.get("/api/ai/prompt").json()["prompt"], "Be helpful.")

        body = self.client.put("/api/ai/prompt", json={"prompt": "  Sell mugs.  "}).json()
        self.assertEqual(body["prompt"], "Sell mugs.")
        self.assertFalse(body["hotReloaded"])
        self.assertEqual(self.client.get("/api/ai/prompt").json()["prompt"], "Be helpful.")

        self.assertEqual(self.client.post("/api/ai/prompt/reload").json()["prompt"], "Sell mugs.")

    def test_prompt_hot_reload(self) -> None:
        self.client.put("/api/ai/prompt", json={"prompt": "Sell mugs.", "hotReload": True})
        self.assertEqual(self.client.get("/api/ai/prompt").json()["prompt"], "Sell mugs.")

    def test_empty_prompt_rejected(self) -> None:
        response = self.client.put("/api/ai/prompt", json={"prompt": "   "})
        self.assertEqual(response.status_code, 400)

    def test_blacklist_roundtrip(self) -> None:
        self.assertEqual(self.client.get("/api/ai/blacklist").json()["words"], ["spam"])

        body = self.client.put("/api/ai/blacklist", json={"blacklistWords": ["Scam", " loan ", "scam"]}).json()
        self.assertEqual(body["words"], ["scam", "loan"])
        self.assertEqual(body["blacklistWords"], "scam,loan")

        result = self.client.post("/api/ai/blacklist/test", json={"message": "Cheap LOAN!"}).json()
        self.assertTrue(result["blocked"])
        self.assertEqual(result["term"], "loan")
        self.assertEqual(result["reason"], "exact")

        result = self.client.post("/api/ai/blacklist/test", json={"message": "spam"}).json()
        self.assertFalse(result["blocked"])

    def test_blacklist_requires_words(self) -> None:
        self.assertEqual(self.client.put("/api/ai/blacklist", json={}).status_code, 400)

    def test_auto_reply_partial_update(self) -> None:
        body = self.client.put("/api/ai/auto-reply", json={"groups": False}).json()
        self.assertEqual(body, {"success": True, "enabled": True, "privateChats": True, "groups": False})
        self.assertFalse(self.client.get("/api/ai/auto-reply").json()["groups"])

    def test_generate_and_clear_conversation(self) -> None:
        body = self.client.post("/api/ai/generate", json={"message": "hello", "userId": "u1"}).json()
        self.assertEqual(body, {
            "blocked": False, "response": "*Hi* there", "provider": "openai", "isApology": False,
        })

        stats = self.client.get("/api/ai/stats").json()
        self.assertEqual(stats["totalMessages"], 2)
        self.assertEqual(stats["blacklistCount"], 1)

        self.assertEqual(self.client.delete("/api/ai/conversation/u1").status_code, 200)
        self.assertEqual(self.client.delete("/api/ai/conversation/u1").status_code, 404)

    def test_generate_blocked(self) -> None:
        body = self.client.post("/api/ai/generate", json={"message": "buy spam now"}).json()
        self.assertTrue(body["blocked"])
        self.assertIsNone(body["response"])
        self.assertEqual(body["term"], "spam")
        self.assertEqual(self.backends.backend.calls, [])

    def test_generate_requires_message(self) -> None:
        self.assertEqual(self.client.post("/api/ai/generate", json={}).status_code, 400)


class TestProductRoutes(WebAppTestCase):
    def create(self, **overrides) -> dict:
        response = self.client.post("/api/products", json={**PRODUCT, **overrides})
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_create_and_get(self) -> None:
        product = self.create()
        self.assertEqual(product["name"], "Coffee Mug")
        self.assertIn("createdAt", product)

        fetched = self.client.get(f"/api/products/{product['id']}").json()
        self.assertEqual(fetched, product)
        self.assertEqual(len(self.client.get("/api/products").json()), 1)

    def test_validation_error(self) -> None:
        response = self.client.post("/api/products", json={"name": "", "price": -5})
        self.assertEqual(response.status_code, 400)
        detail = response.json()["detail"]
        self.assertEqual(detail["error"], "Validation failed")
        self.assertIn("Name is required", detail["details"])
        self.assertIn("Price must be a non-negative number", detail["details"])

    def test_unstorable_price_is_rejected(self) -> None:
        for bad in ("inf", 10**30):
            response = self.client.post("/api/products", json={**PRODUCT, "price": bad})
            self.assertEqual(response.status_code, 400, bad)
            self.assertEqual(response.json()["detail"]["error"], "Validation failed")
        self.assertEqual(self.client.get("/api/products").json(), [])

    def test_duplicate_name(self) -> None:
        self.create()
        response = self.client.post("/api/products", json=PRODUCT)
        self.assertEqual(response.status_code, 400)

    def test_search_and_stats_are_not_ids(self) -> None:
        self.create()
        self.create(name="Logo Design", category="service", stock=0, price=0)

        results = self.client.get("/api/products/search", params={"q": "mug"}).json()
        self.assertEqual([p["name"] for p in results], ["Coffee Mug"])

        services = self.client.get("/api/products/search", params={"category": "service"}).json()
        self.assertEqual([p["name"] for p in services], ["Logo Design"])

        stats = self.client.get("/api/products/stats").json()
        self.assertEqual(stats["total"], 2)

    def test_update_and_delete(self) -> None:
        product = self.create()

        updated = self.client.put(f"/api/products/{product['id']}", json={**PRODUCT, "price": 50000})
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["price"], 50000)

        deleted = self.client.delete(f"/api/products/{product['id']}").json()
        self.assertTrue(deleted["success"])
        self.assertEqual(deleted["product"]["id"], product["id"])

        self.assertEqual(self.client.get(f"/api/products/{product['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/products/{product['id']}").status_code, 404)

    def test_update_unknown_product(self) -> None:
        response = self.client.put("/api/products/missing", json=PRODUCT)
        self.assertEqual(response.status_code, 404)


class TestDashboardWebSocket(WebAppTestCase):
    def receive_until(self, ws, event: str) -> dict:
        while True:
            message = ws.receive_json()
            if message["event"] == event:
                return message["data"]

    def test_status_on_connect_and_commands(self) -> None:
        with self.client.websocket_connect("/ws") as ws:
            first = ws.receive_json()
            self.assertEqual(first["event"], "status")
            self.assertEqual(first["data"]["state"], "uninitialized")

            ws.send_json({"command": "reload-prompt"})
            result = self.receive_until(ws, "command-result")
            self.assertEqual(result, {
                "command": "reload-prompt", "success": True, "result": {"prompt": "Be helpful."},
            })

            ws.send_json({"command": "send-message", "payload": {"to": "628123", "message": "hi"}})
            result = self.receive_until(ws, "command-result")
            self.assertFalse(result["success"])
            self.assertIn("not ready", result["error"])

            ws.send_json({"command": "self-destruct"})
            result = self.receive_until(ws, "command-result")
            self.assertEqual(result["error"], "Unknown command: self-destruct")

    def test_session_events_reach_dashboard(self) -> None:
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"command": "start-session"})
            self.assertTrue(self.receive_until(ws, "command-result")["success"])

            self.run_in_app(lambda: self.transports.last.qr("2@ref"))
            self.assertEqual(self.receive_until(ws, "qr-code"), {"qr": "2@ref"})


if __name__ == "__main__":
    unittest.main()
