"""
FastAPI Web Application - WA Autopilot Dashboard
=================================================

Control surface for the WhatsApp session, the AI settings and the product
catalog, plus the /ws live feed.

All services are built in the lifespan and kept on app.state, so tests can
create isolated apps with create_app(settings, transport_factory,
backend_factory).

HTTP ERRORS:
- 400  invalid input (nothing was changed)
- 404  unknown product / conversation
- 409  WhatsApp session not ready
- 500  file could not be written (in-memory state unchanged)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional, Union

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from ..application import AutoReplyService
from ..infrastructure.catalog import ProductContextBuilder
from ..infrastructure.config import (
    AutoReplyConfig,
    AutoReplyStore,
    BlacklistStore,
    PromptStore,
    Provider,
    ProviderConfig,
    Settings,
    get_settings,
    reload_env,
    update_env_value,
)
from ..infrastructure.conversation import ConversationStore
from ..infrastructure.filter import MessageFilter
from ..infrastructure.llm import CompletionRouter, build_backend
from ..infrastructure.persistence import (
    DuplicateProductError,
    ProductRepository,
    validate_product_input,
)
from ..infrastructure.whatsapp import (
    MessagingProvider,
    SeleniumProvider,
    SessionBridge,
    SessionError,
    SessionNotReadyError,
)
from .events import EventRelay
from .pages import render_dashboard

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ── Request models ─────────────────────────────────────────────────

class SendMessageRequest(BaseModel):
    to: str = ""
    message: str = ""


class ProviderUpdate(BaseModel):
    provider: str = ""
    hotReload: bool = False


class PromptUpdate(BaseModel):
    prompt: str = ""
    hotReload: bool = False


class BlacklistUpdate(BaseModel):
    blacklistWords: Union[str, List[str], None] = None


class MessageBody(BaseModel):
    message: str = ""


class GenerateRequest(BaseModel):
    message: str = ""
    userId: str = "dashboard"


class AutoReplyUpdate(BaseModel):
    enabled: Optional[bool] = None
    privateChats: Optional[bool] = None
    groups: Optional[bool] = None


# ── Helpers ────────────────────────────────────────────────────────

def _write_failed(what: str, error: OSError) -> HTTPException:
    logger.error(f"Failed to write {what}: {error}")
    return HTTPException(500, detail=f"Failed to update {what}: {error}")


def reload_provider(state) -> ProviderConfig:
    """Re-read .env and swap the router onto a fresh provider snapshot."""
    reload_env(state.settings.storage.env_file)
    config = ProviderConfig.from_env()
    state.router.reload_provider(config)
    return config


async def _start_quietly(bridge: SessionBridge) -> None:
    try:
        await bridge.start()
    except SessionError:
        # Logged and published by the bridge
        pass


def _register_commands(app: FastAPI) -> None:
    state = app.state
    relay: EventRelay = state.relay
    bridge: SessionBridge = state.bridge

    async def start_session(payload: dict):
        return await bridge.start()

    async def stop_session(payload: dict):
        return await bridge.stop()

    async def send_message(payload: dict):
        return await bridge.send_message(payload.get("to", ""), payload.get("message", ""))

    async def clear_session(payload: dict):
        return {"removed": await bridge.clear_credentials()}

    async def reload_provider_command(payload: dict):
        config = reload_provider(state)
        await relay.publish("provider-reloaded", config.to_dict())
        return config.to_dict()

    async def reload_prompt(payload: dict):
        prompt = state.prompt_store.load()
        await relay.publish("prompt-reloaded", {"prompt": prompt})
        return {"prompt": prompt}

    relay.register_command("start-session", start_session)
    relay.register_command("stop-session", stop_session)
    relay.register_command("send-message", send_message)
    relay.register_command("clear-session", clear_session)
    relay.register_command("reload-provider", reload_provider_command)
    relay.register_command("reload-prompt", reload_prompt)


# ══════════════════════════════════════════════════════════════════
#  PAGES & SESSION
# ══════════════════════════════════════════════════════════════════

api = APIRouter()


@api.get("/", response_class=HTMLResponse)
async def dashboard(request: Request):
    state = request.app.state
    return render_dashboard(
        status=state.bridge.status(),
        provider=state.router.provider_config.to_dict(),
        prompt=state.prompt_store.prompt,
        blacklist=state.message_filter.as_text(),
        auto_reply=state.auto_reply_store.config.to_dict(),
        stats=state.conversations.stats(),
    )


@api.get("/api/whatsapp/status")
async def whatsapp_status(request: Request):
    return request.app.state.bridge.status()


@api.post("/api/whatsapp/start")
async def whatsapp_start(request: Request):
    try:
        status = await request.app.state.bridge.start()
    except SessionError as e:
        raise HTTPException(500, detail=str(e))
    return {"success": True, "message": "WhatsApp session starting", "status": status}


@api.post("/api/whatsapp/stop")
async def whatsapp_stop(request: Request):
    status = await request.app.state.bridge.stop()
    return {"success": True, "message": "WhatsApp session stopped", "status": status}


@api.post("/api/whatsapp/send")
async def whatsapp_send(body: SendMessageRequest, request: Request):
    if not body.to.strip() or not body.message.strip():
        raise HTTPException(400, detail="Phone number and message are required")
    try:
        result = await request.app.state.bridge.send_message(body.to, body.message)
    except SessionNotReadyError as e:
        raise HTTPException(409, detail=str(e))
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    except Exception as e:
        logger.exception(f"Failed to send message: {e}")
        raise HTTPException(500, detail=f"Failed to send message: {e}")
    return {"success": True, "message": "Message sent", **result}


@api.delete("/api/whatsapp/session")
async def whatsapp_clear_session(request: Request):
    try:
        removed = await request.app.state.bridge.clear_credentials()
    except OSError as e:
        raise HTTPException(500, detail=f"Failed to remove session: {e}")
    return {"success": True, "message": "Session cleared, scan a new QR code on next start",
            "removed": removed}


# ══════════════════════════════════════════════════════════════════
#  AI SETTINGS
# ══════════════════════════════════════════════════════════════════

@api.get("/api/ai/provider")
async def get_provider(request: Request):
    return request.app.state.router.provider_config.to_dict()


@api.put("/api/ai/provider")
async def update_provider(body: ProviderUpdate, request: Request):
    state = request.app.state
    try:
        provider = Provider.parse(body.provider)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))

    try:
        update_env_value("AI_PROVIDER", provider.value, state.settings.storage.env_file)
    except OSError as e:
        raise _write_failed(".env", e)

    if body.hotReload:
        config = reload_provider(state)
        await state.relay.publish("provider-reloaded", config.to_dict())
        message = f"AI provider switched to {provider.value}"
    else:
        config = state.router.provider_config
        message = f"AI provider saved as {provider.value}; reload to apply"

    return {"success": True, "message": message, "hotReloaded": body.hotReload, **config.to_dict()}


@api.post("/api/ai/provider/reload")
async def reload_provider_route(request: Request):
    state = request.app.state
    config = reload_provider(state)
    await state.relay.publish("provider-reloaded", config.to_dict())
    return {"success": True, "message": f"AI provider reloaded: {config.selected.value}",
            **config.to_dict()}


@api.get("/api/ai/prompt")
async def get_prompt(request: Request):
    store: PromptStore = request.app.state.prompt_store
    return {"prompt": store.prompt, "file": str(store.path)}


@api.put("/api/ai/prompt")
async def update_prompt(body: PromptUpdate, request: Request):
    state = request.app.state
    prompt = body.prompt.strip()
    if not prompt:
        raise HTTPException(400, detail="Prompt is required")

    try:
        state.prompt_store.save(prompt, apply=body.hotReload)
    except OSError as e:
        raise _write_failed("system prompt", e)

    if body.hotReload:
        await state.relay.publish("prompt-reloaded", {"prompt": prompt})
    return {"success": True, "prompt": prompt, "hotReloaded": body.hotReload}


@api.post("/api/ai/prompt/reload")
async def reload_prompt_route(request: Request):
    state = request.app.state
    try:
        prompt = state.prompt_store.load()
    except OSError as e:
        raise HTTPException(500, detail=f"Failed to reload system prompt: {e}")
    await state.relay.publish("prompt-reloaded", {"prompt": prompt})
    return {"success": True, "prompt": prompt}


@api.get("/api/ai/blacklist")
async def get_blacklist(request: Request):
    message_filter: MessageFilter = request.app.state.message_filter
    return {"blacklistWords": message_filter.as_text(), "words": list(message_filter.terms),
            "count": len(message_filter.terms)}


@api.put("/api/ai/blacklist")
async def update_blacklist(body: BlacklistUpdate, request: Request):
    if body.blacklistWords is None:
        raise HTTPException(400, detail="Blacklist words are required")
    blob = body.blacklistWords if isinstance(body.blacklistWords, str) else ",".join(body.blacklistWords)

    try:
        terms = request.app.state.blacklist_store.save(blob)
    except OSError as e:
        raise _write_failed("blacklist words", e)
    return {"success": True, "blacklistWords": ",".join(terms), "words": list(terms),
            "count": len(terms)}


@api.post("/api/ai/blacklist/test")
async def test_blacklist(body: MessageBody, request: Request):
    if not body.message.strip():
        raise HTTPException(400, detail="Message is required")
    result = request.app.state.message_filter.check(body.message)
    return {"message": body.message, **result.to_dict()}


@api.get("/api/ai/auto-reply")
async def get_auto_reply(request: Request):
    return request.app.state.auto_reply_store.config.to_dict()


@api.put("/api/ai/auto-reply")
async def update_auto_reply(body: AutoReplyUpdate, request: Request):
    store: AutoReplyStore = request.app.state.auto_reply_store
    merged = {**store.config.to_dict(), **body.model_dump(exclude_none=True)}
    config = AutoReplyConfig.from_dict(merged)
    try:
        store.save(config)
    except OSError as e:
        raise _write_failed("auto-reply config", e)
    return {"success": True, **config.to_dict()}


@api.post("/api/ai/generate")
async def generate(body: GenerateRequest, request: Request):
    if not body.message.strip():
        raise HTTPException(400, detail="Message is required")
    outcome = await request.app.state.router.generate(body.userId, body.message)
    if outcome.blocked:
        return {"blocked": True, "response": None, "provider": outcome.provider.value,
                **outcome.filter_result.to_dict()}
    return {"blocked": False, "response": outcome.reply, "provider": outcome.provider.value,
            "isApology": outcome.is_apology}


@api.delete("/api/ai/conversation/{user_id}")
async def clear_conversation(user_id: str, request: Request):
    if not request.app.state.conversations.clear(user_id):
        raise HTTPException(404, detail="User not found")
    return {"success": True, "message": f"Conversation cleared for {user_id}"}


@api.get("/api/ai/stats")
async def ai_stats(request: Request):
    state = request.app.state
    return {
        **state.conversations.stats(),
        "users": state.conversations.summaries(),
        "provider": state.router.provider.value,
        "blacklistCount": len(state.message_filter.terms),
        "autoReply": state.auto_reply_store.config.to_dict(),
        "session": state.bridge.status(),
    }


# ══════════════════════════════════════════════════════════════════
#  PRODUCTS
# ══════════════════════════════════════════════════════════════════

def _validated(data: dict) -> dict:
    errors = validate_product_input(data)
    if errors:
        raise HTTPException(400, detail={"error": "Validation failed", "details": errors})
    return data


@api.get("/api/products")
async def list_products(request: Request):
    return [p.to_dict() for p in request.app.state.products.list_products()]


@api.post("/api/products", status_code=201)
async def create_product(data: dict, request: Request):
    try:
        product = request.app.state.products.create_product(_validated(data))
    except DuplicateProductError as e:
        raise HTTPException(400, detail=str(e))
    return product.to_dict()


# Declared before /{product_id} so "search" and "stats" are not taken as ids
@api.get("/api/products/search")
async def search_products(request: Request, q: str = "", category: str = "",
                          limit: Optional[int] = None):
    products = request.app.state.products.search(q=q, category=category, limit=limit)
    return [p.to_dict() for p in products]


@api.get("/api/products/stats")
async def product_stats(request: Request):
    return request.app.state.products.stats()


@api.get("/api/products/{product_id}")
async def get_product(product_id: str, request: Request):
    product = request.app.state.products.get_product(product_id)
    if not product:
        raise HTTPException(404, detail="Product not found")
    return product.to_dict()


@api.put("/api/products/{product_id}")
async def update_product(product_id: str, data: dict, request: Request):
    _validated(data)
    try:
        product = request.app.state.products.update_product(product_id, data)
    except DuplicateProductError as e:
        raise HTTPException(400, detail=str(e))
    if not product:
        raise HTTPException(404, detail="Product not found")
    return product.to_dict()


@api.delete("/api/products/{product_id}")
async def delete_product(product_id: str, request: Request):
    product = request.app.state.products.delete_product(product_id)
    if not product:
        raise HTTPException(404, detail="Product not found")
    return {"success": True, "message": "Product deleted", "product": product.to_dict()}


# ══════════════════════════════════════════════════════════════════
#  WEBSOCKET
# ══════════════════════════════════════════════════════════════════

@api.websocket("/ws")
async def dashboard_websocket(websocket: WebSocket):
    """
    Live feed for dashboard browsers.

    On connect the current session status is sent right away; afterwards
    every published event is pushed. Incoming {"command", "payload"}
    messages are queued for the command runner.
    """
    relay: EventRelay = websocket.app.state.relay
    await websocket.accept()
    relay.connect(websocket)

    await websocket.send_json({
        "event": "status",
        "data": websocket.app.state.bridge.status(),
    })

    try:
        while True:
            msg = await websocket.receive_json()
            if not isinstance(msg, dict) or not msg.get("command"):
                continue
            payload = msg.get("payload")
            await relay.submit(msg["command"], payload if isinstance(payload, dict) else {})
    except WebSocketDisconnect:
        pass
    finally:
        relay.disconnect(websocket)


# ══════════════════════════════════════════════════════════════════
#  APPLICATION FACTORY
# ══════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    transport_factory: Optional[Callable[[], MessagingProvider]] = None,
    backend_factory: Callable = build_backend,
) -> FastAPI:
    """Build the FastAPI app. Arguments exist so tests can swap out I/O."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = settings or get_settings()
        for issue in config.validate():
            logger.warning(issue)

        state = app.state
        state.settings = config
        state.relay = relay = EventRelay()

        state.message_filter = MessageFilter()
        state.blacklist_store = BlacklistStore(
            config.storage.blacklist_file, state.message_filter, config.llm.default_blacklist
        )
        state.blacklist_store.load()
        state.prompt_store = PromptStore(config.storage.system_prompt_file, config.llm.default_system_prompt)
        state.prompt_store.load()
        state.auto_reply_store = AutoReplyStore(config.storage.auto_reply_file)
        state.auto_reply_store.load()

        state.products = ProductRepository(config.storage.products_db)
        state.products.init()

        state.conversations = ConversationStore()
        state.router = CompletionRouter(
            ProviderConfig.from_env(),
            state.message_filter,
            state.conversations,
            state.prompt_store,
            ProductContextBuilder(state.products),
            backend_factory=backend_factory,
        )

        wa = config.whatsapp
        make_transport = transport_factory or (
            lambda: SeleniumProvider(wa.session_dir, headless=wa.headless, poll_interval=wa.poll_interval)
        )
        state.bridge = bridge = SessionBridge(
            make_transport,
            wa.session_dir,
            relay.publish,
            reconnect_delay=wa.reconnect_delay,
            clear_grace=wa.clear_session_grace,
            busy_retry_delay=wa.busy_retry_delay,
            message_limit=wa.message_limit,
            continuation_marker=wa.continuation_marker,
        )
        state.auto_reply = AutoReplyService(bridge, state.router, state.auto_reply_store, relay.publish)
        bridge.on_inbound_message(state.auto_reply.handle_message)

        _register_commands(app)
        command_runner = asyncio.create_task(relay.run_commands())

        if config.web.autostart_session:
            state.autostart = asyncio.create_task(_start_quietly(bridge))

        logger.info("WA Autopilot ready")
        yield

        command_runner.cancel()
        await asyncio.gather(command_runner, return_exceptions=True)
        await bridge.aclose()
        logger.info("WA Autopilot stopped")

    app = FastAPI(
        title="WA Autopilot",
        description="WhatsApp AI auto-reply dashboard",
        lifespan=lifespan,
    )
    app.include_router(api)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
