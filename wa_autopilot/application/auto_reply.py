"""
Auto-Reply Service - Inbound Message Pipeline
==============================================

    message-received -> auto-reply switches -> filter + completion
                     -> send via session -> ai-response

Blocked messages get no reply, only a message-blocked event. Failures are
logged and published as "error"; if the failure happened before sending,
the chat still gets an apology.
"""

import logging
from typing import Awaitable, Callable

from ..infrastructure.config import AutoReplyStore
from ..infrastructure.llm import CompletionRouter
from ..infrastructure.llm.completion_router import APOLOGY_GENERIC
from ..infrastructure.whatsapp import InboundMessage, SessionBridge

logger = logging.getLogger(__name__)

PublishFn = Callable[[str, dict], Awaitable[None]]


class AutoReplyService:
    """
    Answers inbound WhatsApp messages with the AI.

    USAGE:
        service = AutoReplyService(bridge, router, auto_reply_store, relay.publish)
        bridge.on_inbound_message(service.handle_message)
    """

    def __init__(
        self,
        bridge: SessionBridge,
        router: CompletionRouter,
        auto_reply: AutoReplyStore,
        publish: PublishFn,
    ):
        self._bridge = bridge
        self._router = router
        self._auto_reply = auto_reply
        self._publish = publish

    async def handle_message(self, message: InboundMessage) -> None:
        await self._publish("message-received", message.to_dict())

        text = message.text.strip()
        if not text:
            return

        if not self._auto_reply.should_reply(message.is_group):
            chat_type = "group" if message.is_group else "private"
            logger.debug(f"Auto-reply disabled for {chat_type} chat {message.chat_id}")
            return

        try:
            outcome = await self._router.generate(message.sender_id, text)
        except Exception as e:
            logger.exception(f"Reply generation failed for {message.chat_id}: {e}")
            await self._publish("error", {"message": f"Failed to generate reply: {e}",
                                          "from": message.chat_id})
            await self._send_apology(message.chat_id)
            return

        if outcome.blocked:
            await self._publish("message-blocked", {
                "from": message.chat_id,
                "sender": message.sender_id,
                "message": text,
                **outcome.filter_result.to_dict(),
            })
            return

        try:
            await self._bridge.send_message(message.chat_id, outcome.reply)
        except Exception as e:
            logger.error(f"Failed to send reply to {message.chat_id}: {e}")
            await self._publish("error", {"message": f"Failed to send reply: {e}",
                                          "from": message.chat_id})
            return

        await self._publish("ai-response", {
            "to": message.chat_id,
            "message": text,
            "response": outcome.reply,
            "provider": outcome.provider.value,
            "isApology": outcome.is_apology,
        })

    async def _send_apology(self, chat_id: str) -> None:
        try:
            await self._bridge.send_message(chat_id, APOLOGY_GENERIC)
        except Exception as e:
            logger.error(f"Could not send apology to {chat_id}: {e}")
