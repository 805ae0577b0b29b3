# WA Autopilot - WhatsApp AI Auto-Reply Dashboard
# ================================================
# Connects a WhatsApp account, answers incoming chats with a pluggable
# AI completion provider and lets an operator steer it from a web dashboard.
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI dashboard, REST control surface, WebSocket relay
# - Application:    Auto-reply pipeline (filter -> complete -> send -> notify)
# - Infrastructure: WhatsApp Web session, LLM backends, storage, config
#
# The WhatsApp transport and the AI backends sit behind small interfaces so
# either can be swapped without touching the pipeline.

__version__ = "1.0.0"
