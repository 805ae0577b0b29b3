# Presentation Layer
# ==================
# FastAPI dashboard, REST control surface and the WebSocket event relay.
