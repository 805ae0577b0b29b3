# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - whatsapp/:     Selenium-based WhatsApp Web transport and session bridge
# - llm/:          Completion backends (OpenAI, OpenRouter, Gemini) and router
# - filter/:       Blacklist message filter
# - conversation/: Per-sender short-term conversation memory
# - catalog/:      Product context for commerce questions
# - persistence/:  SQLite product repository
# - config/:       Environment settings and editable config files
