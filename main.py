"""
WA Autopilot - Web Server Entry Point
=====================================

Run this to start the dashboard:
    python main.py

Then open http://127.0.0.1:8000 in your browser, press Start and scan the
QR code with WhatsApp on your phone (Linked devices).

Host and port come from HOST / PORT in .env.
"""

import uvicorn

from wa_autopilot.infrastructure.config import get_settings


def main():
    """Start the web server."""
    settings = get_settings()

    print("\n" + "=" * 50)
    print("   WA Autopilot - WhatsApp AI Dashboard")
    print("=" * 50)
    print(f"\n   Starting server at http://{settings.web.host}:{settings.web.port}")
    print("   Press Ctrl+C to stop\n")

    # No reload: a reload would restart the browser session on every edit
    uvicorn.run(
        "wa_autopilot.web.app:app",
        host=settings.web.host,
        port=settings.web.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
