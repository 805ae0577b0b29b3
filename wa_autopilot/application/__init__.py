# Application Layer
# =================
# Use cases that orchestrate infrastructure services. No I/O of its own.

from .auto_reply import AutoReplyService

__all__ = ["AutoReplyService"]
