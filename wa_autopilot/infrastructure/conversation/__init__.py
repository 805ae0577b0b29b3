from .store import ConversationStore, Turn, Role

__all__ = ["ConversationStore", "Turn", "Role"]
