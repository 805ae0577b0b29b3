from .message_filter import MessageFilter, FilterResult, MatchReason

__all__ = ["MessageFilter", "FilterResult", "MatchReason"]
