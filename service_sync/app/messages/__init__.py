"""
Message history paging.
"""

from .history import DEFAULT_PAGE_SIZE, HistoryEvent, MessageHistory, Viewport

__all__ = ["DEFAULT_PAGE_SIZE", "HistoryEvent", "MessageHistory", "Viewport"]
