"""
Domain types for the sync core.
"""

from .models import (
    ChatMessage,
    ChatSession,
    Datasource,
    DatasourceStatus,
    MessageRole,
    MessageStatus,
    Page,
    SendMessageResult,
    Workspace,
    WorkspaceContext,
    WorkspaceState,
)
from .selection import pick_dataset, pick_session, pick_workspace

__all__ = [
    "ChatMessage",
    "ChatSession",
    "Datasource",
    "DatasourceStatus",
    "MessageRole",
    "MessageStatus",
    "Page",
    "SendMessageResult",
    "Workspace",
    "WorkspaceContext",
    "WorkspaceState",
    "pick_dataset",
    "pick_session",
    "pick_workspace",
]
