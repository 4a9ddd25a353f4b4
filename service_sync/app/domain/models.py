"""
Typed payloads exchanged with the remote data gateway.

Field names follow the backend wire format. Unknown fields are ignored so
the client keeps working when the backend grows its schemas.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DatasourceStatus(str, Enum):
    """Ingestion lifecycle of a datasource."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"
    NEEDS_INPUT = "NEEDS_INPUT"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    """Client-side delivery state of a locally sent message."""

    SENDING = "sending"
    SENT = "sent"
    ERROR = "error"


class Workspace(_WireModel):
    id: str
    name: str
    is_default: bool = False
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Datasource(_WireModel):
    id: str
    name: str
    status: DatasourceStatus
    created_at: datetime
    updated_at: datetime
    type: Optional[str] = None
    file_size: Optional[int] = None
    ingestion_error: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        """Only READY datasources may host chat sessions."""
        return self.status == DatasourceStatus.READY


class ChatSession(_WireModel):
    id: str
    dataset_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    is_deleted: bool = False


class ChatMessage(_WireModel):
    id: str
    session_id: str
    role: MessageRole
    content: str = ""
    message_metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    # Client-only fields for optimistic sends; never sent by the backend.
    status: Optional[MessageStatus] = None
    is_pending: bool = False


class WorkspaceState(_WireModel):
    workspace_id: str
    user_id: Optional[str] = None
    last_active_dataset_id: Optional[str] = None
    last_active_session_id: Optional[str] = None


class WorkspaceContext(_WireModel):
    """The remembered "where was I" snapshot for a workspace and user."""

    workspace: Workspace
    state: WorkspaceState
    active_session_title: Optional[str] = None
    active_dataset_name: Optional[str] = None

    @property
    def last_active_dataset_id(self) -> Optional[str]:
        return self.state.last_active_dataset_id

    @property
    def last_active_session_id(self) -> Optional[str]:
        return self.state.last_active_session_id

    def with_state(self, fields: Dict[str, Any]) -> "WorkspaceContext":
        """Copy with the given state fields overwritten; unknown keys are ignored."""
        known = {key: value for key, value in fields.items() if key in WorkspaceState.model_fields}
        return self.model_copy(update={"state": self.state.model_copy(update=known)})


class Page(_WireModel, Generic[T]):
    """One page of a paginated listing."""

    items: List[T] = Field(default_factory=list)
    page: int = 1
    page_size: int = 20
    total_items: int = 0
    total_pages: int = 0
    has_next: bool = False
    has_previous: bool = False


class SendMessageResult(_WireModel):
    """Outcome of posting a prompt to a session.

    ``execution``/``insight``/``visualization`` are opaque to this core; they
    are kept as-is for the rendering layer.
    """

    session_id: Optional[str] = None
    message_id: Optional[str] = None
    intent: Optional[Dict[str, Any]] = None
    execution: Optional[Dict[str, Any]] = None
    visualization: Optional[Dict[str, Any]] = None
    insight: Optional[Dict[str, Any]] = None

    def summary_text(self) -> str:
        """Text shown for the assistant reply."""
        execution = self.execution or {}
        if execution.get("status") == "FAILED" and execution.get("row_count") == 0:
            return execution.get("message") or "Query execution failed. Please try rephrasing your question."
        insight = self.insight or {}
        return insight.get("summary") or "Here are the results:"

    def metadata(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
