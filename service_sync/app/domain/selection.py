"""
Deterministic fallback selection rules used during hydration.
"""

from typing import Iterable, List, Optional, Sequence

from .models import ChatSession, Datasource, Workspace


def pick_dataset(datasources: Sequence[Datasource], remembered: Iterable[Optional[str]] = ()) -> Optional[str]:
    """Resolve the dataset to show.

    The first remembered id that names a READY datasource wins. Otherwise the
    most recently updated READY datasource is chosen (ties broken by newest
    ``created_at``, then by id). Returns ``None`` when nothing is READY.
    """
    ready = [ds for ds in datasources if ds.is_ready]
    if not ready:
        return None

    ready_ids = {ds.id for ds in ready}
    for candidate in remembered:
        if candidate and candidate in ready_ids:
            return candidate

    newest = max(ready, key=lambda ds: (ds.updated_at, ds.created_at, ds.id))
    return newest.id


def pick_session(sessions: Sequence[ChatSession], remembered: Iterable[Optional[str]] = ()) -> Optional[str]:
    """Resolve the session to show.

    Sessions arrive most-recent-first, so the fallback is the head of the
    list. ``None`` means the dataset has no sessions yet.
    """
    live: List[ChatSession] = [s for s in sessions if not s.is_deleted]
    live_ids = {s.id for s in live}
    for candidate in remembered:
        if candidate and candidate in live_ids:
            return candidate
    return live[0].id if live else None


def pick_workspace(workspaces: Sequence[Workspace], remembered: Optional[str] = None) -> Optional[Workspace]:
    """Remembered workspace if still listed, else the default, else the first."""
    if not workspaces:
        return None
    if remembered:
        for workspace in workspaces:
            if workspace.id == remembered:
                return workspace
    for workspace in workspaces:
        if workspace.is_default:
            return workspace
    return workspaces[0]
