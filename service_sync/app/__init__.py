"""
Workspace sync core for the analytics chat client.

Keeps the hierarchy workspace -> active dataset -> active chat session ->
message history consistent with the backend while avoiding redundant calls
and stale overwrites.

Structure:
- app.store: SyncStore, the composition root (cache, persister, generations).
- app.view: WorkspaceView, the single owner of UI state for a workspace view.
- app.adapters: Remote data gateway protocol and HTTP implementation.
- app.caching: TTL cache with request coalescing.
- app.persistence: Debounced context write-back and local state stores.
- app.hydration: Generation tokens and the hydration pipeline.
- app.messages: Paginated, anchor-preserving message history.
- app.domain: Wire models and selection rules.
- app.main: SyncClient, wiring config, logging, metrics and the HTTP gateway.
"""
