"""Whirl realtime chat client.

Random matching with strangers, friend promotion, and paginated friend
conversations over one WebSocket plus a REST history API.

Modules:
    - config: YAML-backed settings
    - session: SessionContext owning all per-user state
    - connection: WebSocket lifecycle and frame routing
    - random_chat: Queue / pair / friend-request protocol
    - friend_chat: Friend history, pagination and optimistic sends
    - storage: DuckDB-backed local storage and session persistence
    - auth: Identity provider and forced re-login paths
    - api: History and liveness HTTP client
"""

__version__ = "0.1.0"
