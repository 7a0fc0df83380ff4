"""Session context: the explicitly owned root of all client state.

A SessionContext wires the collaborators together for one user:

    LocalStore ── AuthContext ── ApiClient
                       │             │
                 ConnectionManager ──┘
                   │           │
    RandomMatchCoordinator   FriendChatStore

Lifecycle:
    - ``start()`` on authenticate: stores credentials and opens the socket.
    - ``logout()``: closes the socket, drops in-memory state and clears every
      session record from local storage.
    - A forced re-login (unauthorized / server offline) tears down the same
      state and notifies the ``on_force_login`` hook with the reason.
"""
import asyncio
import logging
from typing import Callable, Optional

import httpx

from whirl.api.client import ApiClient
from whirl.auth.service import AuthContext
from whirl.config import WhirlConfig
from whirl.connection.manager import Connector, ConnectionManager
from whirl.friend_chat.store import FriendChatStore
from whirl.random_chat.coordinator import RandomMatchCoordinator
from whirl.storage.local_store import LocalStore
from whirl.storage.persistence import SessionPersistence

logger = logging.getLogger(__name__)


class SessionContext:
    """Owns every stateful component of one client session."""

    def __init__(
        self,
        config: WhirlConfig,
        store: Optional[LocalStore] = None,
        *,
        connector: Optional[Connector] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        on_force_login: Optional[Callable[[str], None]] = None,
        on_friend_promoted: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else LocalStore(config.storage.path)
        self.auth = AuthContext(self.store)
        self.api = ApiClient(config, self.auth, transport=http_transport)
        self.connection = ConnectionManager(config, self.auth, self.api, connector=connector)
        self.persistence = SessionPersistence(self.store)
        self.random_chat = RandomMatchCoordinator(
            self.connection, self.persistence, on_promoted=on_friend_promoted
        )
        self.friend_chat = FriendChatStore(config, self.connection, self.api, self.auth)

        self.logout_reason: Optional[str] = None
        self._on_force_login = on_force_login
        self._close_task: Optional[asyncio.Task] = None
        self.auth.add_force_login_hook(self._handle_force_login)

    async def start(self, token: Optional[str] = None, user: Optional[dict] = None) -> bool:
        """Authenticate (if credentials are given) and open the socket.

        Returns:
            True if the socket is connected.
        """
        if token is not None:
            self.auth.authenticate(token, user)
            self.logout_reason = None
        if not self.auth.is_authenticated:
            logger.warning("[Session] start() without credentials")
            return False
        return await self.connection.connect()

    async def logout(self) -> None:
        """User-initiated logout."""
        await self.connection.close()
        self._drop_state()
        self.auth.clear_session_data()
        logger.info("[Session] Logged out")

    def _drop_state(self) -> None:
        self.random_chat.reset()
        self.friend_chat.reset()

    def _handle_force_login(self, reason: str) -> None:
        self.logout_reason = reason
        self._drop_state()
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self._close_task = asyncio.ensure_future(self.connection.close())
        if self._on_force_login is not None:
            self._on_force_login(reason)

    async def aclose(self) -> None:
        """Release the socket, the HTTP client and the local store."""
        if self._close_task is not None:
            await self._close_task
        await self.connection.close()
        await self.api.close()
        self.store.close()

    async def __aenter__(self) -> "SessionContext":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
