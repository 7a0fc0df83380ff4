"""Authenticated identity and the forced re-login failure paths.

Two failure paths end a session from anywhere in the client:

1. ``handle_unauthorized``: the server explicitly rejected our credentials
   (HTTP 401, WebSocket close 1008, 401/403 on the upgrade).
2. ``handle_server_offline``: the server could not be reached at all
   (liveness probe failed, history fetch hit a network error). A dead
   server and a dead session look the same from here, so this path also
   forces a new login.

Both clear every session record from local storage and then notify the
registered force-login hooks with a human-readable reason string. Within one
authenticated session only the first failure fires the hooks; later ones are
logged and dropped until ``authenticate`` is called again.
"""
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from whirl.auth.schemas import UserProfile
from whirl.storage.local_store import RANDOM_SESSION_KEY, TOKEN_KEY, USER_KEY, LocalStore

logger = logging.getLogger(__name__)

DEFAULT_UNAUTHORIZED_REASON = "Your session has expired. Please log in again."
DEFAULT_OFFLINE_REASON = "Server is offline. Please try again later."

ForceLoginHook = Callable[[str], None]


class AuthContext:
    """Identity provider backed by local storage.

    Attributes:
        store: Local storage holding the token and cached user.
        last_failure_reason: Reason passed to the most recent forced re-login.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store
        self.last_failure_reason: Optional[str] = None
        self._hooks: List[ForceLoginHook] = []
        self._failed = False

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def token(self) -> Optional[str]:
        return self.store.get(TOKEN_KEY)

    @property
    def user(self) -> Optional[UserProfile]:
        raw = self.store.get(USER_KEY)
        if not raw:
            return None
        try:
            return UserProfile.model_validate(raw)
        except ValidationError:
            logger.warning("[Auth] Cached user record is invalid; ignoring it")
            return None

    @property
    def user_id(self) -> Optional[int]:
        user = self.user
        return user.id if user else None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def authenticate(self, token: str, user: Optional[dict] = None) -> None:
        """Store credentials handed over by the login flow.

        Args:
            token: JWT issued by ``/auth/login`` or ``/auth/register``.
            user: User record from the same response, if any.
        """
        self.store.set(TOKEN_KEY, token)
        if user is not None:
            self.store.set(USER_KEY, user)
        self._failed = False
        self.last_failure_reason = None
        logger.info(f"[Auth] Authenticated user_id={self.user_id}")

    # =========================================================================
    # Force-login hooks
    # =========================================================================

    def add_force_login_hook(self, hook: ForceLoginHook) -> None:
        self._hooks.append(hook)

    def remove_force_login_hook(self, hook: ForceLoginHook) -> None:
        if hook in self._hooks:
            self._hooks.remove(hook)

    # =========================================================================
    # Session teardown
    # =========================================================================

    def clear_session_data(self) -> None:
        """Remove every user and session record from local storage."""
        self.store.remove(TOKEN_KEY)
        self.store.remove(USER_KEY)
        self.store.remove(RANDOM_SESSION_KEY)

    def handle_unauthorized(self, message: Optional[str] = None) -> None:
        """Clear the session and force re-authentication (credentials rejected)."""
        self._force_login(message or DEFAULT_UNAUTHORIZED_REASON)

    def handle_server_offline(self, message: Optional[str] = None) -> None:
        """Clear the session and force re-authentication (server unreachable)."""
        self._force_login(message or DEFAULT_OFFLINE_REASON)

    def _force_login(self, reason: str) -> None:
        if self._failed:
            logger.debug(f"[Auth] Session already ended, ignoring: {reason}")
            return
        self._failed = True
        self.last_failure_reason = reason
        logger.warning(f"[Auth] Forcing re-login: {reason}")
        self.clear_session_data()
        for hook in list(self._hooks):
            try:
                hook(reason)
            except Exception as e:
                logger.error(f"[Auth] Force-login hook failed: {e}")
