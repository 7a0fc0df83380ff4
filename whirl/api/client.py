"""HTTP client for the history API and the liveness endpoint.

Every request carries the bearer token from the identity provider. Failures
are classified once, here:

    - HTTP 401                      -> unauthorized path, UnauthorizedError
    - connection refused / timeout  -> server-offline path, ServerOfflineError
    - any other non-2xx response    -> HistoryFetchError (no session change)

Callers catch ``WhirlAPIError`` and keep their own state untouched.
"""
import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from whirl.api.schemas import ApiErrorBody, HistoryMessage, MessagesResponse
from whirl.auth.service import AuthContext
from whirl.config import WhirlConfig

logger = logging.getLogger(__name__)


class WhirlAPIError(Exception):
    """Base class for API failures."""


class UnauthorizedError(WhirlAPIError):
    """The server rejected our credentials."""


class ServerOfflineError(WhirlAPIError):
    """The server could not be reached."""


class HistoryFetchError(WhirlAPIError):
    """The server answered with an error for a history request."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"History request failed ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class ApiClient:
    """Async REST client shared by the history fetcher and the liveness probe."""

    def __init__(
        self,
        config: WhirlConfig,
        auth: AuthContext,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._auth = auth
        self._client = httpx.AsyncClient(
            base_url=config.server.api_base_url,
            transport=transport,
        )

    def _auth_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._auth.token}",
        }

    async def _get(self, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.get(path, headers=self._auth_headers(), **kwargs)
        except httpx.TransportError as e:
            logger.error(f"[API] GET {path} failed: {e!r}")
            self._auth.handle_server_offline()
            raise ServerOfflineError(str(e)) from e

        if response.status_code == 401:
            self._auth.handle_unauthorized()
            raise UnauthorizedError("Unauthorized")
        return response

    async def get_messages(self, friend_id: int, page: int = 1) -> List[HistoryMessage]:
        """Fetch a cumulative history page for one friend.

        Args:
            friend_id: The friend whose conversation to read.
            page: 1-based page number; page K holds the K * page_size newest messages.

        Returns:
            Messages newest first, exactly as the server returned them.

        Raises:
            UnauthorizedError, ServerOfflineError, HistoryFetchError.
        """
        response = await self._get(f"/messages/{friend_id}", params={"page": page})

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.is_success:
            error = ApiErrorBody.model_validate(body) if isinstance(body, dict) else ApiErrorBody()
            raise HistoryFetchError(response.status_code, error.error or response.reason_phrase)

        try:
            parsed = MessagesResponse.model_validate(body)
        except ValidationError as e:
            raise HistoryFetchError(response.status_code, f"Malformed history payload: {e}") from e
        return parsed.messages or []

    async def check_health(self, timeout: Optional[float] = None) -> bool:
        """Probe the liveness endpoint.

        Any HTTP response counts as alive; only a transport failure or timeout
        counts as dead.
        """
        if timeout is None:
            timeout = self._config.liveness.probe_timeout_seconds
        try:
            await self._client.get(self._config.server.health_path, timeout=timeout)
        except httpx.TransportError as e:
            logger.warning(f"[API] Health check failed: {e!r}")
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()
