"""WebSocket connection manager for the Whirl realtime channel.

This module owns the single persistent WebSocket between the client and the
chat server. Random chat and friend chat both talk through it, but neither
ever touches the socket: they send frames with ``send()`` and receive frames
through handlers registered per frame type.

Key features:
    - One transport at a time; concurrent ``connect()`` calls share one attempt
    - Observable state (disconnected / connecting / connected) and status text
    - Inbound frames parsed once and routed by ``type``, in delivery order
    - Malformed payloads reported to listeners, never fatal
    - Close-code classification (clean / unauthorized / abnormal)
    - Delayed liveness probe after an abnormal close
    - No automatic reconnect; reconnecting is always a user action

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from whirl.api.client import ApiClient
from whirl.auth.service import AuthContext
from whirl.config import WhirlConfig

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_PROTOCOL_ERROR = 1002
CLOSE_ABNORMAL = 1006
CLOSE_POLICY_VIOLATION = 1008

CLEAN_CLOSE_CODES = (CLOSE_NORMAL, CLOSE_GOING_AWAY)
PROBE_CLOSE_CODES = (CLOSE_PROTOCOL_ERROR, CLOSE_ABNORMAL)

STATUS_IDLE = "Disconnected."
STATUS_CONNECTED = "Connected. Tap Start Whirl to join the queue."
STATUS_MISSING_TOKEN = "Missing token. Please log in again."
STATUS_OPEN_FAILED = "Unable to open websocket. Check token or server."
STATUS_UNAUTHORIZED = "Unauthorized websocket. Please re-login."
STATUS_RETRY = "Disconnected. Tap to retry."
STATUS_NOT_READY = "Socket not ready. Tap Connect to retry."
REASON_SERVER_OFFLINE = "Server is offline. Please try again later."

FrameHandler = Callable[[Dict[str, Any]], None]
MalformedHandler = Callable[[Any, Exception], None]
StateListener = Callable[["SocketState"], None]
Connector = Callable[..., Awaitable[Any]]


class SocketState(str, Enum):
    """Lifecycle of the WebSocket.

    Attributes:
        DISCONNECTED: No transport, or the transport has closed.
        CONNECTING: Handshake in progress.
        CONNECTED: Frames may be sent.
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MalformedFrameError(ValueError):
    """Inbound payload was not a JSON object."""


# =============================================================================
# Connection Manager
# =============================================================================


class ConnectionManager:
    """Owns the WebSocket transport, its lifecycle and inbound routing.

    Attributes:
        status: Human-readable status, updated on every transition.
    """

    def __init__(
        self,
        config: WhirlConfig,
        auth: AuthContext,
        api: ApiClient,
        connector: Optional[Connector] = None,
    ) -> None:
        self._config = config
        self._auth = auth
        self._api = api
        self._connector: Connector = connector or websockets.connect

        self._state = SocketState.DISCONNECTED
        self.status: str = STATUS_IDLE

        # The transport; never handed out
        self._ws: Optional[Any] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._probe_task: Optional[asyncio.Task] = None

        # Bumped by close(); an attempt that finishes under an older generation is discarded
        self._generation = 0

        # frame type -> handlers
        self._frame_handlers: Dict[str, List[FrameHandler]] = {}
        self._malformed_handlers: List[MalformedHandler] = []
        self._state_listeners: List[StateListener] = []

    # =========================================================================
    # Observers
    # =========================================================================

    @property
    def state(self) -> SocketState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SocketState.CONNECTED

    def on_frame(self, frame_type: str, handler: FrameHandler) -> None:
        """Register a handler for inbound frames of one ``type``."""
        self._frame_handlers.setdefault(frame_type, []).append(handler)

    def on_malformed(self, handler: MalformedHandler) -> None:
        """Register a handler for payloads that are not JSON objects."""
        self._malformed_handlers.append(handler)

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, state: SocketState, status: Optional[str] = None) -> None:
        previous = self._state
        self._state = state
        if status is not None:
            self.status = status
        if previous == state:
            return
        logger.info(f"[WS] {previous.value} -> {state.value} ({self.status})")
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("[WS] State listener failed")

    def _set_status(self, status: str) -> None:
        self.status = status

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _build_url(self, token: str) -> str:
        server = self._config.server
        return f"{server.ws_base_url}{server.ws_path}?token={quote(token, safe='')}"

    async def connect(self) -> bool:
        """Open the WebSocket unless one is already open, closing or opening.

        Concurrent callers await the same attempt, so at most one transport
        is ever created.

        Returns:
            True if the socket is connected when the call returns.
        """
        if self._ws is not None:
            return self.is_connected

        if self._connect_task is None:
            token = self._auth.token
            if not token:
                logger.warning("[WS] No token available; not connecting")
                self._set_status(STATUS_MISSING_TOKEN)
                return False
            self._set_state(SocketState.CONNECTING, "Connecting socket...")
            self._connect_task = asyncio.ensure_future(self._open(token, self._generation))

        return await asyncio.shield(self._connect_task)

    async def _open(self, token: str, generation: int) -> bool:
        try:
            ws = await self._connector(
                self._build_url(token),
                open_timeout=self._config.server.open_timeout,
            )
        except InvalidStatus as e:
            status_code = e.response.status_code
            logger.error(f"[WS] Handshake rejected with HTTP {status_code}")
            if generation != self._generation:
                return False
            if status_code in (401, 403):
                self._set_state(SocketState.DISCONNECTED, STATUS_UNAUTHORIZED)
                self._auth.handle_unauthorized(STATUS_UNAUTHORIZED)
            else:
                self._set_state(SocketState.DISCONNECTED, STATUS_OPEN_FAILED)
                self._schedule_liveness_probe()
            return False
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"[WS] WebSocket init failed: {e!r}")
            if generation != self._generation:
                return False
            self._set_state(SocketState.DISCONNECTED, STATUS_OPEN_FAILED)
            self._schedule_liveness_probe()
            return False
        finally:
            # A newer attempt may already own the slot
            if self._connect_task is asyncio.current_task():
                self._connect_task = None

        if generation != self._generation:
            # close() was called while the handshake was in flight
            logger.info("[WS] Connection opened after close(); discarding it")
            await self._close_transport(ws)
            return False

        self._ws = ws
        self._set_state(SocketState.CONNECTED, STATUS_CONNECTED)
        self._receive_task = asyncio.ensure_future(self._receive_loop(ws))
        return True

    async def close(self) -> None:
        """Operator-initiated close: release the transport and stop timers."""
        self._generation += 1
        ws = self._ws
        self._ws = None
        # An in-flight handshake finishes on its own and discards its socket
        self._connect_task = None

        for task in (self._receive_task, self._probe_task):
            if task is not None and not task.done():
                task.cancel()
        self._receive_task = None
        self._probe_task = None

        if ws is not None:
            await self._close_transport(ws)
        self._set_state(SocketState.DISCONNECTED, STATUS_IDLE)

    async def _close_transport(self, ws: Any) -> None:
        try:
            await ws.close(code=CLOSE_NORMAL)
        except Exception as e:
            logger.debug(f"[WS] Error while closing transport: {e}")

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send(self, frame: Dict[str, Any]) -> bool:
        """Send one JSON frame.

        Returns:
            True if the frame was handed to the transport. When the socket is
            not connected nothing is sent, the status is updated and False is
            returned.
        """
        ws = self._ws
        if ws is None or not self.is_connected:
            logger.warning(f"[WS] Dropping {frame.get('type', '?')!r} frame: socket not ready")
            self._set_status(STATUS_NOT_READY)
            return False
        try:
            await ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            logger.warning(f"[WS] Send failed, connection closed: {e}")
            return False
        logger.debug(f"[WS] Sent frame type={frame.get('type', '?')}")
        return True

    # =========================================================================
    # Inbound
    # =========================================================================

    async def _receive_loop(self, ws: Any) -> None:
        try:
            while True:
                raw = await ws.recv()
                self._dispatch(raw)
        except ConnectionClosed as e:
            if ws is not self._ws:
                return
            clean = e.rcvd is not None
            code = e.rcvd.code if e.rcvd is not None else CLOSE_ABNORMAL
            reason = e.rcvd.reason if e.rcvd is not None else ""
            self._handle_remote_close(code, reason, clean)

    def _dispatch(self, raw: Any) -> None:
        """Parse one inbound payload and route it by frame type."""
        try:
            frame = json.loads(raw)
            if not isinstance(frame, dict):
                raise MalformedFrameError(f"expected a JSON object, got {type(frame).__name__}")
        except (TypeError, ValueError) as e:
            logger.error(f"[WS] Malformed inbound payload: {e}")
            for handler in list(self._malformed_handlers):
                try:
                    handler(raw, e)
                except Exception:
                    logger.exception("[WS] Malformed-payload handler failed")
            return

        frame_type = frame.get("type")
        handlers = self._frame_handlers.get(frame_type) if isinstance(frame_type, str) else None
        if not handlers:
            logger.debug(f"[WS] Ignoring frame with unhandled type={frame_type!r}")
            return

        logger.debug(f"[WS] Received type={frame_type}")
        for handler in list(handlers):
            try:
                handler(frame)
            except Exception:
                logger.exception(f"[WS] Handler for {frame_type!r} failed")

    def _handle_remote_close(self, code: int, reason: str, clean: bool) -> None:
        """Classify a close initiated by the server or the network."""
        self._ws = None
        self._receive_task = None
        logger.info(f"[WS] Remote close code={code} reason={reason!r} clean={clean}")

        if code in CLEAN_CLOSE_CODES:
            self._set_state(SocketState.DISCONNECTED, STATUS_IDLE)
            return

        if code == CLOSE_POLICY_VIOLATION:
            self._set_state(SocketState.DISCONNECTED, STATUS_UNAUTHORIZED)
            self._auth.handle_unauthorized(STATUS_UNAUTHORIZED)
            return

        self._set_state(SocketState.DISCONNECTED, STATUS_RETRY)
        if code in PROBE_CLOSE_CODES or not clean:
            self._schedule_liveness_probe()

    # =========================================================================
    # Liveness probe
    # =========================================================================

    def _schedule_liveness_probe(self) -> None:
        if self._probe_task is not None and not self._probe_task.done():
            return
        self._probe_task = asyncio.ensure_future(self._liveness_probe())

    async def _liveness_probe(self) -> None:
        liveness = self._config.liveness
        await asyncio.sleep(liveness.probe_delay_seconds)
        alive = await self._api.check_health(liveness.probe_timeout_seconds)
        if alive:
            logger.info("[WS] Server is reachable; waiting for the user to reconnect")
            return
        self._auth.handle_server_offline(REASON_SERVER_OFFLINE)
