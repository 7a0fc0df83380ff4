"""Random-match coordinator.

Drives the queue / pair / leave / friend-request protocol over the shared
ConnectionManager and keeps the ephemeral transcript of the current random
chat.

Protocol Message Types (outbound):
    - join_random: Enter the matching queue
    - leave_random: Leave the queue or the current match
    - message_random: Chat line for the current partner
    - friend_request: Ask the partner to become a friend

Protocol Message Types (inbound):
    - random_joined: Paired with a partner
    - message_random: Chat line from the partner
    - friend_request / friend_request_success / friend_request_failed
    - notification (content "random_pair_left"): Partner left
    - error: Server-reported error with a code

The transcript is snapshotted to local storage after every mutation while a
session is active, and the snapshot is removed as soon as the session goes
back to idle.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from whirl.connection.manager import ConnectionManager, SocketState
from whirl.random_chat.schemas import (
    ChatEvent,
    FriendRequestState,
    PartnerProfile,
    RandomState,
)
from whirl.storage.persistence import SessionPersistence

logger = logging.getLogger(__name__)

# =============================================================================
# Wire types
# =============================================================================

OUT_JOIN = "join_random"
OUT_LEAVE = "leave_random"
OUT_MESSAGE = "message_random"
OUT_FRIEND_REQUEST = "friend_request"

IN_PAIRED = "random_joined"
IN_MESSAGE = "message_random"
IN_FRIEND_REQUEST = "friend_request"
IN_FRIEND_SUCCESS = "friend_request_success"
IN_FRIEND_FAILED = "friend_request_failed"
IN_NOTIFICATION = "notification"
IN_ERROR = "error"

PAIR_LEFT_NOTIFICATION = "random_pair_left"

# Error codes meaning the partner connection is gone
TERMINAL_ERROR_CODES = ("CONNECTION_NOT_EXIST", "INVALID_RECEIVER")
SEND_FAILED_ERROR_CODE = "SEND_MESSAGE_FAILED"

# =============================================================================
# User-facing text
# =============================================================================

STATUS_IDLE = "Tap Start Whirl to find a partner"
STATUS_CONNECTING = "Connecting socket..."
STATUS_QUEUEING = "Finding a partner..."
STATUS_PAIRED = "You are now connected! Say hi."
STATUS_LEFT_CHAT = "Left chat. Tap Start Whirl to find a new partner."
STATUS_LEFT_QUEUE = "Left queue. Tap Start Whirl to try again."
STATUS_PARTNER_LEFT = "Your match left. Re-queue to connect again."
STATUS_SERVER_ERROR = "Error received from server."

NOTICE_JOINING = "Joining random queue..."
NOTICE_PAIRED = "You have been whirled! Start chatting."
NOTICE_LEFT_QUEUE = "You left the queue."
NOTICE_NOT_PAIRED = "You are not connected to a random user yet."
NOTICE_FRIEND_REQUEST = "You received a friend request!"
NOTICE_FRIENDS = "🎉 You are now friends!"
NOTICE_FRIEND_FAILED = "Failed to send friend request. Please try again."
NOTICE_PARTNER_LEFT = "Your match has left. Tap Start Whirl to find another."
NOTICE_PARTNER_DISCONNECTED = "Your match has disconnected."
NOTICE_SERVER_ERROR = "Something went wrong."
NOTICE_MALFORMED = "Received malformed message from server."

PromotionHook = Callable[[], None]


class RandomMatchCoordinator:
    """State machine for one user's random chat.

    Attributes:
        state: idle / queueing / paired.
        friend_request: Friend-request sub-state with the current partner.
        events: Transcript in arrival order (chat lines and system notices).
        status_text: One-line status for the UI.
        partner: Placeholder profile of the anonymous partner.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        persistence: SessionPersistence,
        on_promoted: Optional[PromotionHook] = None,
    ) -> None:
        self._connection = connection
        self._persistence = persistence
        self._on_promoted = on_promoted

        self.state = RandomState.IDLE
        self.friend_request = FriendRequestState.IDLE
        self.events: List[ChatEvent] = []
        self.status_text = STATUS_IDLE
        self.partner = PartnerProfile()

        connection.on_frame(IN_PAIRED, self._on_paired)
        connection.on_frame(IN_MESSAGE, self._on_message)
        connection.on_frame(IN_FRIEND_REQUEST, self._on_friend_request)
        connection.on_frame(IN_FRIEND_SUCCESS, self._on_friend_success)
        connection.on_frame(IN_FRIEND_FAILED, self._on_friend_failed)
        connection.on_frame(IN_NOTIFICATION, self._on_notification)
        connection.on_frame(IN_ERROR, self._on_error)
        connection.on_malformed(self._on_malformed)
        connection.on_state_change(self._on_socket_state)

    @property
    def is_paired(self) -> bool:
        return self.state == RandomState.PAIRED

    # =========================================================================
    # Transcript + snapshot
    # =========================================================================

    def _persist(self) -> None:
        """Snapshot the session, or drop the snapshot once back to idle."""
        if self.state == RandomState.IDLE:
            self._persistence.clear()
        else:
            self._persistence.save(self.events, self.state)

    def _append(self, content: str, *, from_self: bool = False, system: bool = False) -> ChatEvent:
        event = ChatEvent(content=content, fromSelf=from_self, system=system)
        self.events.append(event)
        self._persist()
        return event

    def _notice(self, content: str) -> ChatEvent:
        return self._append(content, system=True)

    def _reset_to_idle(self, *, clear_history: bool) -> None:
        self.state = RandomState.IDLE
        self.friend_request = FriendRequestState.IDLE
        if clear_history:
            self.events = []
        self._persistence.clear()

    def reset(self) -> None:
        """Forget everything (logout / session teardown)."""
        self._reset_to_idle(clear_history=True)
        self.status_text = STATUS_IDLE

    def rehydrate(self) -> bool:
        """Load a persisted transcript for display after a reload.

        The transcript comes back read-only: state stays idle because a paired
        session can only be re-established by the server.

        Returns:
            True if a snapshot was found and loaded.
        """
        snapshot = self._persistence.load()
        if snapshot is None:
            return False
        self.events = list(snapshot.messages)
        logger.info(
            f"[Random] Rehydrated {len(self.events)} events "
            f"(was {snapshot.randomState.value})"
        )
        return True

    # =========================================================================
    # User intents
    # =========================================================================

    async def join_queue(self) -> bool:
        """Enter the matching queue.

        Connects first if needed. Calling this while already queueing or
        paired does nothing.

        Returns:
            True if a join frame was sent by this call.
        """
        if not self._connection.is_connected:
            self.status_text = STATUS_CONNECTING
            if not await self._connection.connect():
                self.status_text = self._connection.status
                return False

        if self.state != RandomState.IDLE:
            logger.debug(f"[Random] join_queue ignored in state {self.state.value}")
            return False

        self.events = []
        self._persistence.clear()
        self.state = RandomState.QUEUEING
        self.friend_request = FriendRequestState.IDLE
        self.status_text = STATUS_QUEUEING
        self._notice(NOTICE_JOINING)

        sent = await self._connection.send({"type": OUT_JOIN})
        if not sent:
            self._reset_to_idle(clear_history=False)
            self.status_text = self._connection.status
        logger.info(f"[Random] Joined queue (frame sent={sent})")
        return sent

    async def leave(self) -> None:
        """Leave the queue or the current match."""
        was_paired = self.state == RandomState.PAIRED
        was_queueing = self.state == RandomState.QUEUEING

        if was_paired or was_queueing:
            await self._connection.send({"type": OUT_LEAVE})

        self._reset_to_idle(clear_history=was_paired)

        if was_paired:
            self.status_text = STATUS_LEFT_CHAT
            logger.info("[Random] Left match; transcript discarded")
        elif was_queueing:
            self.status_text = STATUS_LEFT_QUEUE
            self.events.append(ChatEvent(content=NOTICE_LEFT_QUEUE, system=True))
            logger.info("[Random] Left queue")

    leave_queue = leave
    leave_match = leave

    async def send_message(self, content: str) -> Optional[ChatEvent]:
        """Send a chat line to the current partner.

        Returns:
            The appended event, or None if nothing was sent.
        """
        text = (content or "").strip()
        if not text:
            return None
        if self.state != RandomState.PAIRED:
            self._notice(NOTICE_NOT_PAIRED)
            return None

        event = self._append(text, from_self=True)
        await self._connection.send({"type": OUT_MESSAGE, "content": text})
        return event

    async def request_friend(self) -> bool:
        """Ask the current partner to become a friend.

        Returns:
            True if the request frame was sent.
        """
        if not self._connection.is_connected or self.state != RandomState.PAIRED:
            return False
        if self.friend_request in (FriendRequestState.PENDING, FriendRequestState.SUCCESS):
            return False

        self.friend_request = FriendRequestState.PENDING
        sent = await self._connection.send({"type": OUT_FRIEND_REQUEST})
        if not sent:
            self.friend_request = FriendRequestState.IDLE
        return sent

    # =========================================================================
    # Inbound frames
    # =========================================================================

    def _on_paired(self, frame: Dict[str, Any]) -> None:
        if self.state == RandomState.PAIRED:
            logger.debug("[Random] Duplicate pairing notice ignored")
            return
        self.state = RandomState.PAIRED
        self.friend_request = FriendRequestState.IDLE
        self.status_text = STATUS_PAIRED
        self._notice(NOTICE_PAIRED)
        logger.info("[Random] Paired with a partner")

    def _on_message(self, frame: Dict[str, Any]) -> None:
        content = frame.get("content")
        self._append(content if isinstance(content, str) else "")

    def _on_friend_request(self, frame: Dict[str, Any]) -> None:
        if self.friend_request != FriendRequestState.PENDING:
            self.friend_request = FriendRequestState.RECEIVED
        self._notice(NOTICE_FRIEND_REQUEST)

    def _on_friend_success(self, frame: Dict[str, Any]) -> None:
        if self.friend_request == FriendRequestState.SUCCESS:
            return
        self.friend_request = FriendRequestState.SUCCESS
        self._notice(NOTICE_FRIENDS)
        logger.info("[Random] Partner promoted to friend")
        if self._on_promoted is not None:
            self._on_promoted()

    def _on_friend_failed(self, frame: Dict[str, Any]) -> None:
        self.friend_request = FriendRequestState.IDLE
        self._notice(NOTICE_FRIEND_FAILED)

    def _on_notification(self, frame: Dict[str, Any]) -> None:
        if frame.get("content") != PAIR_LEFT_NOTIFICATION:
            logger.debug(f"[Random] Ignoring notification {frame.get('content')!r}")
            return
        if self.state == RandomState.IDLE:
            logger.debug("[Random] Partner-left notice while idle ignored")
            return
        self._reset_to_idle(clear_history=True)
        self.events.append(ChatEvent(content=NOTICE_PARTNER_LEFT, system=True))
        self.status_text = STATUS_PARTNER_LEFT
        logger.info("[Random] Partner left")

    def _on_error(self, frame: Dict[str, Any]) -> None:
        content = frame.get("content")
        message = content if isinstance(content, str) and content else NOTICE_SERVER_ERROR
        code = frame.get("code")
        logger.warning(f"[Random] Server error code={code!r}: {message}")
        self.status_text = message if content else STATUS_SERVER_ERROR

        if code in TERMINAL_ERROR_CODES:
            self._reset_to_idle(clear_history=True)
            self.events.append(ChatEvent(content=message, system=True))
        elif code == SEND_FAILED_ERROR_CODE:
            self._reset_to_idle(clear_history=True)
            self.events.append(ChatEvent(content=message, system=True))
            self.events.append(ChatEvent(content=NOTICE_PARTNER_DISCONNECTED, system=True))
        else:
            self._notice(message)

    def _on_malformed(self, raw: Any, error: Exception) -> None:
        self._notice(NOTICE_MALFORMED)

    def _on_socket_state(self, state: SocketState) -> None:
        if state != SocketState.DISCONNECTED or self.state == RandomState.IDLE:
            return
        # The server forgets our queue slot / match with the socket
        logger.info(f"[Random] Socket dropped while {self.state.value}; back to idle")
        self._reset_to_idle(clear_history=False)
        self.status_text = self._connection.status
