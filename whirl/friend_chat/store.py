"""Friend-chat message store.

Keeps one conversation per friend: history fetched page by page from the
REST API, live ``direct_message`` frames from the WebSocket, and the messages
we send, tracked optimistically until the transport takes them.

The history API is cumulative: page K returns the K * page_size most recent
messages (newest first), not the K-th slice. Loading older messages therefore
fetches the next cumulative page and keeps only the messages whose identity
is not already stored, inserting them in ID order so older rows end up
prepended, oldest first. A page shorter than K * page_size means the history
is exhausted.

Delivery states are cosmetic. A message becomes ``sent`` a fixed delay after
it was handed to the transport; there is no server acknowledgment behind it.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from whirl.api.client import WhirlAPIError
from whirl.api.schemas import HistoryMessage
from whirl.auth.service import AuthContext
from whirl.config import WhirlConfig
from whirl.connection.manager import ConnectionManager
from whirl.friend_chat.schemas import (
    Confirmed,
    DeliveryState,
    DirectMessageFrame,
    FriendConversation,
    FriendMessage,
    LocalPending,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

DIRECT_MESSAGE = "direct_message"


class HistoryFetcher(Protocol):
    async def get_messages(self, friend_id: int, page: int = 1) -> List[HistoryMessage]: ...


class FriendChatStore:
    """Per-friend message history with pagination and optimistic sends."""

    def __init__(
        self,
        config: WhirlConfig,
        connection: ConnectionManager,
        fetcher: HistoryFetcher,
        auth: AuthContext,
    ) -> None:
        self._connection = connection
        self._fetcher = fetcher
        self._auth = auth
        self.page_size = config.friend_chat.page_size
        self.sent_delay = config.friend_chat.sent_delay_seconds

        self._conversations: Dict[int, FriendConversation] = {}
        self._opening: Dict[int, asyncio.Task] = {}
        self._sent_timers: Dict[str, asyncio.TimerHandle] = {}

        # Bumped by reset(); fetches started under an older epoch are discarded
        self._epoch = 0

        connection.on_frame(DIRECT_MESSAGE, self._on_direct_message)

    # =========================================================================
    # Accessors
    # =========================================================================

    def conversation(self, friend_id: int) -> Optional[FriendConversation]:
        return self._conversations.get(friend_id)

    def messages(self, friend_id: int) -> List[FriendMessage]:
        conversation = self._conversations.get(friend_id)
        return list(conversation.messages) if conversation else []

    def has_more(self, friend_id: int) -> bool:
        conversation = self._conversations.get(friend_id)
        return bool(conversation and conversation.has_more)

    def is_loading(self, friend_id: int) -> bool:
        conversation = self._conversations.get(friend_id)
        return bool(conversation and conversation.loading)

    def reset(self) -> None:
        """Drop every conversation (logout). In-flight fetches become stale."""
        self._epoch += 1
        for handle in self._sent_timers.values():
            handle.cancel()
        self._sent_timers.clear()
        self._conversations.clear()
        self._opening.clear()

    # =========================================================================
    # History
    # =========================================================================

    async def open_thread(self, friend_id: int) -> Optional[FriendConversation]:
        """Load page 1 of a thread the first time it is opened.

        Concurrent calls for the same friend share one fetch.

        Returns:
            The conversation, or None if the first page could not be fetched.
        """
        conversation = self._conversations.get(friend_id)
        if conversation is not None and conversation.loaded:
            return conversation

        task = self._opening.get(friend_id)
        if task is None:
            task = asyncio.ensure_future(self._load_first_page(friend_id, self._epoch))
            self._opening[friend_id] = task
        return await asyncio.shield(task)

    async def _load_first_page(self, friend_id: int, epoch: int) -> Optional[FriendConversation]:
        try:
            page = await self._fetcher.get_messages(friend_id, 1)
        except WhirlAPIError as e:
            logger.error(f"[Friends] Failed to load messages for friend {friend_id}: {e}")
            return None
        finally:
            if epoch == self._epoch:
                self._opening.pop(friend_id, None)

        if epoch != self._epoch:
            logger.debug(f"[Friends] Discarding stale first page for friend {friend_id}")
            return None

        conversation = self._conversations.get(friend_id)
        if conversation is None:
            conversation = FriendConversation(friend_id=friend_id)
            self._conversations[friend_id] = conversation

        # Messages sent before the thread was opened stay after the fetched history
        self._merge_history(conversation.messages, page)
        conversation.page = 1
        conversation.has_more = len(page) == self.page_size
        logger.info(
            f"[Friends] Opened thread {friend_id}: {len(page)} messages, has_more={conversation.has_more}"
        )
        return conversation

    async def load_older(self, friend_id: int) -> int:
        """Fetch the next cumulative page and merge in the messages not yet stored.

        Returns:
            Number of messages added.
        """
        conversation = self._conversations.get(friend_id)
        if conversation is None or conversation.loading or not conversation.has_more:
            return 0

        conversation.loading = True
        next_page = conversation.page + 1
        epoch = self._epoch
        try:
            page = await self._fetcher.get_messages(friend_id, next_page)
        except WhirlAPIError as e:
            logger.error(f"[Friends] Failed to load older messages for friend {friend_id}: {e}")
            return 0
        finally:
            conversation.loading = False

        if epoch != self._epoch or self._conversations.get(friend_id) is not conversation:
            logger.debug(f"[Friends] Discarding stale page {next_page} for friend {friend_id}")
            return 0

        added = self._merge_history(conversation.messages, page)
        conversation.page = next_page
        conversation.has_more = len(page) == next_page * self.page_size
        logger.info(
            f"[Friends] Page {next_page} for friend {friend_id}: "
            f"+{added} messages, has_more={conversation.has_more}"
        )
        return added

    def _merge_history(self, messages: List[FriendMessage], page: List[HistoryMessage]) -> int:
        """Merge a history page into ``messages`` in place, keeping ascending ID order.

        Rows whose identity is already stored are dropped. Rows newer than the
        newest confirmed message may be server copies of our unconfirmed sends;
        those are matched newest first and confirm the local message instead
        of being added. Older rows are never matched against local sends.

        Returns:
            Number of messages inserted.
        """
        known = {msg.identity for msg in messages}
        newest_confirmed = max(
            (msg.server_id for msg in messages if msg.server_id is not None), default=None
        )

        fresh: List[HistoryMessage] = []
        for item in sorted(page, key=lambda row: row.ID, reverse=True):
            identity = Confirmed(item.ID)
            if identity in known:
                continue
            known.add(identity)
            if newest_confirmed is None or item.ID > newest_confirmed:
                if self._confirm_local(
                    messages, item.SenderID, item.ReceiverID, item.Content, item.ID,
                    newest_first=True,
                ):
                    continue
            fresh.append(item)

        for item in reversed(fresh):
            self._insert_by_id(messages, FriendMessage.from_history(item))
        return len(fresh)

    @staticmethod
    def _insert_by_id(messages: List[FriendMessage], message: FriendMessage) -> None:
        """Insert before the first confirmed message with a higher ID."""
        insert_at = None
        after_last_confirmed = 0
        for index, stored in enumerate(messages):
            stored_id = stored.server_id
            if stored_id is None:
                continue
            if stored_id > message.server_id:
                insert_at = index
                break
            after_last_confirmed = index + 1
        messages.insert(after_last_confirmed if insert_at is None else insert_at, message)

    def _confirm_local(
        self,
        messages: List[FriendMessage],
        sender_id: int,
        receiver_id: Optional[int],
        content: str,
        server_id: Optional[int],
        newest_first: bool = False,
    ) -> bool:
        """Match a server copy of our own message to an unconfirmed send.

        Echoes arrive in send order and match the oldest unconfirmed send;
        history rows are walked newest first and match the newest one.
        """
        me = self._auth.user_id
        if me is None or sender_id != me:
            return False
        candidates = reversed(messages) if newest_first else iter(messages)
        for msg in candidates:
            if not msg.is_unconfirmed or msg.sender_id != me:
                continue
            if msg.delivery == DeliveryState.FAILED:
                continue
            if receiver_id is not None and msg.receiver_id != receiver_id:
                continue
            if msg.content != content:
                continue
            if server_id is not None:
                self._cancel_timer(msg.identity.token)
                msg.identity = Confirmed(server_id)
                if msg.delivery == DeliveryState.PENDING:
                    msg.delivery = DeliveryState.SENT
            return True
        return False

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, friend_id: int, content: str) -> Optional[FriendMessage]:
        """Send a direct message, tracking it optimistically.

        Returns:
            The locally stored message, or None if the content was empty.
        """
        text = (content or "").strip()
        if not text:
            return None

        conversation = self._conversations.get(friend_id)
        if conversation is None:
            conversation = FriendConversation(friend_id=friend_id)
            self._conversations[friend_id] = conversation

        identity = LocalPending.new()
        message = FriendMessage(
            identity=identity,
            sender_id=self._auth.user_id or 0,
            receiver_id=friend_id,
            content=text,
            delivery=DeliveryState.PENDING,
        )
        conversation.messages.append(message)

        sent = await self._connection.send({"type": DIRECT_MESSAGE, "to": friend_id, "content": text})
        if not sent:
            message.delivery = DeliveryState.FAILED
            logger.warning(f"[Friends] Message to {friend_id} not handed to transport")
            return message

        loop = asyncio.get_running_loop()
        self._sent_timers[identity.token] = loop.call_later(
            self.sent_delay, self._mark_sent, friend_id, identity.token
        )
        return message

    def _mark_sent(self, friend_id: int, token: str) -> None:
        self._sent_timers.pop(token, None)
        conversation = self._conversations.get(friend_id)
        if conversation is None:
            return
        message = conversation.find_by_token(token)
        if message is not None and message.delivery == DeliveryState.PENDING:
            message.delivery = DeliveryState.SENT

    def _cancel_timer(self, token: str) -> None:
        handle = self._sent_timers.pop(token, None)
        if handle is not None:
            handle.cancel()

    # =========================================================================
    # Inbound frames
    # =========================================================================

    def _on_direct_message(self, frame: Dict[str, Any]) -> None:
        try:
            incoming = DirectMessageFrame.model_validate(frame)
        except ValidationError as e:
            logger.error(f"[Friends] Malformed direct_message frame: {e}")
            return

        me = self._auth.user_id
        if me is not None and incoming.sender_id == me:
            self._on_own_echo(incoming)
            return

        conversation = self._conversations.get(incoming.sender_id)
        if conversation is None:
            logger.debug(f"[Friends] Message from {incoming.sender_id} for an unopened thread; ignored")
            return

        server_id = incoming.server_id
        identity = Confirmed(server_id) if server_id is not None else LocalPending.new()
        if identity in conversation.identities():
            logger.debug(f"[Friends] Duplicate message {server_id} from {incoming.sender_id} ignored")
            return

        conversation.messages.append(FriendMessage(
            identity=identity,
            sender_id=incoming.sender_id,
            receiver_id=me or 0,
            content=incoming.content,
            timestamp=incoming.timestamp or utc_now_iso(),
        ))

    def _on_own_echo(self, incoming: DirectMessageFrame) -> None:
        """A copy of a message we sent (this device or another one)."""
        if incoming.to is None:
            return
        conversation = self._conversations.get(incoming.to)
        if conversation is None:
            return

        server_id = incoming.server_id
        if server_id is not None and Confirmed(server_id) in conversation.identities():
            return
        if self._confirm_local(
            conversation.messages, incoming.sender_id, incoming.to, incoming.content, server_id
        ):
            return

        conversation.messages.append(FriendMessage(
            identity=Confirmed(server_id) if server_id is not None else LocalPending.new(),
            sender_id=incoming.sender_id,
            receiver_id=incoming.to,
            content=incoming.content,
            timestamp=incoming.timestamp or utc_now_iso(),
        ))
