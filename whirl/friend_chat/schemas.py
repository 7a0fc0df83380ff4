"""Data types for friend conversations.

Message identity is a tagged variant:

    LocalPending(token, placeholder)  sent by us, no server ID known yet
    Confirmed(id)                     carries the server-assigned ID

The two variants never compare equal, so a locally generated placeholder can
never collide with a real server ID.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field

from whirl.api.schemas import HistoryMessage
from whirl.utils.timefmt import format_message_time


class DeliveryState(str, Enum):
    """Local-only delivery annotation on messages we sent.

    Attributes:
        PENDING: Appended locally, not yet handed to the transport.
        SENT: Handed to the transport. Not a server receipt.
        FAILED: The transport refused the frame.
    """
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class LocalPending:
    """Identity of an outbound message before the server has numbered it."""
    token: str
    placeholder: int

    @classmethod
    def new(cls) -> "LocalPending":
        return cls(token=f"temp-{uuid.uuid4().hex}", placeholder=int(time.time() * 1000))


@dataclass(frozen=True)
class Confirmed:
    """Identity carrying the server-assigned message ID."""
    id: int


MessageIdentity = Union[LocalPending, Confirmed]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class FriendMessage:
    """A message in a friend conversation.

    Attributes:
        identity: LocalPending or Confirmed.
        sender_id: User ID of the author.
        receiver_id: User ID of the recipient.
        content: Message text.
        timestamp: ISO-8601 timestamp.
        delivery: Delivery state; None for server-confirmed or remote messages.
    """
    identity: MessageIdentity
    sender_id: int
    receiver_id: int
    content: str
    timestamp: str = field(default_factory=utc_now_iso)
    delivery: Optional[DeliveryState] = None

    @property
    def server_id(self) -> Optional[int]:
        return self.identity.id if isinstance(self.identity, Confirmed) else None

    @property
    def is_unconfirmed(self) -> bool:
        return isinstance(self.identity, LocalPending)

    def display_time(self, now: Optional[datetime] = None) -> str:
        """Bubble timestamp, e.g. "Yesterday 3:04 PM"."""
        return format_message_time(self.timestamp, now=now)

    @classmethod
    def from_history(cls, message: HistoryMessage) -> "FriendMessage":
        return cls(
            identity=Confirmed(message.ID),
            sender_id=message.SenderID,
            receiver_id=message.ReceiverID,
            content=message.Content,
            timestamp=message.Timestamp or utc_now_iso(),
        )


@dataclass
class FriendConversation:
    """History of one friend thread, oldest message first.

    Attributes:
        friend_id: The friend this thread is with.
        messages: Stored messages, oldest first.
        page: Last cumulative page fetched (0 = history not loaded yet).
        has_more: Whether older messages may exist on the server.
        loading: Re-entrancy guard for ``load_older``.
    """
    friend_id: int
    messages: List[FriendMessage] = field(default_factory=list)
    page: int = 0
    has_more: bool = False
    loading: bool = False

    @property
    def loaded(self) -> bool:
        return self.page > 0

    def identities(self) -> Set[MessageIdentity]:
        return {msg.identity for msg in self.messages}

    def find_by_token(self, token: str) -> Optional[FriendMessage]:
        for msg in self.messages:
            if isinstance(msg.identity, LocalPending) and msg.identity.token == token:
                return msg
        return None


class DirectMessageFrame(BaseModel):
    """Inbound ``direct_message`` frame."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender_id: int = Field(..., alias="from")
    to: Optional[int] = None
    content: str = ""
    id: Optional[int] = None
    message_id: Optional[int] = None
    timestamp: Optional[str] = None

    @property
    def server_id(self) -> Optional[int]:
        return self.id if self.id is not None else self.message_id
