"""Pydantic schemas for random chat.

The random-chat transcript is a flat list of events. Chat lines typed by
either side and system notices ("You have been whirled!") share one shape so
the whole transcript can be persisted as a single record and rendered in
arrival order.

These schemas are used by:
    - RandomMatchCoordinator: in-memory transcript and state
    - SessionPersistence: the ``random_chat_session`` snapshot
"""
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from whirl.utils.timefmt import format_message_time


class RandomState(str, Enum):
    """Lifecycle of a random-chat session.

    Attributes:
        IDLE: Not queued and not paired.
        QUEUEING: Waiting for the server to find a partner.
        PAIRED: Matched with a stranger; messages may be exchanged.
    """
    IDLE = "idle"
    QUEUEING = "queueing"
    PAIRED = "paired"


class FriendRequestState(str, Enum):
    """Friend-request progress with the current partner.

    Attributes:
        IDLE: No request in flight.
        PENDING: We sent a request and are waiting for the outcome.
        RECEIVED: The partner sent us a request.
        SUCCESS: The server confirmed the friendship.
    """
    IDLE = "idle"
    PENDING = "pending"
    RECEIVED = "received"
    SUCCESS = "success"


class ChatEvent(BaseModel):
    """One entry of the random-chat transcript.

    Attributes:
        id: Local identifier, unique within the transcript.
        content: Text shown to the user.
        fromSelf: True for lines typed by the local user.
        timestamp: Milliseconds since epoch.
        system: True for locally generated notices.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Local event ID")
    content: str = Field(..., description="Event text")
    fromSelf: bool = Field(default=False, description="Typed by the local user")
    timestamp: int = Field(
        default_factory=lambda: int(time.time() * 1000),
        description="Milliseconds since epoch"
    )
    system: bool = Field(default=False, description="System notice")

    def display_time(self, now: Optional[datetime] = None) -> str:
        return format_message_time(datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc), now=now)


class RandomSessionSnapshot(BaseModel):
    """Persisted form of a random-chat session (survives a reload).

    Attributes:
        messages: Transcript at the time of the last mutation.
        randomState: Session state at the time of the last mutation.
        hadChat: Always True once a snapshot has been written.
    """
    messages: List[ChatEvent] = Field(default_factory=list)
    randomState: RandomState = Field(default=RandomState.IDLE)
    hadChat: bool = Field(default=True)


class PartnerProfile(BaseModel):
    """Placeholder profile shown for the anonymous partner."""
    id: str = "random-partner"
    name: str = "Random Whirler"
    bio: str = "Say hi to your new match!"
    country: str = "Unknown"
    countryFlag: str = "🌍"
