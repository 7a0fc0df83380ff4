"""Tests for the random-match coordinator."""
import asyncio
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from fakes import flush
from whirl.connection.manager import STATUS_OPEN_FAILED, STATUS_RETRY
from whirl.random_chat.coordinator import (
    NOTICE_FRIEND_FAILED,
    NOTICE_FRIEND_REQUEST,
    NOTICE_FRIENDS,
    NOTICE_JOINING,
    NOTICE_LEFT_QUEUE,
    NOTICE_MALFORMED,
    NOTICE_NOT_PAIRED,
    NOTICE_PAIRED,
    NOTICE_PARTNER_DISCONNECTED,
    NOTICE_PARTNER_LEFT,
    STATUS_LEFT_CHAT,
    STATUS_LEFT_QUEUE,
    STATUS_PAIRED,
    STATUS_PARTNER_LEFT,
    STATUS_QUEUEING,
    RandomMatchCoordinator,
)
from whirl.random_chat.schemas import ChatEvent, FriendRequestState, RandomState
from whirl.storage.persistence import SessionPersistence


@pytest.fixture
def persistence(store) -> SessionPersistence:
    return SessionPersistence(store)


@pytest.fixture
def promoted() -> MagicMock:
    return MagicMock()


@pytest.fixture
def coordinator(connection, persistence, promoted) -> RandomMatchCoordinator:
    return RandomMatchCoordinator(connection, persistence, on_promoted=promoted)


@pytest_asyncio.fixture
async def paired(coordinator, connector):
    """A coordinator that has joined the queue and been matched."""
    await coordinator.join_queue()
    connector.ws.push({"type": "random_joined"})
    await flush()
    assert coordinator.state == RandomState.PAIRED
    return coordinator


def contents(coordinator: RandomMatchCoordinator):
    return [event.content for event in coordinator.events]


# =============================================================================
# Queueing
# =============================================================================


class TestJoinQueue:
    """Tests for join_queue()."""

    @pytest.mark.asyncio
    async def test_join_connects_and_sends_frame(self, coordinator, connector, persistence):
        assert await coordinator.join_queue() is True

        assert connector.ws.frames("join_random") == [{"type": "join_random"}]
        assert coordinator.state == RandomState.QUEUEING
        assert coordinator.status_text == STATUS_QUEUEING
        assert contents(coordinator) == [NOTICE_JOINING]
        assert persistence.load().randomState == RandomState.QUEUEING

    @pytest.mark.asyncio
    async def test_join_while_queueing_is_ignored(self, coordinator, connector):
        await coordinator.join_queue()
        assert await coordinator.join_queue() is False
        assert len(connector.ws.frames("join_random")) == 1

    @pytest.mark.asyncio
    async def test_join_while_paired_is_ignored(self, paired, connector):
        assert await paired.join_queue() is False
        assert paired.state == RandomState.PAIRED
        assert len(connector.ws.frames("join_random")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_joins_while_connecting_send_one_frame(self, coordinator, connector):
        connector.gate = asyncio.Event()
        first = asyncio.ensure_future(coordinator.join_queue())
        second = asyncio.ensure_future(coordinator.join_queue())
        await flush()
        assert coordinator.state == RandomState.IDLE

        connector.gate.set()
        results = await asyncio.gather(first, second)

        assert sorted(results) == [False, True]
        assert len(connector.sockets) == 1
        assert connector.ws.frames("join_random") == [{"type": "join_random"}]
        assert coordinator.state == RandomState.QUEUEING

    @pytest.mark.asyncio
    async def test_join_when_socket_cannot_open(self, coordinator, connector, persistence):
        connector.error = OSError("connection refused")

        assert await coordinator.join_queue() is False

        assert coordinator.state == RandomState.IDLE
        assert coordinator.status_text == STATUS_OPEN_FAILED
        assert not persistence.exists()

    @pytest.mark.asyncio
    async def test_join_clears_previous_transcript(self, paired, connector):
        connector.ws.push({"type": "message_random", "content": "old line"})
        await flush()
        await paired.leave()

        await paired.join_queue()

        assert contents(paired) == [NOTICE_JOINING]


# =============================================================================
# Pairing and messages
# =============================================================================


class TestPairing:
    """Tests for random_joined and chat lines."""

    @pytest.mark.asyncio
    async def test_pairing_notice(self, paired):
        assert paired.status_text == STATUS_PAIRED
        assert paired.friend_request == FriendRequestState.IDLE
        assert contents(paired)[-1] == NOTICE_PAIRED

    @pytest.mark.asyncio
    async def test_duplicate_pairing_is_ignored(self, paired, connector):
        count = len(paired.events)
        connector.ws.push({"type": "random_joined"})
        await flush()
        assert len(paired.events) == count

    @pytest.mark.asyncio
    async def test_scenario_pair_and_exchange_lines(self, coordinator, connector, persistence):
        await coordinator.join_queue()
        connector.ws.push({"type": "random_joined"})
        await flush()
        start = len(coordinator.events) - 1

        await coordinator.send_message("hi")
        connector.ws.push({"type": "message_random", "content": "hello"})
        await flush()

        transcript = coordinator.events[start:]
        assert [(e.content, e.fromSelf, e.system) for e in transcript] == [
            (NOTICE_PAIRED, False, True),
            ("hi", True, False),
            ("hello", False, False),
        ]
        assert connector.ws.frames("message_random") == [{"type": "message_random", "content": "hi"}]

        snapshot = persistence.load()
        assert snapshot.randomState == RandomState.PAIRED
        assert [e.content for e in snapshot.messages] == contents(coordinator)

    @pytest.mark.asyncio
    async def test_send_when_not_paired_adds_notice(self, coordinator, connector):
        await coordinator.join_queue()

        assert await coordinator.send_message("anyone?") is None

        assert contents(coordinator)[-1] == NOTICE_NOT_PAIRED
        assert connector.ws.frames("message_random") == []

    @pytest.mark.asyncio
    async def test_send_blank_is_ignored(self, paired, connector):
        count = len(paired.events)
        assert await paired.send_message("   ") is None
        assert len(paired.events) == count
        assert connector.ws.frames("message_random") == []


# =============================================================================
# Leaving
# =============================================================================


class TestLeave:
    """Tests for leave()."""

    @pytest.mark.asyncio
    async def test_leave_match_discards_transcript(self, paired, connector, persistence):
        await paired.send_message("bye")

        await paired.leave_match()

        assert connector.ws.frames("leave_random") == [{"type": "leave_random"}]
        assert paired.state == RandomState.IDLE
        assert paired.events == []
        assert paired.status_text == STATUS_LEFT_CHAT
        assert not persistence.exists()

    @pytest.mark.asyncio
    async def test_leave_queue_keeps_notice(self, coordinator, connector, persistence):
        await coordinator.join_queue()

        await coordinator.leave_queue()

        assert connector.ws.frames("leave_random") == [{"type": "leave_random"}]
        assert coordinator.state == RandomState.IDLE
        assert contents(coordinator)[-1] == NOTICE_LEFT_QUEUE
        assert coordinator.status_text == STATUS_LEFT_QUEUE
        assert not persistence.exists()

    @pytest.mark.asyncio
    async def test_leave_while_idle_sends_nothing(self, coordinator, connection, connector):
        await connection.connect()
        await coordinator.leave()
        assert connector.ws.frames("leave_random") == []


# =============================================================================
# Friend requests
# =============================================================================


class TestFriendRequest:
    """Tests for the friend-request sub-state."""

    @pytest.mark.asyncio
    async def test_request_sends_once(self, paired, connector):
        assert await paired.request_friend() is True
        assert paired.friend_request == FriendRequestState.PENDING

        assert await paired.request_friend() is False
        assert len(connector.ws.frames("friend_request")) == 1

    @pytest.mark.asyncio
    async def test_request_requires_pairing(self, coordinator, connector):
        await coordinator.join_queue()
        assert await coordinator.request_friend() is False
        assert connector.ws.frames("friend_request") == []

    @pytest.mark.asyncio
    async def test_success_promotes_once(self, paired, connector, promoted):
        await paired.request_friend()

        connector.ws.push({"type": "friend_request_success"})
        connector.ws.push({"type": "friend_request_success"})
        await flush()

        assert paired.friend_request == FriendRequestState.SUCCESS
        assert contents(paired).count(NOTICE_FRIENDS) == 1
        promoted.assert_called_once_with()
        assert await paired.request_friend() is False

    @pytest.mark.asyncio
    async def test_incoming_request(self, paired, connector):
        connector.ws.push({"type": "friend_request"})
        await flush()

        assert paired.friend_request == FriendRequestState.RECEIVED
        assert contents(paired)[-1] == NOTICE_FRIEND_REQUEST

    @pytest.mark.asyncio
    async def test_incoming_request_while_pending_stays_pending(self, paired, connector):
        await paired.request_friend()

        connector.ws.push({"type": "friend_request"})
        await flush()

        assert paired.friend_request == FriendRequestState.PENDING

    @pytest.mark.asyncio
    async def test_failure_allows_retry(self, paired, connector):
        await paired.request_friend()

        connector.ws.push({"type": "friend_request_failed"})
        await flush()

        assert paired.friend_request == FriendRequestState.IDLE
        assert contents(paired)[-1] == NOTICE_FRIEND_FAILED
        assert await paired.request_friend() is True


# =============================================================================
# Partner departure, errors, transport loss
# =============================================================================


class TestSessionEnd:
    """Tests for the ways a random session ends without the user leaving."""

    @pytest.mark.asyncio
    async def test_partner_left(self, paired, connector, persistence):
        connector.ws.push({"type": "message_random", "content": "see ya"})
        connector.ws.push({"type": "notification", "content": "random_pair_left"})
        await flush()

        assert paired.state == RandomState.IDLE
        assert contents(paired) == [NOTICE_PARTNER_LEFT]
        assert paired.status_text == STATUS_PARTNER_LEFT
        assert not persistence.exists()

    @pytest.mark.asyncio
    async def test_partner_left_while_idle_is_ignored(self, coordinator, connection, connector):
        await connection.connect()
        connector.ws.push({"type": "notification", "content": "random_pair_left"})
        await flush()

        assert coordinator.events == []

    @pytest.mark.asyncio
    async def test_other_notifications_are_ignored(self, paired, connector):
        count = len(paired.events)
        connector.ws.push({"type": "notification", "content": "maintenance_soon"})
        await flush()

        assert paired.state == RandomState.PAIRED
        assert len(paired.events) == count

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["CONNECTION_NOT_EXIST", "INVALID_RECEIVER"])
    async def test_terminal_error_ends_session(self, paired, connector, persistence, code):
        connector.ws.push({"type": "error", "code": code, "content": "Partner is gone."})
        await flush()

        assert paired.state == RandomState.IDLE
        assert contents(paired) == ["Partner is gone."]
        assert paired.status_text == "Partner is gone."
        assert not persistence.exists()

    @pytest.mark.asyncio
    async def test_send_failed_error_ends_session(self, paired, connector):
        connector.ws.push({"type": "error", "code": "SEND_MESSAGE_FAILED", "content": "Send failed."})
        await flush()

        assert paired.state == RandomState.IDLE
        assert contents(paired) == ["Send failed.", NOTICE_PARTNER_DISCONNECTED]

    @pytest.mark.asyncio
    async def test_informational_error_keeps_session(self, paired, connector):
        connector.ws.push({"type": "error", "code": "RATE_LIMITED", "content": "Slow down."})
        await flush()

        assert paired.state == RandomState.PAIRED
        assert contents(paired)[-1] == "Slow down."

    @pytest.mark.asyncio
    async def test_malformed_frame_adds_notice(self, paired, connector):
        connector.ws.push_raw("not json at all")
        await flush()

        assert paired.state == RandomState.PAIRED
        assert contents(paired)[-1] == NOTICE_MALFORMED

    @pytest.mark.asyncio
    async def test_socket_drop_returns_to_idle_keeping_transcript(self, paired, connector, persistence):
        connector.ws.push({"type": "message_random", "content": "still there?"})
        await flush()
        before = contents(paired)

        connector.ws.drop(None)
        await flush(0.05)

        assert paired.state == RandomState.IDLE
        assert contents(paired) == before
        assert paired.status_text == STATUS_RETRY
        assert not persistence.exists()


# =============================================================================
# Persistence
# =============================================================================


class TestRehydrate:
    """Tests for restoring a persisted transcript."""

    @pytest.mark.asyncio
    async def test_rehydrate_loads_transcript_but_stays_idle(self, connection, persistence):
        persistence.save(
            [ChatEvent(content="hi", fromSelf=True), ChatEvent(content="hello")],
            RandomState.PAIRED,
        )
        coordinator = RandomMatchCoordinator(connection, persistence)

        assert coordinator.rehydrate() is True

        assert contents(coordinator) == ["hi", "hello"]
        assert coordinator.events[0].fromSelf is True
        assert coordinator.state == RandomState.IDLE

    @pytest.mark.asyncio
    async def test_rehydrate_without_snapshot(self, coordinator):
        assert coordinator.rehydrate() is False
        assert coordinator.events == []

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, paired, persistence):
        paired.reset()

        assert paired.state == RandomState.IDLE
        assert paired.events == []
        assert not persistence.exists()
