"""Durable local storage and random-chat session persistence."""

from .local_store import RANDOM_SESSION_KEY, TOKEN_KEY, USER_KEY, LocalStore
from .persistence import SessionPersistence

__all__ = [
    "LocalStore",
    "SessionPersistence",
    "RANDOM_SESSION_KEY",
    "TOKEN_KEY",
    "USER_KEY",
]
