"""Pydantic schemas for the REST API.

The history endpoint speaks the server's field names (``ID``, ``SenderID``,
...), so the models keep them verbatim.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HistoryMessage(BaseModel):
    """A stored direct message as returned by ``GET /messages/{friend_id}``."""
    model_config = ConfigDict(extra="ignore")

    ID: int = Field(..., description="Server-assigned message ID")
    SenderID: int = Field(..., description="Sender user ID")
    ReceiverID: int = Field(..., description="Receiver user ID")
    Content: str = Field(default="", description="Message text")
    Timestamp: str = Field(default="", description="ISO-8601 timestamp")


class MessagesResponse(BaseModel):
    """Cumulative history page: the ``page * page_size`` newest messages, newest first."""
    model_config = ConfigDict(extra="ignore")

    status: int = 200
    messages: Optional[List[HistoryMessage]] = Field(default_factory=list)


class ApiErrorBody(BaseModel):
    """Error body returned with non-2xx responses."""
    model_config = ConfigDict(extra="ignore")

    status: int = 0
    error: str = ""
