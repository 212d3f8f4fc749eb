"""
Data models for chat functionality
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from kbchat.models.sources import JsonSourceDescriptor


class SessionState(str, Enum):
    """Lifecycle of a chat session"""
    IDLE = "idle"
    INGESTING = "ingesting"
    CHATTING = "chatting"
    LIMIT_REACHED = "limit_reached"
    CONVERTING = "converting"


class Message(BaseModel):
    """One chat message"""
    id: str = Field(default_factory=lambda: uuid4().hex)
    text: str
    sender: Literal["user", "assistant"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_user(cls, text: str) -> "Message":
        return cls(text=text, sender="user")

    @classmethod
    def from_assistant(cls, text: str) -> "Message":
        return cls(text=text, sender="assistant")


class ChatSession:
    """Append-only transcript; the user turn count is derived, never stored"""

    def __init__(self, messages: Optional[List[Message]] = None):
        self._messages: List[Message] = list(messages or [])

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def user_turn_count(self) -> int:
        return sum(1 for message in self._messages if message.sender == "user")

    def append(self, *messages: Message) -> None:
        self._messages.extend(messages)

    def __len__(self) -> int:
        return len(self._messages)


class CreateSessionRequest(BaseModel):
    """Create a chat session, optionally ingesting a source right away"""
    source: Optional[JsonSourceDescriptor] = None


class SubmitSourceRequest(BaseModel):
    """Link, social profile or pasted text for an idle session"""
    source: JsonSourceDescriptor


class SendMessageRequest(BaseModel):
    """Chat turn request"""
    text: str = Field(..., min_length=1, max_length=2000)


class LeadRequest(BaseModel):
    """Email capture from the conversion screen"""
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")


class MessageView(BaseModel):
    id: str
    text: str
    html: Optional[str] = None
    sender: Literal["user", "assistant"]
    timestamp: datetime


class ConversionView(BaseModel):
    """Call to action shown once the chat flow ends"""
    booking_url: str
    lead_captured: bool = False


class SessionView(BaseModel):
    """Everything a front end needs to render a session"""
    session_id: str
    state: SessionState
    source_description: Optional[str] = None
    messages: List[MessageView] = Field(default_factory=list)
    user_turn_count: int = 0
    turns_remaining: int = 0
    turn_in_flight: bool = False
    last_error: Optional[str] = None
    conversion: Optional[ConversionView] = None


class ErrorResponse(BaseModel):
    error: str
    status_code: int
    manual_paste: bool = False
