import math
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ragchat.models.chat import SenderType

T = TypeVar("T")


def _not_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be blank")
    return value


class MessageBase(BaseModel):
    sender_type: SenderType
    content: str = Field(..., min_length=1)
    context: Optional[str] = None


class MessageCreate(MessageBase):
    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        return _not_blank(value)


class Message(MessageBase):
    id: int
    session_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatSessionBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class ChatSessionCreate(ChatSessionBase):
    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        return _not_blank(value)


class ChatSessionUpdate(ChatSessionCreate):
    pass


class ChatSession(ChatSessionBase):
    id: int
    user_id: str
    is_favorite: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatSessionDetail(ChatSession):
    messages: List[Message] = []


class SessionStats(BaseModel):
    total_sessions: int
    favorite_sessions: int


class Page(BaseModel, Generic[T]):
    """One window of an ordered listing plus totals."""
    items: List[T]
    page: int
    size: int
    total_elements: int
    total_pages: int
    first: bool
    last: bool

    @classmethod
    def build(cls, items: List[T], page: int, size: int, total_elements: int) -> "Page[T]":
        total_pages = math.ceil(total_elements / size) if size else 0
        return cls(
            items=items,
            page=page,
            size=size,
            total_elements=total_elements,
            total_pages=total_pages,
            first=page == 0,
            last=page >= total_pages - 1,
        )
