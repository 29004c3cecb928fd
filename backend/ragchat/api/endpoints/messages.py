from typing import List

from fastapi import APIRouter, Depends, Query

from ragchat.api.deps import get_archive, get_user_id
from ragchat.core.config import get_config
from ragchat.models.chat import SenderType
from ragchat.schemas.chat import Message, MessageCreate, Page
from ragchat.services.chat_archive import ChatArchive

router = APIRouter()

_pagination = get_config().pagination


@router.post("", response_model=Message, status_code=201)
def add_message(
    session_id: int,
    body: MessageCreate,
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    return archive.add_message(user_id, session_id, body.sender_type, body.content, body.context)


@router.get("", response_model=List[Message])
def list_messages(session_id: int, user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    return archive.list_messages(user_id, session_id)


@router.delete("", status_code=204)
def clear_messages(session_id: int, user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    """Remove every message but keep the session."""
    archive.delete_messages(user_id, session_id)
    return None


@router.get("/paginated", response_model=Page[Message])
def list_messages_paginated(
    session_id: int,
    page: int = Query(default=0, ge=0, description="Page number (0-based)"),
    size: int = Query(default=_pagination.message_page_size, ge=1, le=_pagination.max_page_size),
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    return archive.list_messages_page(user_id, session_id, page, size)


@router.get("/latest", response_model=List[Message])
def latest_messages(
    session_id: int,
    limit: int = Query(default=_pagination.latest_limit, ge=1, le=_pagination.max_page_size),
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    """Most recent messages first."""
    return archive.latest_messages(user_id, session_id, limit)


@router.get("/by-sender/{sender_type}", response_model=List[Message])
def messages_by_sender(
    session_id: int,
    sender_type: SenderType,
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    return archive.messages_by_sender(user_id, session_id, sender_type)


@router.get("/count", response_model=int)
def message_count(session_id: int, user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    return archive.message_count(user_id, session_id)


@router.get("/{message_id}", response_model=Message)
def get_message(
    session_id: int,
    message_id: int,
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    return archive.get_message(user_id, session_id, message_id)


@router.delete("/{message_id}", status_code=204)
def delete_message(
    session_id: int,
    message_id: int,
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    archive.delete_message(user_id, session_id, message_id)
    return None
