"""
Chat session endpoints.

Static paths (/paginated, /favorites, /search, /stats) are declared before
/{session_id} so they are not captured by it.
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from ragchat.api.deps import get_archive, get_user_id
from ragchat.core.config import get_config
from ragchat.schemas.chat import (
    ChatSession,
    ChatSessionCreate,
    ChatSessionDetail,
    ChatSessionUpdate,
    Page,
    SessionStats,
)
from ragchat.services.chat_archive import ChatArchive

router = APIRouter()

_pagination = get_config().pagination


@router.post("", response_model=ChatSession, status_code=201)
def create_session(
    body: ChatSessionCreate,
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    return archive.create_session(user_id, body.name)


@router.get("", response_model=List[ChatSession])
def list_sessions(user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    return archive.list_sessions(user_id)


@router.get("/paginated", response_model=Page[ChatSession])
def list_sessions_paginated(
    page: int = Query(default=0, ge=0, description="Page number (0-based)"),
    size: int = Query(default=_pagination.session_page_size, ge=1, le=_pagination.max_page_size),
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    return archive.list_sessions_page(user_id, page, size)


@router.get("/favorites", response_model=List[ChatSession])
def list_favorites(user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    return archive.list_favorites(user_id)


@router.get("/search", response_model=List[ChatSession])
def search_sessions(
    q: str = Query(default="", description="Case-insensitive name fragment"),
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    return archive.search_sessions(user_id, q)


@router.get("/stats", response_model=SessionStats)
def session_stats(user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    return archive.session_stats(user_id)


@router.get("/{session_id}", response_model=ChatSessionDetail)
def get_session(session_id: int, user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    return archive.get_session(user_id, session_id)


@router.put("/{session_id}", response_model=ChatSession)
def update_session(
    session_id: int,
    body: ChatSessionUpdate,
    user_id: str = Depends(get_user_id),
    archive: ChatArchive = Depends(get_archive),
):
    """Rename a session."""
    return archive.update_session_name(user_id, session_id, body.name)


@router.patch("/{session_id}/favorite", response_model=ChatSession)
def toggle_favorite(session_id: int, user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    return archive.toggle_favorite(user_id, session_id)


@router.delete("/{session_id}", status_code=204)
def delete_session(session_id: int, user_id: str = Depends(get_user_id), archive: ChatArchive = Depends(get_archive)):
    """Delete a session and all of its messages."""
    archive.delete_session(user_id, session_id)
    return None
