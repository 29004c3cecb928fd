"""
Chat Archive

Ownership-scoped storage of chat sessions and their messages.

Every operation takes the tenant (user id) explicitly. Sessions are always
looked up by id AND owner in the same query, so a session owned by someone
else is indistinguishable from one that does not exist: both raise NotFound
with the same message.

Ordering:
- Sessions: most recently updated first, ties by id descending
- Messages: creation time ascending, ties by id ascending (canonical order)

Each call runs in its own transaction (see session_scope). Adding or removing
messages does not touch the owning session's updated_at.
"""

from typing import List, Optional, Union

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from ragchat.core.database import SessionLocal, session_scope
from ragchat.core.errors import InvalidInput, NotFound, SESSION_NOT_FOUND, MESSAGE_NOT_FOUND
from ragchat.models.chat import ChatMessage, ChatSession, SenderType, utcnow
from ragchat.schemas import chat as schemas

logger = structlog.get_logger(__name__)

SESSION_ORDER = (ChatSession.updated_at.desc(), ChatSession.id.desc())
MESSAGE_ORDER = (ChatMessage.created_at.asc(), ChatMessage.id.asc())
LATEST_ORDER = (ChatMessage.created_at.desc(), ChatMessage.id.desc())


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidInput(f"{field} must not be empty")
    return value


def _require_page(page: int, size: int) -> None:
    if page < 0:
        raise InvalidInput("page must be zero or greater")
    if size < 1:
        raise InvalidInput("size must be at least 1")


def _coerce_sender(sender_type: Union[SenderType, str, None]) -> SenderType:
    if sender_type is None:
        raise InvalidInput("sender_type is required")
    if isinstance(sender_type, SenderType):
        return sender_type
    try:
        return SenderType(str(sender_type).upper())
    except ValueError:
        raise InvalidInput(f"Unknown sender_type: {sender_type}") from None


class ChatArchive:
    """
    Session and message operations for many tenants over one database.

    Usage:
        archive = ChatArchive()
        session = archive.create_session("u1", "Trip Planning")
        archive.add_message("u1", session.id, SenderType.USER, "Where should I go in June?")
        messages = archive.list_messages("u1", session.id)
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def _scope(self):
        return session_scope(self._session_factory)

    @staticmethod
    def _owned_session(db: Session, tenant: str, session_id: int) -> ChatSession:
        """Fetch a session by id and owner together, or raise NotFound."""
        session = (
            db.query(ChatSession)
            .filter(ChatSession.id == session_id, ChatSession.user_id == tenant)
            .first()
        )
        if session is None:
            raise NotFound(SESSION_NOT_FOUND)
        return session

    @staticmethod
    def _session_message(db: Session, session_id: int, message_id: int) -> ChatMessage:
        message = (
            db.query(ChatMessage)
            .filter(ChatMessage.id == message_id, ChatMessage.session_id == session_id)
            .first()
        )
        if message is None:
            raise NotFound(MESSAGE_NOT_FOUND)
        return message

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, tenant: str, name: str) -> schemas.ChatSession:
        """Create a new, non-favorite session owned by `tenant`."""
        _require_text(tenant, "user_id")
        _require_text(name, "name")

        with self._scope() as db:
            now = utcnow()
            session = ChatSession(
                user_id=tenant,
                name=name,
                is_favorite=False,
                created_at=now,
                updated_at=now,
            )
            db.add(session)
            db.flush()
            result = schemas.ChatSession.model_validate(session)

        logger.info("Created chat session", session_id=result.id, user_id=tenant)
        return result

    def list_sessions(self, tenant: str) -> List[schemas.ChatSession]:
        """All of a tenant's sessions, newest-updated first."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            sessions = (
                db.query(ChatSession)
                .filter(ChatSession.user_id == tenant)
                .order_by(*SESSION_ORDER)
                .all()
            )
            return [schemas.ChatSession.model_validate(s) for s in sessions]

    def list_sessions_page(self, tenant: str, page: int, size: int) -> schemas.Page[schemas.ChatSession]:
        """One zero-based page of the tenant's sessions, same order as list_sessions."""
        _require_text(tenant, "user_id")
        _require_page(page, size)

        with self._scope() as db:
            query = db.query(ChatSession).filter(ChatSession.user_id == tenant)
            total = query.count()
            sessions = query.order_by(*SESSION_ORDER).offset(page * size).limit(size).all()
            items = [schemas.ChatSession.model_validate(s) for s in sessions]

        logger.debug("Listed session page", user_id=tenant, page=page, size=size, total=total)
        return schemas.Page[schemas.ChatSession].build(items, page, size, total)

    def get_session(self, tenant: str, session_id: int) -> schemas.ChatSessionDetail:
        """A session together with its messages in canonical order."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            session = self._owned_session(db, tenant, session_id)
            messages = (
                db.query(ChatMessage)
                .filter(ChatMessage.session_id == session.id)
                .order_by(*MESSAGE_ORDER)
                .all()
            )
            base = schemas.ChatSession.model_validate(session)
            return schemas.ChatSessionDetail(
                **base.model_dump(),
                messages=[schemas.Message.model_validate(m) for m in messages],
            )

    def update_session_name(self, tenant: str, session_id: int, name: str) -> schemas.ChatSession:
        """Rename a session and refresh its updated_at."""
        _require_text(tenant, "user_id")
        _require_text(name, "name")

        with self._scope() as db:
            session = self._owned_session(db, tenant, session_id)
            session.name = name
            session.updated_at = utcnow()
            db.flush()
            result = schemas.ChatSession.model_validate(session)

        logger.info("Renamed chat session", session_id=session_id, user_id=tenant)
        return result

    def toggle_favorite(self, tenant: str, session_id: int) -> schemas.ChatSession:
        """Flip the favorite flag and refresh updated_at."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            session = self._owned_session(db, tenant, session_id)
            session.is_favorite = not session.is_favorite
            session.updated_at = utcnow()
            db.flush()
            result = schemas.ChatSession.model_validate(session)

        logger.info(
            "Toggled favorite status",
            session_id=session_id,
            user_id=tenant,
            is_favorite=result.is_favorite,
        )
        return result

    def delete_session(self, tenant: str, session_id: int) -> None:
        """
        Delete a session and every message it owns.

        Messages are removed first and the session second, inside one
        transaction: either both happen or neither does.

        Raises:
            NotFound: If the tenant owns no such session
            StorageFailure: If the transaction cannot commit
        """
        _require_text(tenant, "user_id")

        with self._scope() as db:
            session = self._owned_session(db, tenant, session_id)
            removed = (
                db.query(ChatMessage)
                .filter(ChatMessage.session_id == session.id)
                .delete(synchronize_session=False)
            )
            db.delete(session)

        logger.info("Deleted chat session", session_id=session_id, user_id=tenant, messages_removed=removed)

    def list_favorites(self, tenant: str) -> List[schemas.ChatSession]:
        """Favorite sessions, same order as list_sessions."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            sessions = (
                db.query(ChatSession)
                .filter(ChatSession.user_id == tenant, ChatSession.is_favorite.is_(True))
                .order_by(*SESSION_ORDER)
                .all()
            )
            return [schemas.ChatSession.model_validate(s) for s in sessions]

    def search_sessions(self, tenant: str, term: Optional[str]) -> List[schemas.ChatSession]:
        """Sessions whose name contains `term`, ignoring case. An empty term matches everything."""
        _require_text(tenant, "user_id")
        term = term or ""

        with self._scope() as db:
            query = db.query(ChatSession).filter(ChatSession.user_id == tenant)
            if term:
                query = query.filter(
                    func.lower(ChatSession.name).contains(term.lower(), autoescape=True)
                )
            sessions = query.order_by(*SESSION_ORDER).all()
            return [schemas.ChatSession.model_validate(s) for s in sessions]

    def session_stats(self, tenant: str) -> schemas.SessionStats:
        """Total and favorite session counts for a tenant."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            total = db.query(ChatSession).filter(ChatSession.user_id == tenant).count()
            favorites = (
                db.query(ChatSession)
                .filter(ChatSession.user_id == tenant, ChatSession.is_favorite.is_(True))
                .count()
            )
        return schemas.SessionStats(total_sessions=total, favorite_sessions=favorites)

    def session_exists(self, tenant: str, session_id: int) -> bool:
        """True if the tenant owns a session with this id."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            return (
                db.query(ChatSession.id)
                .filter(ChatSession.id == session_id, ChatSession.user_id == tenant)
                .first()
                is not None
            )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(
        self,
        tenant: str,
        session_id: int,
        sender_type: Union[SenderType, str],
        content: str,
        context: Optional[str] = None,
    ) -> schemas.Message:
        """Append a message to an owned session."""
        _require_text(tenant, "user_id")
        sender = _coerce_sender(sender_type)
        _require_text(content, "content")

        with self._scope() as db:
            session = self._owned_session(db, tenant, session_id)
            message = ChatMessage(
                session_id=session.id,
                sender_type=sender,
                content=content,
                context=context,
                created_at=utcnow(),
            )
            db.add(message)
            db.flush()
            result = schemas.Message.model_validate(message)

        logger.info(
            "Added message",
            message_id=result.id,
            session_id=session_id,
            user_id=tenant,
            sender_type=sender.value,
        )
        return result

    def list_messages(self, tenant: str, session_id: int) -> List[schemas.Message]:
        """Every message of an owned session in canonical order."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            messages = (
                db.query(ChatMessage)
                .filter(ChatMessage.session_id == session_id)
                .order_by(*MESSAGE_ORDER)
                .all()
            )
            return [schemas.Message.model_validate(m) for m in messages]

    def list_messages_page(
        self, tenant: str, session_id: int, page: int, size: int
    ) -> schemas.Page[schemas.Message]:
        """One zero-based page of messages in canonical order."""
        _require_text(tenant, "user_id")
        _require_page(page, size)

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            query = db.query(ChatMessage).filter(ChatMessage.session_id == session_id)
            total = query.count()
            messages = query.order_by(*MESSAGE_ORDER).offset(page * size).limit(size).all()
            items = [schemas.Message.model_validate(m) for m in messages]

        return schemas.Page[schemas.Message].build(items, page, size, total)

    def get_message(self, tenant: str, session_id: int, message_id: int) -> schemas.Message:
        """
        A single message, addressed through its session.

        A message that exists but belongs to another session is reported as
        NotFound, same as one that does not exist.
        """
        _require_text(tenant, "user_id")

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            message = self._session_message(db, session_id, message_id)
            return schemas.Message.model_validate(message)

    def delete_message(self, tenant: str, session_id: int, message_id: int) -> None:
        """Remove exactly one message from an owned session."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            message = self._session_message(db, session_id, message_id)
            db.delete(message)

        logger.info("Deleted message", message_id=message_id, session_id=session_id, user_id=tenant)

    def delete_messages(self, tenant: str, session_id: int) -> int:
        """Remove every message of an owned session. Returns how many were removed."""
        _require_text(tenant, "user_id")

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            removed = (
                db.query(ChatMessage)
                .filter(ChatMessage.session_id == session_id)
                .delete(synchronize_session=False)
            )

        logger.info("Cleared messages", session_id=session_id, user_id=tenant, messages_removed=removed)
        return removed

    def latest_messages(self, tenant: str, session_id: int, limit: int) -> List[schemas.Message]:
        """Up to `limit` most recent messages, newest first."""
        _require_text(tenant, "user_id")
        if limit < 1:
            raise InvalidInput("limit must be at least 1")

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            messages = (
                db.query(ChatMessage)
                .filter(ChatMessage.session_id == session_id)
                .order_by(*LATEST_ORDER)
                .limit(limit)
                .all()
            )
            return [schemas.Message.model_validate(m) for m in messages]

    def messages_by_sender(
        self, tenant: str, session_id: int, sender_type: Union[SenderType, str]
    ) -> List[schemas.Message]:
        """Messages from one sender kind, in canonical order."""
        _require_text(tenant, "user_id")
        sender = _coerce_sender(sender_type)

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            messages = (
                db.query(ChatMessage)
                .filter(ChatMessage.session_id == session_id, ChatMessage.sender_type == sender)
                .order_by(*MESSAGE_ORDER)
                .all()
            )
            return [schemas.Message.model_validate(m) for m in messages]

    def message_count(self, tenant: str, session_id: int) -> int:
        _require_text(tenant, "user_id")

        with self._scope() as db:
            self._owned_session(db, tenant, session_id)
            return db.query(ChatMessage).filter(ChatMessage.session_id == session_id).count()


# Singleton instance
_archive: Optional[ChatArchive] = None


def get_chat_archive() -> ChatArchive:
    """Get the archive bound to the application's database."""
    global _archive
    if _archive is None:
        _archive = ChatArchive()
    return _archive
