from fastapi import Header, HTTPException

from ragchat.services.chat_archive import ChatArchive, get_chat_archive

USER_ID_HEADER = "X-User-ID"


def get_archive() -> ChatArchive:
    return get_chat_archive()


def get_user_id(x_user_id: str = Header(..., alias=USER_ID_HEADER, description="Owning user of the sessions")) -> str:
    """Tenant identity, already authenticated upstream."""
    if not x_user_id.strip():
        raise HTTPException(status_code=400, detail=f"{USER_ID_HEADER} header must not be empty")
    return x_user_id
