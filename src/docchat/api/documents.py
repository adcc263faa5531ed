"""API router describing stored uploads independently of any conversation."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from docchat.api.chats import http_error
from docchat.errors import DocChatError
from docchat.services.chat import ChatService, get_chat_service

router = APIRouter(prefix="/documents", tags=["documents"])


class DocumentInfoResponse(BaseModel):
    stored_name: str
    format: str
    pages: int
    size_bytes: int
    author: Optional[str] = None
    info: dict[str, str] = Field(default_factory=dict, description="Title, subject, creator and producer when present.")


@router.get("/{stored_name}", response_model=DocumentInfoResponse)
def get_document_info(stored_name: str, service: ChatService = Depends(get_chat_service)) -> DocumentInfoResponse:
    """Describe a stored upload by the name it was saved under."""

    try:
        info = service.get_document_info(stored_name)
    except DocChatError as exc:
        raise http_error(exc) from exc
    return DocumentInfoResponse(
        stored_name=info.stored_name,
        format=info.format,
        pages=info.page_count,
        size_bytes=info.size_bytes,
        author=info.author,
        info=info.properties,
    )
