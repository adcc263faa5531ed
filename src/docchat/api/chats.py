"""API router exposing conversations, documents, messages and memory."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from pydantic import BaseModel, Field

from docchat.config import get_settings
from docchat.conversations import Citation, Conversation, Message
from docchat.errors import (
    CapabilityUnavailableError,
    ConversationNotFoundError,
    DocChatError,
    DocumentNotFoundError,
    IngestionError,
    UnsupportedFormatError,
    ValidationError,
    VectorStoreUnavailableError,
)
from docchat.ingest import DocumentRecord
from docchat.services.chat import ChatService, get_chat_service

router = APIRouter(prefix="/chats", tags=["chats"])


class CreateConversationRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200, description="Optional conversation title.")


class RenameConversationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class MessageRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Question to ask about the uploaded documents.")


class DocumentResponse(BaseModel):
    id: str
    original_name: str
    stored_name: str
    namespace: str
    page_count: int
    chunk_count: int
    title: str
    author: str
    size_bytes: int
    uploaded_at: datetime
    language: Optional[str] = None
    searchable: bool


class CitationResponse(BaseModel):
    document: str
    page: Optional[int] = None
    preview: str
    namespace: Optional[str] = None
    score: Optional[float] = None


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime
    citations: list[CitationResponse] = []
    degraded: bool = False


class ConversationSummary(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    document_count: int


class ConversationDetail(ConversationSummary):
    documents: list[DocumentResponse]
    messages: list[MessageResponse]


class NamespaceFailureResponse(BaseModel):
    namespace: str
    reason: str


class AnswerResponse(BaseModel):
    answer: str
    citations: list[CitationResponse]
    degraded: bool
    reason: Optional[str] = None
    failures: list[NamespaceFailureResponse] = []


class MemoryTurnResponse(BaseModel):
    question: str
    answer: str


class MemoryResponse(BaseModel):
    conversation_id: str
    turns: list[MemoryTurnResponse]


def http_error(exc: DocChatError) -> HTTPException:
    if isinstance(exc, (ConversationNotFoundError, DocumentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UnsupportedFormatError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, (VectorStoreUnavailableError, CapabilityUnavailableError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, IngestionError) and isinstance(exc.__cause__, CapabilityUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, IngestionError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _document(record: DocumentRecord) -> DocumentResponse:
    return DocumentResponse(
        id=record.id,
        original_name=record.original_name,
        stored_name=record.stored_name,
        namespace=record.namespace,
        page_count=record.page_count,
        chunk_count=record.chunk_count,
        title=record.title,
        author=record.author,
        size_bytes=record.size_bytes,
        uploaded_at=record.uploaded_at,
        language=record.language,
        searchable=record.searchable,
    )


def _citation(citation: Citation) -> CitationResponse:
    return CitationResponse(**citation.as_dict())


def _message(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        role=message.role,
        content=message.content,
        created_at=message.created_at,
        citations=[_citation(citation) for citation in message.citations],
        degraded=message.degraded,
    )


def _summary(conversation: Conversation) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        document_count=len(conversation.documents),
    )


def _detail(conversation: Conversation, messages: list[Message]) -> ConversationDetail:
    return ConversationDetail(
        **_summary(conversation).model_dump(),
        documents=[_document(record) for record in conversation.documents],
        messages=[_message(message) for message in messages],
    )


@router.post("", response_model=ConversationSummary, status_code=status.HTTP_201_CREATED)
def create_conversation(
    request: Optional[CreateConversationRequest] = None,
    service: ChatService = Depends(get_chat_service),
) -> ConversationSummary:
    conversation = service.create_conversation(request.title if request else None)
    return _summary(conversation)


@router.get("", response_model=list[ConversationSummary])
def list_conversations(service: ChatService = Depends(get_chat_service)) -> list[ConversationSummary]:
    """List conversations, most recently updated first."""

    return [_summary(conversation) for conversation in service.list_conversations()]


@router.get("/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation_id: str, service: ChatService = Depends(get_chat_service)
) -> ConversationDetail:
    try:
        conversation = service.get_conversation(conversation_id)
        messages = service.list_messages(conversation_id)
    except DocChatError as exc:
        raise http_error(exc) from exc
    return _detail(conversation, messages)


@router.put("/{conversation_id}", response_model=ConversationSummary)
def rename_conversation(
    conversation_id: str,
    request: RenameConversationRequest,
    service: ChatService = Depends(get_chat_service),
) -> ConversationSummary:
    try:
        conversation = service.rename_conversation(conversation_id, request.title)
    except DocChatError as exc:
        raise http_error(exc) from exc
    return _summary(conversation)


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)) -> None:
    try:
        service.delete_conversation(conversation_id)
    except DocChatError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{conversation_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
def upload_document(
    conversation_id: str,
    file: UploadFile = File(...),
    service: ChatService = Depends(get_chat_service),
) -> DocumentResponse:
    """Store, index and attach one uploaded document to the conversation."""

    limit = get_settings().max_upload_bytes
    data = file.file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {limit} byte upload limit",
        )

    try:
        record = service.ingest_document(
            data,
            file.filename or "",
            conversation_id,
            mime_type=file.content_type,
        )
    except DocChatError as exc:
        raise http_error(exc) from exc
    return _document(record)


@router.get("/{conversation_id}/documents", response_model=list[DocumentResponse])
def list_documents(
    conversation_id: str, service: ChatService = Depends(get_chat_service)
) -> list[DocumentResponse]:
    try:
        records = service.list_documents(conversation_id)
    except DocChatError as exc:
        raise http_error(exc) from exc
    return [_document(record) for record in records]


@router.delete("/{conversation_id}/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_document(
    conversation_id: str,
    document_id: str,
    service: ChatService = Depends(get_chat_service),
) -> None:
    try:
        service.remove_document(document_id, conversation_id)
    except DocChatError as exc:
        raise http_error(exc) from exc


@router.post("/{conversation_id}/messages", response_model=AnswerResponse)
async def post_message(
    conversation_id: str,
    request: MessageRequest,
    service: ChatService = Depends(get_chat_service),
) -> AnswerResponse:
    """Ask a question; the answer is stored as an assistant message."""

    try:
        outcome = await service.query(conversation_id, request.content)
    except DocChatError as exc:
        raise http_error(exc) from exc

    return AnswerResponse(
        answer=outcome.answer,
        citations=[_citation(citation) for citation in outcome.citations],
        degraded=outcome.degraded,
        reason=getattr(outcome, "reason", None) or None,
        failures=[
            NamespaceFailureResponse(namespace=failure.namespace, reason=failure.reason)
            for failure in outcome.failures
        ],
    )


@router.get("/{conversation_id}/memory", response_model=MemoryResponse)
def get_memory(conversation_id: str, service: ChatService = Depends(get_chat_service)) -> MemoryResponse:
    try:
        turns = service.get_memory_summary(conversation_id)
    except DocChatError as exc:
        raise http_error(exc) from exc
    return MemoryResponse(
        conversation_id=conversation_id,
        turns=[MemoryTurnResponse(question=turn.question, answer=turn.answer) for turn in turns],
    )


@router.delete("/{conversation_id}/memory", status_code=status.HTTP_204_NO_CONTENT)
def clear_memory(conversation_id: str, service: ChatService = Depends(get_chat_service)) -> None:
    try:
        service.clear_memory(conversation_id)
    except DocChatError as exc:
        raise http_error(exc) from exc
