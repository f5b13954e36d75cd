"""API route handlers for policy documents.

POST /process-policy-document: summarize and store already-acquired text
POST /upload-policy-document: same, from a multipart text/markdown upload
POST /fetch-url-content: fetch a URL server-side and return its text
GET  /fetch-mapbox-token: public map token for the impact map
GET  /policy-documents/{id}, /conversations/{id}/messages: read back
"""

import asyncio
import logging
from dataclasses import asdict

import httpx
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from policy_whisperer.api.deps import get_document_store, get_http_client, get_ingestion_service
from policy_whisperer.api.schemas import (
    ConversationResponse,
    ErrorResponse,
    FetchUrlRequest,
    FetchUrlResponse,
    MapboxTokenResponse,
    MessageResponse,
    PolicyDocumentResponse,
    PolicySummaryResponse,
    ProcessDocumentRequest,
    ProcessDocumentResponse,
)
from policy_whisperer.config import settings
from policy_whisperer.core.errors import NotFoundError
from policy_whisperer.core.types import ContentSource, IngestResult
from policy_whisperer.ingestion.content import MAX_UPLOAD_BYTES, fetch_url_content
from policy_whisperer.pipeline.ingest import IngestionService
from policy_whisperer.storage.repository import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])

PIPELINE_TIMEOUT = 120  # seconds

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    500: {"model": ErrorResponse, "description": "Pipeline error"},
    504: {"model": ErrorResponse, "description": "Pipeline timeout"},
}


def _ingest_response(result: IngestResult) -> ProcessDocumentResponse:
    return ProcessDocumentResponse(
        document=PolicyDocumentResponse(**asdict(result.document)),
        conversation=ConversationResponse(**asdict(result.conversation)),
        summary=PolicySummaryResponse(**asdict(result.summary)),
    )


async def _with_timeout(coro):
    try:
        return await asyncio.wait_for(coro, timeout=PIPELINE_TIMEOUT)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail=f"Pipeline timed out after {PIPELINE_TIMEOUT}s")


@router.post(
    "/process-policy-document",
    response_model=ProcessDocumentResponse,
    responses=ERROR_RESPONSES,
)
async def process_policy_document(
    request: ProcessDocumentRequest,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Summarize submitted document text and open its initial conversation."""
    result = await _with_timeout(
        service.process_content(
            request.content,
            source_type=request.source_type,
            title=request.title,
            source_reference=request.source_reference,
        )
    )
    return _ingest_response(result)


@router.post(
    "/upload-policy-document",
    response_model=ProcessDocumentResponse,
    responses={**ERROR_RESPONSES, 415: {"model": ErrorResponse, "description": "Unsupported file type"}},
)
async def upload_policy_document(
    file: UploadFile = File(...),
    title: str | None = Form(None),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Ingest an uploaded plain-text or markdown file."""
    # One byte past the limit is enough to reject oversized files
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    source = ContentSource.from_file(file.filename or "", data, file.content_type)
    result = await _with_timeout(service.ingest(source, title=title or file.filename))
    return _ingest_response(result)


@router.post("/fetch-url-content", response_model=FetchUrlResponse, responses=ERROR_RESPONSES)
async def fetch_url(
    request: FetchUrlRequest,
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Fetch a URL server-side and return its sanitized text."""
    content = await fetch_url_content(request.url, client=http_client)
    return FetchUrlResponse(content=content)


@router.get(
    "/fetch-mapbox-token",
    response_model=MapboxTokenResponse,
    responses={404: {"model": ErrorResponse, "description": "Token not configured"}},
)
async def fetch_mapbox_token():
    if not settings.mapbox_public_token:
        raise NotFoundError("Mapbox token not configured")
    return MapboxTokenResponse(token=settings.mapbox_public_token)


@router.get("/policy-documents/{document_id}", response_model=PolicyDocumentResponse)
async def get_policy_document(document_id: str, store: DocumentStore = Depends(get_document_store)):
    document = await store.get_document(document_id)
    return PolicyDocumentResponse(**asdict(document))


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_conversation_messages(conversation_id: str, store: DocumentStore = Depends(get_document_store)):
    """Full transcript of a conversation, oldest first."""
    await store.get_conversation(conversation_id)
    messages = await store.list_messages(conversation_id)
    return [MessageResponse(**asdict(m)) for m in messages]
