"""FastAPI dependencies: one DB session per request, process-wide clients.

The LLM client and the URL-fetch client live on ``app.state`` (created in
the lifespan). Services are assembled per request from those pieces, so
tests only need to override get_db, get_llm and get_http_client.
"""

from collections.abc import AsyncIterator

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from policy_whisperer.pipeline.conversation import ConversationService
from policy_whisperer.pipeline.impact import ImpactAnalysisService
from policy_whisperer.pipeline.ingest import IngestionService
from policy_whisperer.pipeline.summarize import SummarizationService
from policy_whisperer.retrieval.llm import LLMClient
from policy_whisperer.storage.db import get_session
from policy_whisperer.storage.repository import DocumentStore, LegislationStore


async def get_db() -> AsyncIterator[AsyncSession]:
    session = await get_session()
    try:
        yield session
    finally:
        await session.close()


def get_llm(request: Request) -> LLMClient:
    return request.app.state.llm


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_document_store(session: AsyncSession = Depends(get_db)) -> DocumentStore:
    return DocumentStore(session)


def get_legislation_store(session: AsyncSession = Depends(get_db)) -> LegislationStore:
    return LegislationStore(session)


def get_ingestion_service(
    store: DocumentStore = Depends(get_document_store),
    llm: LLMClient = Depends(get_llm),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> IngestionService:
    return IngestionService(store, SummarizationService(llm), http_client=http_client)


def get_conversation_service(
    store: DocumentStore = Depends(get_document_store),
    llm: LLMClient = Depends(get_llm),
) -> ConversationService:
    return ConversationService(store, llm)


def get_impact_service(
    store: LegislationStore = Depends(get_legislation_store),
    llm: LLMClient = Depends(get_llm),
) -> ImpactAnalysisService:
    return ImpactAnalysisService(store, llm)
