"""Ingestion pipeline: acquire → summarize → store document → open conversation.

The three writes (document, conversation, opener message) are independent
commits. A failure after the document insert leaves a document without a
conversation; that partial state is accepted and not repaired. Content
acquisition happens before anything is written, so a failed fetch or a
rejected file creates nothing.
"""

import logging
import time

import httpx

from policy_whisperer.core.errors import InputError
from policy_whisperer.core.types import SOURCE_TYPES, ContentSource, IngestResult
from policy_whisperer.ingestion.content import acquire_content, sanitize_text
from policy_whisperer.observability.tracing import trace
from policy_whisperer.pipeline.summarize import SummarizationService
from policy_whisperer.storage.repository import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Policy Document"
CONVERSATION_TITLE = "Initial Conversation"
OPENER = "I've analyzed the policy document. What questions do you have about it?"


class IngestionService:
    """Turn user-supplied content into a summarized document with a chat thread."""

    def __init__(
        self,
        store: DocumentStore,
        summarizer: SummarizationService,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store
        self._summarizer = summarizer
        self._http_client = http_client

    @trace(name="process_policy_document", span_type="CHAIN")
    async def process_content(
        self,
        content: str,
        source_type: str,
        title: str | None = None,
        source_reference: str | None = None,
    ) -> IngestResult:
        """Summarize and store already-acquired document text.

        Raises:
            InputError: blank content or an unknown source type.
            PersistenceError: one of the inserts failed.
        """
        if not content or not content.strip():
            raise InputError("Content is required")
        if source_type not in SOURCE_TYPES:
            raise InputError(f"Invalid source type {source_type!r}: expected one of {', '.join(SOURCE_TYPES)}")

        t0 = time.monotonic()
        content = sanitize_text(content)
        summary = await self._summarizer.summarize(content)

        document = await self._store.create_document(
            title=(title or "").strip() or DEFAULT_TITLE,
            content=content,
            source_type=source_type,
            source_reference=source_reference,
            summary=summary,
        )
        conversation = await self._store.create_conversation(document.id, CONVERSATION_TITLE)
        await self._store.append_message(conversation.id, OPENER, "ai")

        logger.info(
            "Ingested %s document (%d chars, fallback summary: %s)",
            source_type, len(content), summary.is_fallback,
            extra={
                "document_id": document.id,
                "conversation_id": conversation.id,
                "step": "ingest",
                "duration_ms": round((time.monotonic() - t0) * 1000),
            },
        )
        return IngestResult(document=document, conversation=conversation, summary=summary)

    async def ingest(self, source: ContentSource, title: str | None = None) -> IngestResult:
        """Acquire content from ``source`` then run process_content()."""
        content = await acquire_content(source, client=self._http_client)
        return await self.process_content(
            content,
            source_type=source.kind,
            title=title,
            source_reference=source.reference,
        )
