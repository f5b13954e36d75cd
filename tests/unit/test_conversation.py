"""Tests for the conversation service and the ingestion pipeline that seeds it."""

import pytest

from policy_whisperer.core.errors import ContentTooShortError, InputError, LLMError, NotFoundError
from policy_whisperer.core.types import ContentSource
from policy_whisperer.pipeline.conversation import (
    CHAT_CONTEXT_CHAR_LIMIT,
    CHAT_ERROR_REPLY,
    CHAT_HISTORY_LIMIT,
    NO_CONTEXT_PLACEHOLDER,
    ConversationService,
    build_system_prompt,
)
from policy_whisperer.pipeline.ingest import CONVERSATION_TITLE, DEFAULT_TITLE, OPENER, IngestionService
from policy_whisperer.pipeline.summarize import SUMMARY_FALLBACKS, SummarizationService
from policy_whisperer.retrieval.llm import TRUNCATION_MARKER
from policy_whisperer.storage.repository import DocumentStore

POLICY_TEXT = "The city will add protected bike lanes on all arterial roads by 2030."


async def _ingest(session, llm, content: str = POLICY_TEXT):
    store = DocumentStore(session)
    return await IngestionService(store, SummarizationService(llm)).process_content(content, "text")


class TestIngestionService:
    async def test_text_creates_document_conversation_and_opener(self, session, llm):
        result = await _ingest(session, llm)

        assert result.document.id
        assert result.document.title == DEFAULT_TITLE
        assert result.document.source_type == "text"
        assert result.conversation.policy_document_id == result.document.id
        assert result.conversation.title == CONVERSATION_TITLE

        messages = await DocumentStore(session).list_messages(result.conversation.id)
        assert [(m.sender, m.content) for m in messages] == [("ai", OPENER)]

    async def test_failed_llm_still_stores_fallback_summary(self, session, llm):
        result = await _ingest(session, llm)
        assert result.summary.is_fallback is True
        assert result.document.key_summary == SUMMARY_FALLBACKS["llm_error"]["key_summary"]

    async def test_identical_content_not_deduplicated(self, session, llm):
        first = await _ingest(session, llm)
        second = await _ingest(session, llm)
        assert first.document.id != second.document.id

    async def test_blank_content_rejected(self, session, llm):
        with pytest.raises(InputError):
            await _ingest(session, llm, content="   ")

    async def test_unknown_source_type_rejected(self, session, llm):
        service = IngestionService(DocumentStore(session), SummarizationService(llm))
        with pytest.raises(InputError):
            await service.process_content(POLICY_TEXT, "fax")

    async def test_url_ingest(self, session, llm, fetch_client):
        service = IngestionService(DocumentStore(session), SummarizationService(llm), http_client=fetch_client)
        result = await service.ingest(ContentSource.from_url("https://policy.example.gov/clean-air"), title="Clean Air")

        assert result.document.source_type == "url"
        assert result.document.source_reference == "https://policy.example.gov/clean-air"
        assert "Limits industrial emissions" in result.document.content

    async def test_failed_fetch_creates_nothing(self, session, llm, fetch_client):
        service = IngestionService(DocumentStore(session), SummarizationService(llm), http_client=fetch_client)
        with pytest.raises(ContentTooShortError):
            await service.ingest(ContentSource.from_url("https://policy.example.gov/tiny"))
        llm.complete.assert_not_called()


class TestBuildSystemPrompt:
    def test_embeds_context_and_html_rules(self):
        prompt = build_system_prompt(POLICY_TEXT)
        assert POLICY_TEXT in prompt
        assert "<ol>" in prompt

    def test_plain_formatting(self):
        assert "<ol>" not in build_system_prompt(POLICY_TEXT, format_as_html=False)

    def test_context_truncated(self):
        prompt = build_system_prompt("p" * (CHAT_CONTEXT_CHAR_LIMIT + 1), format_as_html=False)
        assert prompt.endswith(TRUNCATION_MARKER)

    def test_blank_context_uses_placeholder(self):
        assert NO_CONTEXT_PLACEHOLDER in build_system_prompt("", format_as_html=False)
        assert NO_CONTEXT_PLACEHOLDER in build_system_prompt(None, format_as_html=False)


class TestConversationService:
    async def test_message_ordering(self, session, llm):
        """A then B yields [opener, A, reply-A, B, reply-B]."""
        result = await _ingest(session, llm)
        store = DocumentStore(session)
        service = ConversationService(store, llm)
        llm.complete.side_effect = ["<p>Reply to A</p>", "<p>Reply to B</p>"]

        await service.post_user_message("A", conversation_id=result.conversation.id)
        await service.post_user_message("B", conversation_id=result.conversation.id)

        messages = await store.list_messages(result.conversation.id)
        assert [m.content for m in messages] == [OPENER, "A", "<p>Reply to A</p>", "B", "<p>Reply to B</p>"]
        assert [m.sender for m in messages] == ["ai", "user", "ai", "user", "ai"]
        stamps = [m.created_at for m in messages]
        assert stamps == sorted(stamps) and len(set(stamps)) == len(stamps)

    async def test_history_sent_with_roles(self, session, llm):
        result = await _ingest(session, llm)
        llm.complete.side_effect = ["ok"]

        await ConversationService(DocumentStore(session), llm).post_user_message(
            "What changes?", conversation_id=result.conversation.id,
        )

        messages = llm.complete.call_args.args[0]
        assert messages[0]["role"] == "system"
        assert POLICY_TEXT in messages[0]["content"]
        assert messages[1:] == [
            {"role": "assistant", "content": OPENER},
            {"role": "user", "content": "What changes?"},
        ]

    async def test_history_limited_to_recent(self, session, llm):
        result = await _ingest(session, llm)
        service = ConversationService(DocumentStore(session), llm)
        llm.complete.side_effect = None
        llm.complete.return_value = "reply"

        for i in range(8):
            await service.post_user_message(f"question {i}", conversation_id=result.conversation.id)

        history = llm.complete.call_args.args[0][1:]
        assert len(history) == CHAT_HISTORY_LIMIT
        assert history[-1] == {"role": "user", "content": "question 7"}

    async def test_explicit_policy_content_overrides(self, session, llm):
        result = await _ingest(session, llm)
        llm.complete.side_effect = ["ok"]

        await ConversationService(DocumentStore(session), llm).post_user_message(
            "Q", conversation_id=result.conversation.id, policy_content="Override context",
        )

        assert "Override context" in llm.complete.call_args.args[0][0]["content"]

    async def test_blank_policy_content_falls_back_to_document(self, session, llm):
        result = await _ingest(session, llm)
        llm.complete.side_effect = ["ok"]

        await ConversationService(DocumentStore(session), llm).post_user_message(
            "Q", conversation_id=result.conversation.id, policy_content="",
        )

        assert POLICY_TEXT in llm.complete.call_args.args[0][0]["content"]

    async def test_stateless_turn(self, llm):
        llm.complete.side_effect = ["Stateless answer"]
        reply = await ConversationService(store=None, llm=llm).post_user_message(
            "Summarize", policy_content=POLICY_TEXT,
        )

        assert reply.response == "Stateless answer"
        assert reply.conversation_id is None
        assert llm.complete.call_args.args[0][1:] == [{"role": "user", "content": "Summarize"}]

    async def test_llm_failure_returns_apology(self, session, llm):
        result = await _ingest(session, llm)
        store = DocumentStore(session)
        llm.complete.side_effect = LLMError("HTTP 500")

        reply = await ConversationService(store, llm).post_user_message(
            "Hello?", conversation_id=result.conversation.id,
        )

        assert reply.failed is True
        assert reply.response == CHAT_ERROR_REPLY
        senders = [m.sender for m in await store.list_messages(result.conversation.id)]
        assert senders == ["ai", "user"]

    async def test_unknown_conversation(self, session, llm):
        with pytest.raises(NotFoundError):
            await ConversationService(DocumentStore(session), llm).post_user_message("Hi", conversation_id="nope")

    async def test_blank_prompt(self, llm):
        with pytest.raises(InputError):
            await ConversationService(store=None, llm=llm).post_user_message("  ")
