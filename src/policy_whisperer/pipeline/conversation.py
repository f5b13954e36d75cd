"""Conversation service: one chat turn about a policy document.

A turn stores the user's message, replays the most recent messages of the
conversation to the LLM with the policy text as system context, and stores
the reply. Without a conversation id the turn is stateless: nothing is read
or written. When the LLM call fails the caller gets a fixed apology and no
AI message is stored.
"""

import logging

from policy_whisperer.core.errors import InputError, LLMError
from policy_whisperer.core.types import ChatReply
from policy_whisperer.observability.prompts import render_prompt
from policy_whisperer.observability.tracing import trace
from policy_whisperer.retrieval.llm import LLMClient, truncate_for_prompt
from policy_whisperer.storage.repository import DocumentStore

logger = logging.getLogger(__name__)

CHAT_HISTORY_LIMIT = 10
CHAT_CONTEXT_CHAR_LIMIT = 10_000
CHAT_MAX_TOKENS = 800

CHAT_ERROR_REPLY = (
    "I'm sorry, I encountered an error processing your request. Please try again later."
)

NO_CONTEXT_PLACEHOLDER = "No specific policy content provided."

# Stored sender → chat completion role
_ROLES = {"user": "user", "ai": "assistant"}


def build_system_prompt(policy_content: str | None, format_as_html: bool = True) -> str:
    if policy_content and policy_content.strip():
        context = truncate_for_prompt(policy_content, CHAT_CONTEXT_CHAR_LIMIT)
    else:
        context = NO_CONTEXT_PLACEHOLDER
    system = render_prompt("chat", context=context)
    if format_as_html:
        system += "\n\n" + render_prompt("html_formatting")
    return system


class ConversationService:
    """Run chat turns against the LLM, persisting both sides of the exchange."""

    def __init__(self, store: DocumentStore, llm: LLMClient) -> None:
        self._store = store
        self._llm = llm

    @trace(name="chat_turn", span_type="CHAIN")
    async def post_user_message(
        self,
        prompt: str,
        conversation_id: str | None = None,
        policy_content: str | None = None,
        format_as_html: bool = True,
    ) -> ChatReply:
        """Answer ``prompt`` in the context of ``policy_content``.

        When ``policy_content`` is omitted or blank for an existing conversation, the
        conversation's document text is used.

        Raises:
            InputError: the prompt is blank.
            NotFoundError: ``conversation_id`` does not exist.
        """
        if not prompt or not prompt.strip():
            raise InputError("Prompt is required")

        log_extra = {"conversation_id": conversation_id, "step": "chat"}

        if conversation_id:
            conversation = await self._store.get_conversation(conversation_id)
            if not policy_content:
                document = await self._store.get_document(conversation.policy_document_id)
                policy_content = document.content
            await self._store.append_message(conversation_id, prompt, "user")
            history = await self._store.recent_messages(conversation_id, CHAT_HISTORY_LIMIT)
            turns = [{"role": _ROLES[m.sender], "content": m.content} for m in history]
        else:
            turns = []
        if not turns:
            turns = [{"role": "user", "content": prompt}]

        messages = [{"role": "system", "content": build_system_prompt(policy_content, format_as_html)}]
        messages.extend(turns)
        logger.info("Chat turn with %d message(s) of history", len(turns), extra=log_extra)

        try:
            response = await self._llm.complete(messages, max_tokens=CHAT_MAX_TOKENS, temperature=0.7)
        except LLMError as e:
            logger.error("Chat completion failed: %s", e, extra=log_extra)
            return ChatReply(response=CHAT_ERROR_REPLY, conversation_id=conversation_id, failed=True)

        message = None
        if conversation_id:
            message = await self._store.append_message(conversation_id, response, "ai")
        return ChatReply(response=response, conversation_id=conversation_id, message=message)
