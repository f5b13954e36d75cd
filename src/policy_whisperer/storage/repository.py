"""Typed repositories over the ORM models.

Each store wraps one AsyncSession owned by the caller. Every write commits
on its own (no transaction spans tables), and database failures surface as
PersistenceError after the session is rolled back. Rows are converted into
the dataclasses from policy_whisperer.core.types before they leave here.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from policy_whisperer.core.errors import NotFoundError, PersistenceError
from policy_whisperer.core.types import (
    Conversation,
    Legislation,
    LegislationImpact,
    Message,
    PolicyDocument,
    PolicySummary,
)
from policy_whisperer.storage.models import (
    ConversationRow,
    LegislationImpactRow,
    LegislationRow,
    MessageRow,
    PolicyDocumentRow,
    utcnow,
)

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _next_timestamp(previous: datetime | None) -> datetime:
    """Current UTC time, bumped past ``previous`` so the sequence strictly increases."""
    now = utcnow()
    previous = _aware(previous)
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


@asynccontextmanager
async def _persistence(session: AsyncSession, action: str):
    try:
        yield
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("Database error while %s: %s", action, e)
        raise PersistenceError(f"Database error while {action}") from e


# ---------------------------------------------------------------------------
# Row → record conversion
# ---------------------------------------------------------------------------

def _to_document(row: PolicyDocumentRow) -> PolicyDocument:
    return PolicyDocument(
        id=row.id,
        title=row.title,
        content=row.content,
        source_type=row.source_type,
        source_reference=row.source_reference,
        key_summary=row.key_summary,
        key_points=list(row.key_points or []),
        local_impact=row.local_impact,
        demographic_impact=row.demographic_impact,
        created_at=_aware(row.created_at),
    )


def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id,
        policy_document_id=row.policy_document_id,
        title=row.title,
        created_at=_aware(row.created_at),
    )


def _to_message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        content=row.content,
        sender=row.sender,
        created_at=_aware(row.created_at),
    )


def _to_legislation(row: LegislationRow) -> Legislation:
    return Legislation(
        id=row.id,
        title=row.title,
        level=row.level,
        content=row.content,
        description=row.description,
        state=row.state,
        source_url=row.source_url,
        created_at=_aware(row.created_at),
    )


def _to_impact(row: LegislationImpactRow) -> LegislationImpact:
    return LegislationImpact(
        id=row.id,
        legislation_id=row.legislation_id,
        state_code=row.state_code,
        impact_level=row.impact_level,
        summary=row.summary,
        details=row.details,
        is_fallback=bool(row.is_fallback),
        updated_at=_aware(row.updated_at),
    )


# ---------------------------------------------------------------------------
# Documents, conversations, messages
# ---------------------------------------------------------------------------

class DocumentStore:
    """Policy documents and their chat threads."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_document(
        self,
        title: str,
        content: str,
        source_type: str,
        source_reference: str | None,
        summary: PolicySummary,
    ) -> PolicyDocument:
        """Insert a new document row. Identical content still creates a new row."""
        row = PolicyDocumentRow(
            title=title,
            content=content,
            source_type=source_type,
            source_reference=source_reference,
            key_summary=summary.key_summary,
            key_points=list(summary.key_points),
            local_impact=summary.local_impact,
            demographic_impact=summary.demographic_impact,
            created_at=utcnow(),
        )
        async with _persistence(self._session, "creating policy document"):
            self._session.add(row)
            await self._session.commit()
        logger.info("Created policy document", extra={"document_id": row.id})
        return _to_document(row)

    async def get_document(self, document_id: str) -> PolicyDocument:
        async with _persistence(self._session, "loading policy document"):
            row = await self._session.get(PolicyDocumentRow, document_id)
        if row is None:
            raise NotFoundError(f"Policy document not found: {document_id}")
        return _to_document(row)

    async def create_conversation(self, document_id: str, title: str) -> Conversation:
        row = ConversationRow(policy_document_id=document_id, title=title, created_at=utcnow())
        async with _persistence(self._session, "creating conversation"):
            self._session.add(row)
            await self._session.commit()
        logger.info("Created conversation", extra={"conversation_id": row.id, "document_id": document_id})
        return _to_conversation(row)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        async with _persistence(self._session, "loading conversation"):
            row = await self._session.get(ConversationRow, conversation_id)
        if row is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")
        return _to_conversation(row)

    async def append_message(self, conversation_id: str, content: str, sender: str) -> Message:
        """Append a message stamped after every earlier message in the conversation."""
        async with _persistence(self._session, "storing message"):
            latest = await self._session.scalar(
                select(func.max(MessageRow.created_at)).where(
                    MessageRow.conversation_id == conversation_id
                )
            )
            row = MessageRow(
                conversation_id=conversation_id,
                content=content,
                sender=sender,
                created_at=_next_timestamp(latest),
            )
            self._session.add(row)
            await self._session.commit()
        return _to_message(row)

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """The ``limit`` most recent messages, oldest first."""
        async with _persistence(self._session, "loading messages"):
            result = await self._session.execute(
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.created_at.desc())
                .limit(limit)
            )
            rows = list(result.scalars())
        rows.reverse()
        return [_to_message(r) for r in rows]

    async def list_messages(self, conversation_id: str) -> list[Message]:
        async with _persistence(self._session, "loading messages"):
            result = await self._session.execute(
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.created_at)
            )
            return [_to_message(r) for r in result.scalars()]


# ---------------------------------------------------------------------------
# Legislation and impact
# ---------------------------------------------------------------------------

class LegislationStore:
    """Legislation records and their per-state impact rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_legislation(
        self,
        title: str,
        content: str,
        level: str,
        state: str | None = None,
        description: str | None = None,
        source_url: str | None = None,
    ) -> Legislation:
        row = LegislationRow(
            title=title,
            content=content,
            level=level,
            state=state,
            description=description,
            source_url=source_url,
            created_at=utcnow(),
        )
        async with _persistence(self._session, "creating legislation"):
            self._session.add(row)
            await self._session.commit()
        logger.info("Created legislation %r", title, extra={"legislation_id": row.id})
        return _to_legislation(row)

    async def get_legislation(self, legislation_id: str) -> Legislation:
        async with _persistence(self._session, "loading legislation"):
            row = await self._session.get(LegislationRow, legislation_id)
        if row is None:
            raise NotFoundError(f"Legislation not found: {legislation_id}")
        return _to_legislation(row)

    async def search_legislation(self, query: str = "", limit: int = 50) -> list[Legislation]:
        """Case-insensitive title search, newest first. Blank query lists everything."""
        stmt = select(LegislationRow)
        query = query.strip()
        if query:
            stmt = stmt.where(LegislationRow.title.ilike(f"%{query}%"))
        stmt = stmt.order_by(LegislationRow.created_at.desc()).limit(limit)
        async with _persistence(self._session, "searching legislation"):
            result = await self._session.execute(stmt)
            return [_to_legislation(r) for r in result.scalars()]

    async def _find_impact(self, legislation_id: str, state_code: str) -> LegislationImpactRow | None:
        result = await self._session.execute(
            select(LegislationImpactRow).where(
                LegislationImpactRow.legislation_id == legislation_id,
                LegislationImpactRow.state_code == state_code,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_impact(
        self,
        legislation_id: str,
        state_code: str,
        impact_level: str,
        summary: str,
        details: str,
        is_fallback: bool = False,
    ) -> LegislationImpact:
        """Update the (legislation, state) row in place, or insert it.

        A concurrent request may insert the same pair between our lookup and
        insert; the unique constraint rejects ours and we update theirs
        instead, so the last write wins.
        """
        values = {
            "impact_level": impact_level,
            "summary": summary,
            "details": details,
            "is_fallback": is_fallback,
        }
        async with _persistence(self._session, f"storing impact for {state_code}"):
            row = await self._find_impact(legislation_id, state_code)
            if row is None:
                row = LegislationImpactRow(
                    legislation_id=legislation_id,
                    state_code=state_code,
                    updated_at=utcnow(),
                    **values,
                )
                self._session.add(row)
                try:
                    await self._session.commit()
                except IntegrityError:
                    await self._session.rollback()
                    row = await self._find_impact(legislation_id, state_code)
                    if row is None:
                        raise
                    await self._update_impact(row, values)
            else:
                await self._update_impact(row, values)

        logger.info(
            "Stored impact %s for %s", impact_level, state_code,
            extra={"legislation_id": legislation_id, "state_code": state_code},
        )
        return _to_impact(row)

    async def _update_impact(self, row: LegislationImpactRow, values: dict) -> None:
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = _next_timestamp(row.updated_at)
        await self._session.commit()

    async def get_impact(self, legislation_id: str, state_code: str) -> LegislationImpact:
        async with _persistence(self._session, "loading impact"):
            row = await self._find_impact(legislation_id, state_code)
        if row is None:
            raise NotFoundError(f"No impact analysis for {state_code} on legislation {legislation_id}")
        return _to_impact(row)

    async def list_impacts(self, legislation_id: str) -> list[LegislationImpact]:
        async with _persistence(self._session, "loading impacts"):
            result = await self._session.execute(
                select(LegislationImpactRow)
                .where(LegislationImpactRow.legislation_id == legislation_id)
                .order_by(LegislationImpactRow.state_code)
            )
            return [_to_impact(r) for r in result.scalars()]
