"""SQLAlchemy ORM models for documents, chat, legislation and impact."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class PolicyDocumentRow(Base):
    """An ingested policy document with its LLM summary fields."""

    __tablename__ = "policy_documents"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False)
    source_type = Column(String(10), nullable=False)
    source_reference = Column(Text)
    key_summary = Column(Text, nullable=False, default="")
    key_points = Column(JSON, nullable=False, default=list)
    local_impact = Column(Text, nullable=False, default="")
    demographic_impact = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ConversationRow(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_new_id)
    policy_document_id = Column(
        String(36), ForeignKey("policy_documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class MessageRow(Base):
    """Append-only chat log; created_at is strictly increasing per conversation."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    content = Column(Text, nullable=False)
    sender = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class LegislationRow(Base):
    __tablename__ = "legislation"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(500), nullable=False, index=True)
    description = Column(Text)
    level = Column(String(10), nullable=False)
    state = Column(String(100))
    source_url = Column(Text)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class LegislationImpactRow(Base):
    """Impact of one legislation on one state; at most one row per pair."""

    __tablename__ = "legislation_impact"
    __table_args__ = (
        UniqueConstraint("legislation_id", "state_code", name="uq_legislation_impact_state"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    legislation_id = Column(
        String(36), ForeignKey("legislation.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    state_code = Column(String(2), nullable=False)
    impact_level = Column(String(10), nullable=False)
    summary = Column(Text, nullable=False)
    details = Column(Text, nullable=False)
    is_fallback = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
