"""Domain types for Policy Whisperer.

All shared dataclasses and constants live here so that storage, pipeline and
API modules agree on one typed record per table. Repositories convert ORM
rows into these records; nothing above the storage layer handles raw rows.
"""

from dataclasses import dataclass, field
from datetime import datetime


SOURCE_TYPES = ("url", "file", "text")
SENDERS = ("user", "ai")
LEGISLATION_LEVELS = ("federal", "state")
IMPACT_LEVELS = ("high", "medium", "low", "neutral", "unknown")


# ---------------------------------------------------------------------------
# Policy documents and chat
# ---------------------------------------------------------------------------

@dataclass
class PolicySummary:
    """Structured summary of a policy document produced by the LLM."""

    key_summary: str
    key_points: list[str]
    local_impact: str
    demographic_impact: str
    is_fallback: bool = False


@dataclass
class PolicyDocument:
    """An ingested policy document and its derived summary fields."""

    id: str
    title: str
    content: str
    source_type: str
    source_reference: str | None
    key_summary: str
    key_points: list[str]
    local_impact: str
    demographic_impact: str
    created_at: datetime | None = None


@dataclass
class Conversation:
    """A chat thread scoped to one policy document."""

    id: str
    policy_document_id: str
    title: str
    created_at: datetime | None = None


@dataclass
class Message:
    """One chat message; ``sender`` is "user" or "ai"."""

    id: str
    conversation_id: str
    content: str
    sender: str
    created_at: datetime


@dataclass
class IngestResult:
    """Everything created by one document ingestion."""

    document: PolicyDocument
    conversation: Conversation
    summary: PolicySummary


@dataclass
class ChatReply:
    """Outcome of one chat turn.

    ``failed`` is set when the LLM call failed and ``response`` holds the
    apologetic fallback text instead of a model reply.
    """

    response: str
    conversation_id: str | None
    message: Message | None = None
    failed: bool = False


# ---------------------------------------------------------------------------
# Content acquisition
# ---------------------------------------------------------------------------

@dataclass
class ContentSource:
    """User-supplied input: a URL, an uploaded file, or pasted text."""

    kind: str  # url | file | text
    url: str | None = None
    text: str | None = None
    filename: str | None = None
    data: bytes | None = field(default=None, repr=False)
    content_type: str | None = None

    @classmethod
    def from_url(cls, url: str) -> "ContentSource":
        return cls(kind="url", url=url)

    @classmethod
    def from_file(cls, filename: str, data: bytes, content_type: str | None = None) -> "ContentSource":
        return cls(kind="file", filename=filename, data=data, content_type=content_type)

    @classmethod
    def from_text(cls, text: str) -> "ContentSource":
        return cls(kind="text", text=text)

    @property
    def reference(self) -> str | None:
        """Original URL or filename, used as the document's source reference."""
        if self.kind == "url":
            return self.url
        if self.kind == "file":
            return self.filename
        return None


# ---------------------------------------------------------------------------
# Legislation and impact
# ---------------------------------------------------------------------------

@dataclass
class Legislation:
    """A manually entered law or bill."""

    id: str
    title: str
    level: str
    content: str
    description: str | None = None
    state: str | None = None
    source_url: str | None = None
    created_at: datetime | None = None


@dataclass
class ImpactAssessment:
    """Impact of a legislation on one state, before persistence.

    ``is_fallback`` marks a synthesized mock result: the classification was
    invented because the LLM was unavailable or unparsable.
    """

    state_code: str
    impact_level: str
    summary: str
    details: str
    is_fallback: bool = False


@dataclass
class LegislationImpact:
    """Persisted impact row, one per (legislation_id, state_code)."""

    id: str
    legislation_id: str
    state_code: str
    impact_level: str
    summary: str
    details: str
    is_fallback: bool
    updated_at: datetime
