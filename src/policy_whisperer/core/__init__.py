"""Core domain types shared across all policy_whisperer modules."""

from policy_whisperer.core.types import (
    ChatReply,
    ContentSource,
    Conversation,
    ImpactAssessment,
    IngestResult,
    Legislation,
    LegislationImpact,
    Message,
    PolicyDocument,
    PolicySummary,
)

__all__ = [
    "ChatReply",
    "ContentSource",
    "Conversation",
    "ImpactAssessment",
    "IngestResult",
    "Legislation",
    "LegislationImpact",
    "Message",
    "PolicyDocument",
    "PolicySummary",
]
