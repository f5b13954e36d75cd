"""Summarization service: structured policy summaries with deterministic fallbacks.

The LLM is asked for a JSON object with keySummary, keyPoints, localImpact
and demographicImpact. This service never raises for LLM problems: a failed
call, an unparsable reply, or missing fields all resolve to fixed entries of
SUMMARY_FALLBACKS, so the ingestion pipeline always has a summary to store.
"""

import json
import logging

from policy_whisperer.core.errors import LLMError
from policy_whisperer.core.types import PolicySummary
from policy_whisperer.observability.prompts import render_prompt
from policy_whisperer.observability.tracing import trace
from policy_whisperer.retrieval.llm import LLMClient, strip_code_fences, truncate_for_prompt

logger = logging.getLogger(__name__)

SUMMARY_CHAR_LIMIT = 15_000
SUMMARY_MAX_TOKENS = 1000

# Failure kind → canned content.
# "missing_field" supplies a default per field when the JSON parsed but
# the field is absent; the other two replace the whole summary.
SUMMARY_FALLBACKS: dict[str, dict] = {
    "missing_field": {
        "key_summary": "This policy document has been analyzed. Key insights are available.",
        "key_points": ["Document has been successfully processed"],
        "local_impact": "Analysis of local impact is available upon request.",
        "demographic_impact": "Analysis of demographic considerations is available upon request.",
    },
    "unparsable": {
        "key_summary": "This policy has been analyzed. Please ask specific questions to learn more.",
        "key_points": [
            "Document has been successfully processed",
            "AI analysis available",
            "Ask questions for detailed insights",
        ],
        "local_impact": "Analysis of local impact is available upon request.",
        "demographic_impact": "Analysis of demographic considerations is available upon request.",
    },
    "llm_error": {
        "key_summary": "This policy has been stored in our database for analysis. Ask questions to learn more.",
        "key_points": [
            "Document has been successfully processed",
            "You can ask questions about this policy",
            "AI will analyze the content to provide insights",
        ],
        "local_impact": "Please ask specific questions about local impact to get detailed information.",
        "demographic_impact": "Please ask specific questions about demographic considerations to get detailed information.",
    },
}

# LLM JSON key → PolicySummary field
_FIELD_KEYS = {
    "keySummary": "key_summary",
    "keyPoints": "key_points",
    "localImpact": "local_impact",
    "demographicImpact": "demographic_impact",
}


def fallback_summary(kind: str) -> PolicySummary:
    """Build a fresh PolicySummary from the fallback table."""
    entry = SUMMARY_FALLBACKS[kind]
    return PolicySummary(
        key_summary=entry["key_summary"],
        key_points=list(entry["key_points"]),
        local_impact=entry["local_impact"],
        demographic_impact=entry["demographic_impact"],
        is_fallback=True,
    )


def _as_key_points(value) -> list[str] | None:
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    if isinstance(value, list):
        points = [str(p).strip() for p in value if isinstance(p, (str, int, float)) and str(p).strip()]
        return points or None
    return None


def parse_summary_response(content: str) -> PolicySummary:
    """Parse the model's JSON reply into a PolicySummary.

    Missing or empty fields take their "missing_field" default; a reply that
    is not a JSON object yields the "unparsable" fallback.
    """
    try:
        data = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        logger.warning("Summary response is not valid JSON: %s", e)
        return fallback_summary("unparsable")
    if not isinstance(data, dict):
        logger.warning("Summary response is JSON but not an object")
        return fallback_summary("unparsable")

    defaults = SUMMARY_FALLBACKS["missing_field"]
    values: dict = {}
    missing = []
    for json_key, field_name in _FIELD_KEYS.items():
        raw = data.get(json_key, data.get(field_name))
        if field_name == "key_points":
            value = _as_key_points(raw)
        else:
            value = raw.strip() if isinstance(raw, str) and raw.strip() else None
        if value is None:
            missing.append(json_key)
            value = list(defaults[field_name]) if field_name == "key_points" else defaults[field_name]
        values[field_name] = value

    if missing:
        logger.warning("Summary response missing fields: %s", ", ".join(missing))
    return PolicySummary(**values, is_fallback=len(missing) == len(_FIELD_KEYS))


class SummarizationService:
    """Summarize policy text with the LLM."""

    def __init__(self, llm: LLMClient) -> None:
        self._llm = llm

    @trace(name="summarize_policy", span_type="CHAIN")
    async def summarize(self, content: str) -> PolicySummary:
        messages = [
            {"role": "system", "content": render_prompt("summary")},
            {"role": "user", "content": truncate_for_prompt(content, SUMMARY_CHAR_LIMIT)},
        ]
        logger.info("Generating summary for %d characters", len(content), extra={"step": "summarize"})
        try:
            reply = await self._llm.complete(
                messages, max_tokens=SUMMARY_MAX_TOKENS, json_response=True,
            )
        except LLMError as e:
            logger.error("Summary generation failed, using fallback: %s", e)
            return fallback_summary("llm_error")
        return parse_summary_response(reply)
