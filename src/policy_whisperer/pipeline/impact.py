"""Impact analysis service: classify a legislation's impact on US states.

For each target state the LLM is asked for {impactLevel, summary, details}.
Replies are parsed in layers: direct JSON, then the first balanced JSON
object embedded in the text, then regex extraction from prose. When the
call fails or nothing can be parsed, a mock assessment with a randomly
chosen level is synthesized and flagged with ``is_fallback=True``.

States are analyzed concurrently; each state degrades on its own, so one
failed call never blocks the others. Results are then upserted one by one
on the request's session.
"""

import asyncio
import json
import logging
import random
import re

from policy_whisperer.core.errors import InputError, LLMError
from policy_whisperer.core.types import IMPACT_LEVELS, ImpactAssessment, Legislation
from policy_whisperer.observability.prompts import render_prompt
from policy_whisperer.observability.tracing import trace
from policy_whisperer.retrieval.llm import LLMClient, strip_code_fences, truncate_for_prompt
from policy_whisperer.storage.repository import LegislationStore

logger = logging.getLogger(__name__)

IMPACT_CHAR_LIMIT = 8_000
IMPACT_MAX_TOKENS = 800

# Analyzed when federal legislation is submitted without a state
SAMPLE_STATES = ("CA", "TX", "NY", "FL", "IL")

MOCK_LEVELS = ("high", "medium", "low", "neutral")

STATES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}

_NAME_TO_CODE = {name.lower(): code for code, name in STATES.items()}


def resolve_state_code(state: str | None) -> str | None:
    """Map a state name (any case) or two-letter code to its code; None if unknown."""
    if not state:
        return None
    key = " ".join(state.split())
    if key.lower() in _NAME_TO_CODE:
        return _NAME_TO_CODE[key.lower()]
    if key.upper() in STATES:
        return key.upper()
    return None


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

_LEVEL_PATTERNS = [
    re.compile(r'"?impact[_ ]?level"?\s*[:=]\s*"?(high|medium|low|neutral|unknown)\b', re.IGNORECASE),
    re.compile(r"\b(high|medium|low|neutral)\s+impact\b", re.IGNORECASE),
    re.compile(
        r"\bimpact\b[^.\n]{0,40}?\b(?:is|would be|will be|as)\s+(high|medium|low|neutral|unknown)\b",
        re.IGNORECASE,
    ),
]
_SUMMARY_PATTERNS = [
    re.compile(r'"summary"\s*:\s*"((?:[^"\\]|\\.)*)"', re.IGNORECASE | re.DOTALL),
    re.compile(r"^[\s*#-]*summary[*\s]*[:\-]\s*(.+)$", re.IGNORECASE | re.MULTILINE),
]
_DETAILS_PATTERNS = [
    re.compile(r'"details"\s*:\s*"((?:[^"\\]|\\.)*)"', re.IGNORECASE | re.DOTALL),
    re.compile(r"^[\s*#-]*details[*\s]*[:\-]\s*(.+)$", re.IGNORECASE | re.MULTILINE),
]


def _balanced_object_at(text: str, start: int) -> str | None:
    """Return the balanced ``{...}`` starting at ``start``, honoring JSON strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_first_json_object(text: str) -> dict | None:
    """Find the first top-level JSON object embedded in free text."""
    start = text.find("{")
    while start != -1:
        candidate = _balanced_object_at(text, start)
        if candidate is None:
            return None
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data
        start = text.find("{", start + 1)
    return None


def _first_match(patterns: list[re.Pattern], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            value = match.group(1).strip()
            if pattern.pattern.startswith('"'):
                try:
                    value = json.loads(f'"{value}"')
                except json.JSONDecodeError:
                    pass
            if value:
                return value
    return None


def _normalize_level(value) -> str:
    level = str(value or "").strip().lower()
    return level if level in IMPACT_LEVELS else "unknown"


def _text_field(value) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def parse_impact_response(content: str) -> dict | None:
    """Extract {impact_level, summary, details} from a model reply.

    Returns None when neither JSON nor recognizable prose fields are found.
    summary/details may be None when the reply omitted them.
    """
    cleaned = strip_code_fences(content)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = None
    if not isinstance(data, dict):
        data = extract_first_json_object(cleaned)

    if isinstance(data, dict):
        return {
            "impact_level": _normalize_level(data.get("impactLevel", data.get("impact_level"))),
            "summary": _text_field(data.get("summary")),
            "details": _text_field(data.get("details")),
        }

    level = _first_match(_LEVEL_PATTERNS, content)
    summary = _first_match(_SUMMARY_PATTERNS, content)
    details = _first_match(_DETAILS_PATTERNS, content)
    if level is None and summary is None and details is None:
        return None
    logger.info("Impact response parsed from prose")
    return {"impact_level": _normalize_level(level), "summary": summary, "details": details}


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ImpactAnalysisService:
    """Analyze and store per-state impact for legislation records."""

    def __init__(self, store: LegislationStore, llm: LLMClient, rng: random.Random | None = None) -> None:
        self._store = store
        self._llm = llm
        self._rng = rng or random.Random()

    def target_states(self, legislation: Legislation, state_code: str | None = None) -> list[str]:
        """States to analyze for this request.

        An explicit code wins; otherwise federal legislation uses the sample
        states and state legislation its own state (none if unrecognized).
        """
        if state_code:
            code = state_code.strip().upper()
            if code not in STATES:
                raise InputError(f"Unknown state code: {state_code}")
            return [code]
        if legislation.level == "federal":
            return list(SAMPLE_STATES)
        code = resolve_state_code(legislation.state)
        if code is None:
            logger.warning(
                "Unrecognized state %r on state legislation, nothing to analyze", legislation.state,
                extra={"legislation_id": legislation.id},
            )
            return []
        return [code]

    def mock_assessment(self, legislation: Legislation, state_code: str) -> ImpactAssessment:
        """Synthesized stand-in used when no model classification is available."""
        state_name = STATES.get(state_code, state_code)
        level = self._rng.choice(MOCK_LEVELS)
        return ImpactAssessment(
            state_code=state_code,
            impact_level=level,
            summary=f"Estimated {level} impact of {legislation.title} on {state_name}.",
            details=(
                f"Automated analysis was unavailable, so this {level} rating for {state_name} "
                f"is a placeholder estimate rather than a model assessment. "
                f"Run the analysis again to replace it."
            ),
            is_fallback=True,
        )

    async def assess_state(self, legislation: Legislation, state_code: str) -> ImpactAssessment:
        """Ask the LLM about one state. Never raises for LLM failures."""
        state_name = STATES.get(state_code, state_code)
        messages = [
            {
                "role": "system",
                "content": render_prompt("impact", state_name=state_name, state_code=state_code),
            },
            {
                "role": "user",
                "content": (
                    f"Legislation Title: {legislation.title}\n\n"
                    f"Content: {truncate_for_prompt(legislation.content, IMPACT_CHAR_LIMIT)}"
                ),
            },
        ]
        log_extra = {"legislation_id": legislation.id, "state_code": state_code}
        try:
            reply = await self._llm.complete(messages, max_tokens=IMPACT_MAX_TOKENS, json_response=True)
        except LLMError as e:
            logger.error("Impact analysis failed for %s, using mock: %s", state_name, e, extra=log_extra)
            return self.mock_assessment(legislation, state_code)

        fields = parse_impact_response(reply)
        if fields is None:
            logger.error("Unparsable impact response for %s, using mock", state_name, extra=log_extra)
            return self.mock_assessment(legislation, state_code)

        return ImpactAssessment(
            state_code=state_code,
            impact_level=fields["impact_level"],
            summary=fields["summary"] or f"Impact analysis for {state_name} is available.",
            details=fields["details"] or f"Detailed impact analysis for {state_name} is available upon request.",
        )

    @trace(name="analyze_legislation_impact", span_type="CHAIN")
    async def analyze(
        self,
        legislation_id: str,
        state_code: str | None = None,
        store_results: bool = True,
    ) -> list[ImpactAssessment]:
        """Analyze the requested states and optionally upsert the results.

        Raises:
            NotFoundError: the legislation does not exist.
            InputError: ``state_code`` is not a US state code.
        """
        legislation = await self._store.get_legislation(legislation_id)
        states = self.target_states(legislation, state_code)
        logger.info(
            "Analyzing %d state(s): %s", len(states), ", ".join(states),
            extra={"legislation_id": legislation_id, "step": "impact"},
        )

        assessments = await asyncio.gather(*(self.assess_state(legislation, code) for code in states))

        if store_results:
            for assessment in assessments:
                await self._store.upsert_impact(
                    legislation_id,
                    assessment.state_code,
                    assessment.impact_level,
                    assessment.summary,
                    assessment.details,
                    is_fallback=assessment.is_fallback,
                )
        return list(assessments)
