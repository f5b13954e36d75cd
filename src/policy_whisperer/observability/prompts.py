"""Prompt registry: versioned system prompts for the LLM calls.

Prompt strings live here rather than in pipeline code so that:
1. Each trace can be tagged with the exact prompt version used
2. Prompt variants can be swapped without touching the services
"""

import logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompt versions
# ---------------------------------------------------------------------------

SUMMARY_PROMPT_V1 = """\
You are an AI specialized in analyzing policy documents and extracting key information.
For the given policy document, respond with a JSON object containing exactly these fields:
1. "keySummary": a concise 2-3 sentence executive summary of the policy's main purpose
2. "keyPoints": an array of 4-5 specific key provisions or requirements in the policy
3. "localImpact": a paragraph on how this policy might affect local economies or communities
4. "demographicImpact": a paragraph on how different demographic groups might be affected differently

Return ONLY valid JSON, no markdown fences, no explanation.\
"""

IMPACT_PROMPT_V1 = """\
You are an AI specialized in analyzing the potential impact of legislation on different states.
For the given legislation, analyze its potential impact on {state_name} ({state_code}).
Consider economic, social, environmental, and legal factors specific to {state_name}.
Respond in JSON format with the following structure:
{{
  "impactLevel": "high", "medium", "low", "neutral", or "unknown",
  "summary": "A brief one-sentence overview of the impact",
  "details": "A paragraph with more detailed analysis of how this legislation would impact {state_name} specifically"
}}\
"""

CHAT_PROMPT_V1 = """\
You are an AI assistant specializing in policy analysis.
Use the following policy content as context for your responses:
{context}\
"""

HTML_FORMATTING_V1 = """\
Format your responses using proper HTML tags for better readability:
- Use <p> tags for paragraphs
- Use <ul> and <li> tags for unordered lists
- Use <ol> and <li> tags for ordered lists
- Use <h3> tags for subheadings
- Use <b> or <strong> tags for emphasis
- When presenting steps or a numbered list, use an ordered list with <ol> and <li> tags
- For key points that aren't sequential, use an unordered list with <ul> and <li> tags
- Structure your content logically with clear sections\
"""

# Registry: name → (version, prompt_text)
_PROMPT_REGISTRY: dict[str, tuple[str, str]] = {
    "summary": ("v1", SUMMARY_PROMPT_V1),
    "impact": ("v1", IMPACT_PROMPT_V1),
    "chat": ("v1", CHAT_PROMPT_V1),
    "html_formatting": ("v1", HTML_FORMATTING_V1),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_active_prompt(name: str) -> str:
    """Return the active prompt text for a given prompt name.

    Args:
        name: Prompt identifier (e.g., "summary").

    Returns:
        The prompt string. Templates ("impact", "chat") still contain
        ``str.format`` placeholders.

    Raises:
        KeyError: If prompt name is not registered.
    """
    if name not in _PROMPT_REGISTRY:
        raise KeyError(f"Unknown prompt: {name!r}. Available: {list(_PROMPT_REGISTRY.keys())}")
    return _PROMPT_REGISTRY[name][1]


def get_prompt_version(name: str) -> str:
    """Return the version tag for a given prompt name."""
    if name not in _PROMPT_REGISTRY:
        raise KeyError(f"Unknown prompt: {name!r}. Available: {list(_PROMPT_REGISTRY.keys())}")
    return _PROMPT_REGISTRY[name][0]


def list_prompts() -> list[dict[str, str]]:
    """List all registered prompts with name and version."""
    return [{"name": name, "version": ver} for name, (ver, _) in _PROMPT_REGISTRY.items()]


def render_prompt(name: str, **values: str) -> str:
    """Fill a prompt template with ``values``; plain prompts are returned as-is."""
    text = get_active_prompt(name)
    logger.debug("Rendering prompt %s (%s)", name, get_prompt_version(name))
    return text.format(**values) if values else text
