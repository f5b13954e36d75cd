"""Observability: prompt registry, structured logging, and MLflow tracing helpers."""

from policy_whisperer.observability.logging import get_correlation_id, setup_logging
from policy_whisperer.observability.prompts import get_active_prompt, render_prompt

__all__ = ["get_active_prompt", "get_correlation_id", "render_prompt", "setup_logging"]
