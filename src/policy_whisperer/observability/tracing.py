"""Thin MLflow tracing helpers for LLM calls and pipeline steps.

Usage:

    from policy_whisperer.observability.tracing import trace, start_span

    @trace(name="summarize", span_type="CHAIN")
    async def summarize(...): ...

    with start_span("llm_call", span_type="CHAT_MODEL") as span:
        span.set_inputs({...})

Tests call ``mlflow.tracing.disable()`` so no traces are written.
"""

import logging
from contextlib import contextmanager

import mlflow

logger = logging.getLogger(__name__)


def trace(name: str | None = None, **kwargs):
    """Decorator: wraps a sync or async function in an MLflow trace."""
    return mlflow.trace(name=name, **kwargs) if name else mlflow.trace(**kwargs)


@contextmanager
def start_span(name: str = "span", **kwargs):
    """Context manager yielding an MLflow span."""
    with mlflow.start_span(name=name, **kwargs) as span:
        yield span


def configure_tracing(tracking_uri: str, experiment_name: str) -> None:
    """Point MLflow at the tracking store and experiment for this process."""
    mlflow.set_tracking_uri(tracking_uri)
    mlflow.set_experiment(experiment_name)
    logger.info("MLflow tracing enabled: %s", tracking_uri)
