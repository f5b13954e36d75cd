"""LLM client: OpenAI-compatible chat completions over httpx.

One LLMClient is created per process (in the API lifespan) and handed to
every service that talks to the model. All failures (missing key, HTTP
errors, timeouts, a response without ``choices``) surface as LLMError;
the services decide how to degrade. There are no automatic retries.
"""

import logging
import time
from dataclasses import dataclass, field

import httpx

from policy_whisperer.core.errors import LLMError
from policy_whisperer.observability.tracing import start_span

logger = logging.getLogger(__name__)

# Granular timeouts: fail fast on connect, generous on read (LLM generation)
LLM_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=5.0)

TRUNCATION_MARKER = "\n\n[Content truncated]"


def truncate_for_prompt(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut explicitly."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def strip_code_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` fence from a model reply."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


# ---------------------------------------------------------------------------
# Circuit Breaker
# Stops hammering a provider that keeps failing; callers fall back instantly.
# States: CLOSED (normal) → OPEN (failing) → HALF_OPEN (testing recovery)
# ---------------------------------------------------------------------------

@dataclass
class CircuitBreaker:
    """Circuit breaker for the LLM provider."""

    failure_threshold: int = 5
    reset_seconds: int = 60
    _failure_count: int = field(default=0, repr=False)
    _last_failure_time: float = field(default=0.0, repr=False)
    _state: str = field(default="closed", repr=False)  # closed, open, half_open

    @property
    def state(self) -> str:
        if self._state == "open":
            if time.monotonic() - self._last_failure_time >= self.reset_seconds:
                self._state = "half_open"
        return self._state

    def allow_request(self) -> bool:
        """Check if a request should be allowed through."""
        return self.state != "open"

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = "closed"

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.failure_threshold:
            self._state = "open"
            logger.warning(
                "Circuit breaker OPEN after %d failures (reset in %ds)",
                self._failure_count, self.reset_seconds,
            )


class LLMClient:
    """Async client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        http_client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.model = model
        self._api_key = api_key.strip()
        self._url = base_url.rstrip("/") + "/chat/completions"
        self._client = http_client or httpx.AsyncClient(timeout=LLM_TIMEOUT)
        self._breaker = breaker or CircuitBreaker()

    @classmethod
    def from_settings(cls, settings) -> "LLMClient":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(
        self,
        messages: list[dict],
        max_tokens: int = 800,
        temperature: float = 0.3,
        json_response: bool = False,
    ) -> str:
        """Send a chat completion request and return the assistant's text.

        Raises:
            LLMError: on any failure, including an empty reply.
        """
        if not self._api_key:
            raise LLMError("LLM API key not configured")
        if not self._breaker.allow_request():
            raise LLMError("LLM provider circuit open, skipping call")

        payload: dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_response:
            payload["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        with start_span(name="llm_chat_completion", span_type="CHAT_MODEL") as span:
            span.set_inputs({
                "model": self.model,
                "message_count": len(messages),
                "json_response": json_response,
            })
            t0 = time.monotonic()
            try:
                resp = await self._client.post(self._url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
                content = data["choices"][0]["message"]["content"]
            except httpx.HTTPStatusError as e:
                self._breaker.record_failure()
                logger.error("LLM error %d: %s", e.response.status_code, e.response.text[:200])
                span.set_outputs({"error": f"http_{e.response.status_code}"})
                raise LLMError(f"LLM returned HTTP {e.response.status_code}") from e
            except httpx.TimeoutException as e:
                self._breaker.record_failure()
                logger.error("LLM request timed out: %s", e)
                span.set_outputs({"error": "timeout"})
                raise LLMError("LLM request timed out") from e
            except httpx.HTTPError as e:
                self._breaker.record_failure()
                logger.error("LLM transport error: %s", e)
                span.set_outputs({"error": f"transport: {e}"})
                raise LLMError(f"LLM transport error: {e}") from e
            except (ValueError, KeyError, IndexError, TypeError) as e:
                self._breaker.record_failure()
                logger.error("Unexpected LLM response structure: %s", e)
                span.set_outputs({"error": f"parse_error: {e}"})
                raise LLMError("Invalid response from LLM API") from e

            if not isinstance(content, str) or not content.strip():
                self._breaker.record_failure()
                span.set_outputs({"error": "empty_content"})
                raise LLMError("LLM returned an empty response")

            self._breaker.record_success()
            usage = data.get("usage") or {}
            elapsed_ms = round((time.monotonic() - t0) * 1000)
            span.set_outputs({
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "duration_ms": elapsed_ms,
            })
            logger.info("LLM response from %s", self.model, extra={"duration_ms": elapsed_ms})
            return content
