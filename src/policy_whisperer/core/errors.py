"""Error taxonomy shared by every service.

Services raise these; the API layer maps them to HTTP responses in one place.
"""


class PolicyWhispererError(Exception):
    """Base class for all errors surfaced by Policy Whisperer."""


class InputError(PolicyWhispererError):
    """Missing or invalid caller input (empty text, bad URL, unknown state)."""


class UnsupportedFileTypeError(InputError):
    """Uploaded file is not a text-like document."""


class NotFoundError(PolicyWhispererError):
    """A requested record does not exist."""


class UpstreamFetchError(PolicyWhispererError):
    """Fetching user-supplied content from the network failed."""


class FetchError(UpstreamFetchError):
    """URL fetch failed; ``status`` is the HTTP status or None for transport errors."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ContentTooShortError(UpstreamFetchError):
    """Fetched content had too little text left after markup was stripped."""


class PersistenceError(PolicyWhispererError):
    """Database insert/select failed."""


class LLMError(PolicyWhispererError):
    """The LLM call failed or returned an unusable response."""
