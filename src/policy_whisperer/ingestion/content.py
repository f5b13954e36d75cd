"""Content acquisition: turn a URL, uploaded file, or pasted text into document text.

URLs are fetched server-side and HTML is reduced to plain text. Files must
be text-like (plain text or markdown). Whatever the source, the result goes
through sanitize_text() so the text handed downstream is ASCII-safe.
"""

import logging
import re
from pathlib import PurePath
from urllib.parse import quote, urlparse

import httpx
from bs4 import BeautifulSoup

from policy_whisperer.core.errors import (
    ContentTooShortError,
    FetchError,
    InputError,
    UnsupportedFileTypeError,
)
from policy_whisperer.core.types import ContentSource

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=5.0)
FETCH_HEADERS = {"User-Agent": "PolicyWhisperer/1.0 (+policy document fetcher)"}

MIN_CONTENT_LENGTH = 10
MAX_UPLOAD_BYTES = 2 * 1024 * 1024
MAX_FETCH_BYTES = 10 * 1024 * 1024
# Largest document text the ingestion endpoints accept
MAX_CONTENT_CHARS = 1_000_000

TEXT_FILE_EXTENSIONS = {".txt", ".text", ".md", ".markdown"}
TEXT_CONTENT_TYPES = {"text/plain", "text/markdown", "text/x-markdown"}

_WHITESPACE = re.compile(r"\s+")


def sanitize_text(text: str) -> str:
    """Drop NUL bytes and percent-encode every non-ASCII character.

    Characters are encoded as their UTF-8 bytes (``é`` → ``%C3%A9``). Lone
    surrogates cannot be encoded and are dropped. The output is pure ASCII,
    and sanitizing it again leaves it unchanged.
    """
    out = []
    for ch in text.replace("\x00", ""):
        if ord(ch) < 128:
            out.append(ch)
            continue
        try:
            out.append(quote(ch, safe=""))
        except UnicodeEncodeError:
            continue
    return "".join(out)


def html_to_text(html: str) -> str:
    """Strip scripts, styles and tags from HTML and collapse whitespace."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    return _WHITESPACE.sub(" ", text).strip()


def _validate_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise InputError("URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InputError(f"Invalid URL: {url}")
    return url


async def fetch_url_content(url: str, client: httpx.AsyncClient | None = None) -> str:
    """Download ``url`` and return its sanitized text.

    Raises:
        InputError: the URL is missing or not http(s).
        FetchError: non-2xx status (``status`` set), a transport failure, or
            a body larger than MAX_FETCH_BYTES.
        ContentTooShortError: fewer than 10 characters of text remained.
    """
    url = _validate_url(url)
    logger.info("Fetching content from URL: %s", url, extra={"step": "fetch_url"})

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=FETCH_TIMEOUT, follow_redirects=True)
    try:
        async with client.stream("GET", url, headers=FETCH_HEADERS) as resp:
            if not resp.is_success:
                raise FetchError(
                    f"Failed to fetch URL: {resp.status_code} {resp.reason_phrase}",
                    status=resp.status_code,
                )
            body = await _read_capped(resp, url)
            content_type = resp.headers.get("content-type", "")
            encoding = resp.encoding or "utf-8"
    except httpx.TimeoutException as e:
        raise FetchError(f"Timed out fetching URL: {url}") from e
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch URL: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    raw = body.decode(encoding, errors="replace")
    if "text/html" in content_type:
        text = html_to_text(raw)
    else:
        text = raw.strip()

    if len(text) < MIN_CONTENT_LENGTH:
        raise ContentTooShortError(
            f"Fetched content is too short ({len(text)} characters) to analyze"
        )

    logger.info("Fetched %d characters from %s", len(text), url)
    text = sanitize_text(text)
    if len(text) > MAX_CONTENT_CHARS:
        logger.warning("Fetched text from %s cut to %d characters", url, MAX_CONTENT_CHARS)
        text = text[:MAX_CONTENT_CHARS]
    return text


async def _read_capped(resp: httpx.Response, url: str) -> bytes:
    """Read a streamed body, failing once it grows past MAX_FETCH_BYTES."""
    chunks = []
    size = 0
    async for chunk in resp.aiter_bytes():
        size += len(chunk)
        if size > MAX_FETCH_BYTES:
            raise FetchError(
                f"Content at {url} exceeds the {MAX_FETCH_BYTES // (1024 * 1024)} MB download limit"
            )
        chunks.append(chunk)
    return b"".join(chunks)


def read_file_content(filename: str, data: bytes, content_type: str | None = None) -> str:
    """Read an uploaded text or markdown file.

    Raises:
        UnsupportedFileTypeError: not a text-like file, or not valid UTF-8.
        InputError: the file is empty or larger than MAX_UPLOAD_BYTES.
    """
    suffix = PurePath(filename or "").suffix.lower()
    mime = (content_type or "").split(";")[0].strip().lower()
    if suffix not in TEXT_FILE_EXTENSIONS and mime not in TEXT_CONTENT_TYPES:
        raise UnsupportedFileTypeError(
            f"Unsupported file type for {filename!r}: only plain text and markdown files are accepted"
        )
    if len(data) > MAX_UPLOAD_BYTES:
        raise InputError(f"File {filename!r} exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB upload limit")

    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise UnsupportedFileTypeError(f"File {filename!r} is not UTF-8 text") from e

    if not text.strip():
        raise InputError(f"File {filename!r} is empty")
    return sanitize_text(text)


async def acquire_content(source: ContentSource, client: httpx.AsyncClient | None = None) -> str:
    """Produce sanitized document text from any supported source."""
    if source.kind == "url":
        return await fetch_url_content(source.url or "", client=client)
    if source.kind == "file":
        return read_file_content(source.filename or "", source.data or b"", source.content_type)
    if source.kind == "text":
        if not source.text or not source.text.strip():
            raise InputError("Text content is empty")
        return sanitize_text(source.text)
    raise InputError(f"Unknown content source: {source.kind!r}")
