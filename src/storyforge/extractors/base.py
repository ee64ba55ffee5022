from __future__ import annotations

import re
import socket
from typing import Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..models import ExtractedItem, ExtractionRequest

Extractor = Callable[[ExtractionRequest], list[ExtractedItem]]

SNIPPET_WORD_LIMIT = 150


class ExtractionError(RuntimeError):
    pass


def fetch_url(url: str, *, timeout_seconds: int, user_agent: str) -> bytes:
    """GET ``url`` and return the body; every failure becomes ExtractionError.

    Messages keep the HTTP status or transport reason so the error classifier
    can tell a 404 from a reset connection.
    """
    request = Request(url, headers={"User-Agent": user_agent})
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            return response.read()
    except HTTPError as exc:
        raise ExtractionError(f"HTTP {exc.code} {exc.reason} for {url}") from exc
    except URLError as exc:
        raise ExtractionError(f"connection error for {url}: {exc.reason}") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise ExtractionError(f"timeout after {timeout_seconds}s for {url}") from exc


def decode_body(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def build_item(
    title: str,
    url: str,
    body: str | None = None,
    published_at: str | None = None,
) -> ExtractedItem:
    text = normalize_text(body) if body else None
    words = len(text.split()) if text else 0
    return ExtractedItem(
        title=normalize_text(title),
        url=url.strip(),
        body=text,
        published_at=published_at,
        word_count=words,
        is_snippet=words < SNIPPET_WORD_LIMIT,
    )


def dedupe_items(items: list[ExtractedItem], limit: int) -> list[ExtractedItem]:
    seen: set[str] = set()
    unique: list[ExtractedItem] = []
    for item in items:
        if not item.url or item.url in seen:
            continue
        seen.add(item.url)
        unique.append(item)
        if len(unique) >= limit:
            break
    return unique
