from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urljoin

import feedparser
from bs4 import BeautifulSoup

from ..methods import RSS, timeout_for
from ..models import ExtractedItem, ExtractionRequest
from ..utils import log_event
from .base import ExtractionError, build_item, decode_body, dedupe_items, fetch_url

_FEED_TYPES = ("application/rss+xml", "application/atom+xml", "application/xml", "text/xml")


class FeedExtractor:
    """RSS/Atom extraction, following feed autodiscovery when given a page."""

    def __init__(
        self,
        user_agent: str,
        max_items: int,
        logger: logging.Logger | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.max_items = max_items
        self.logger = logger or logging.getLogger("storyforge.extractors.feed")
        self.timeout_seconds = timeout_seconds or timeout_for(RSS)

    def __call__(self, request: ExtractionRequest) -> list[ExtractedItem]:
        content = fetch_url(
            request.address, timeout_seconds=self.timeout_seconds, user_agent=self.user_agent
        )
        items = self.parse(content)
        if not items:
            feed_url = discover_feed_url(decode_body(content), request.address)
            if feed_url and feed_url != request.address:
                log_event(
                    self.logger,
                    logging.INFO,
                    "feed_discovered",
                    source_id=request.source_id,
                    feed_url=feed_url,
                )
                content = fetch_url(
                    feed_url, timeout_seconds=self.timeout_seconds, user_agent=self.user_agent
                )
                items = self.parse(content)
        if not items:
            raise ExtractionError(f"no articles found in feed {request.address}")
        return items

    def parse(self, content: bytes) -> list[ExtractedItem]:
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            return []
        items: list[ExtractedItem] = []
        for entry in parsed.entries or []:
            link = entry.get("link")
            title = entry.get("title")
            if not link or not title:
                continue
            items.append(
                build_item(
                    title=title,
                    url=link,
                    body=_entry_body(entry),
                    published_at=_entry_published(entry),
                )
            )
        return dedupe_items(items, self.max_items)


def discover_feed_url(html: str, base_url: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = [rel]
        if "alternate" not in [value.lower() for value in rel]:
            continue
        if (link.get("type") or "").lower() in _FEED_TYPES:
            return urljoin(base_url, link["href"])
    return None


def _entry_body(entry: Any) -> str | None:
    contents = entry.get("content") or []
    for content in contents:
        value = content.get("value") if isinstance(content, dict) else None
        if value:
            return BeautifulSoup(value, "html.parser").get_text(" ", strip=True)
    summary = entry.get("summary") or entry.get("description")
    if summary:
        return BeautifulSoup(summary, "html.parser").get_text(" ", strip=True)
    return None


def _entry_published(entry: Any) -> str | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()
