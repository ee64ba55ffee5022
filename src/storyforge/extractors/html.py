from __future__ import annotations

import json
import logging
from typing import Any, Iterable
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from ..methods import FALLBACK_HTML, HTML, UNIVERSAL, timeout_for
from ..models import ExtractedItem, ExtractionRequest
from ..utils import log_event
from .base import ExtractionError, build_item, decode_body, dedupe_items, fetch_url
from .feed import FeedExtractor

_ARTICLE_TYPES = {"article", "newsarticle", "blogposting", "reportagenewsarticle"}
MIN_HEADLINE_CHARS = 20


class HtmlExtractor:
    """Structured page extraction: JSON-LD articles first, then ``<article>`` blocks."""

    method = HTML

    def __init__(self, user_agent: str, max_items: int, timeout_seconds: int | None = None) -> None:
        self.user_agent = user_agent
        self.max_items = max_items
        self.timeout_seconds = timeout_seconds or timeout_for(self.method)

    def __call__(self, request: ExtractionRequest) -> list[ExtractedItem]:
        html = decode_body(
            fetch_url(request.address, timeout_seconds=self.timeout_seconds, user_agent=self.user_agent)
        )
        items = self.parse(html, request.address)
        if not items:
            raise ExtractionError(f"no content extracted from {request.address}")
        return items

    def parse(self, html: str, base_url: str) -> list[ExtractedItem]:
        soup = BeautifulSoup(html, "html.parser")
        items = list(_json_ld_items(soup, base_url))
        for article in soup.find_all("article"):
            heading = article.find(["h1", "h2", "h3"])
            if heading is None:
                continue
            link = heading.find("a", href=True) or article.find("a", href=True)
            if link is None:
                continue
            title = heading.get_text(" ", strip=True)
            if not title:
                continue
            body = article.get_text(" ", strip=True)
            time_tag = article.find("time")
            published = time_tag.get("datetime") if time_tag is not None else None
            items.append(
                build_item(
                    title=title,
                    url=urljoin(base_url, link["href"]),
                    body=body,
                    published_at=published,
                )
            )
        return dedupe_items(items, self.max_items)


class FallbackHtmlExtractor:
    """Last-resort scrape of same-site headline links."""

    method = FALLBACK_HTML

    def __init__(self, user_agent: str, max_items: int, timeout_seconds: int | None = None) -> None:
        self.user_agent = user_agent
        self.max_items = max_items
        self.timeout_seconds = timeout_seconds or timeout_for(self.method)

    def __call__(self, request: ExtractionRequest) -> list[ExtractedItem]:
        html = decode_body(
            fetch_url(request.address, timeout_seconds=self.timeout_seconds, user_agent=self.user_agent)
        )
        items = self.parse(html, request.address)
        if not items:
            raise ExtractionError(f"no articles found on {request.address}")
        return items

    def parse(self, html: str, base_url: str) -> list[ExtractedItem]:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style", "nav", "footer", "aside"]):
            tag.decompose()
        host = urlsplit(base_url).netloc.lower()
        items: list[ExtractedItem] = []
        for heading in soup.find_all(["h1", "h2", "h3"]):
            link = heading.find("a", href=True) or heading.find_parent("a", href=True)
            if link is None:
                continue
            title = heading.get_text(" ", strip=True)
            if len(title) < MIN_HEADLINE_CHARS:
                continue
            url = urljoin(base_url, link["href"])
            if urlsplit(url).netloc.lower() != host:
                continue
            items.append(build_item(title=title, url=url))
        return dedupe_items(items, self.max_items)


class UniversalExtractor:
    """Feed first, structured HTML second, against the same address."""

    method = UNIVERSAL

    def __init__(
        self,
        user_agent: str,
        max_items: int,
        logger: logging.Logger | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        timeout = timeout_seconds or timeout_for(self.method)
        self.logger = logger or logging.getLogger("storyforge.extractors.html")
        self.feed = FeedExtractor(user_agent, max_items, logger=self.logger, timeout_seconds=timeout)
        self.html = HtmlExtractor(user_agent, max_items, timeout_seconds=timeout)

    def __call__(self, request: ExtractionRequest) -> list[ExtractedItem]:
        try:
            return self.feed(request)
        except ExtractionError as exc:
            log_event(
                self.logger,
                logging.DEBUG,
                "universal_feed_miss",
                source_id=request.source_id,
                error=str(exc),
            )
        return self.html(request)


def _json_ld_items(soup: BeautifulSoup, base_url: str) -> Iterable[ExtractedItem]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue
        for node in _walk_json_ld(data):
            node_type = node.get("@type")
            types = node_type if isinstance(node_type, list) else [node_type]
            if not any(str(value).lower() in _ARTICLE_TYPES for value in types if value):
                continue
            title = node.get("headline") or node.get("name")
            url = node.get("url") or _main_entity_url(node)
            if not title or not url:
                continue
            yield build_item(
                title=str(title),
                url=urljoin(base_url, str(url)),
                body=node.get("articleBody") or node.get("description"),
                published_at=node.get("datePublished"),
            )


def _walk_json_ld(data: Any) -> Iterable[dict[str, Any]]:
    if isinstance(data, list):
        for entry in data:
            yield from _walk_json_ld(entry)
    elif isinstance(data, dict):
        yield data
        graph = data.get("@graph")
        if graph is not None:
            yield from _walk_json_ld(graph)
        elements = data.get("itemListElement")
        if elements is not None:
            yield from _walk_json_ld(elements)


def _main_entity_url(node: dict[str, Any]) -> str | None:
    entity = node.get("mainEntityOfPage")
    if isinstance(entity, dict):
        return entity.get("@id") or entity.get("url")
    if isinstance(entity, str):
        return entity
    return None
