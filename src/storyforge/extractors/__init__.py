from __future__ import annotations

import logging

from ..config import Config, Settings
from ..methods import AI_RECOVERY, FALLBACK_HTML, HTML, RSS, TOPIC, UNIVERSAL
from .base import ExtractionError, Extractor, fetch_url
from .feed import FeedExtractor
from .html import FallbackHtmlExtractor, HtmlExtractor, UniversalExtractor
from .remote import RemoteExtractor

__all__ = [
    "ExtractionError",
    "Extractor",
    "build_default_extractors",
    "fetch_url",
]


def build_default_extractors(
    settings: Settings, config: Config, logger: logging.Logger | None = None
) -> dict[str, Extractor]:
    user_agent = config.http.user_agent
    max_items = config.http.max_items
    extractors: dict[str, Extractor] = {
        RSS: FeedExtractor(user_agent, max_items, logger=logger),
        HTML: HtmlExtractor(user_agent, max_items),
        UNIVERSAL: UniversalExtractor(user_agent, max_items, logger=logger),
        FALLBACK_HTML: FallbackHtmlExtractor(user_agent, max_items),
    }
    if settings.extractor_url and settings.extractor_api_key:
        for method in (TOPIC, AI_RECOVERY):
            extractors[method] = RemoteExtractor(
                settings.extractor_url, settings.extractor_api_key, method, max_items
            )
    return extractors
