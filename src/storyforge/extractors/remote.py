from __future__ import annotations

from pydantic import ValidationError

from ..httpclient import post_json
from ..methods import timeout_for
from ..models import ExtractedItem, ExtractionRequest
from ..params import ExtractorResponse
from .base import ExtractionError


class RemoteExtractor:
    """Client for the extractor service; one instance per remote method."""

    def __init__(self, base_url: str, api_key: str, method: str, max_items: int) -> None:
        self.url = f"{base_url.rstrip('/')}/{method}"
        self.api_key = api_key
        self.method = method
        self.max_items = max_items
        self.timeout_seconds = timeout_for(method)

    def __call__(self, request: ExtractionRequest) -> list[ExtractedItem]:
        payload = {
            "address": request.address,
            "source_id": request.source_id,
            "region": request.region,
            "topic_id": request.topic_id,
            "max_items": self.max_items,
        }
        data = post_json(
            self.url,
            payload,
            api_key=self.api_key,
            timeout_seconds=self.timeout_seconds,
            error_cls=ExtractionError,
        )
        try:
            response = ExtractorResponse.model_validate(data)
        except ValidationError as exc:
            raise ExtractionError(f"invalid_content: {exc.error_count()} schema errors") from exc
        if not response.success:
            raise ExtractionError(response.error or "no content extracted")
        items = [article.to_item() for article in response.articles][: self.max_items]
        if not items:
            raise ExtractionError("no articles returned by extractor service")
        return items
