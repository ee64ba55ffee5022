from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import jsonschema

from .httpclient import post_json
from .params import SimplifyParams, SlidesParams

GENERATOR_TIMEOUT_CAP_SECONDS = 120

GENERATOR_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["success"],
    "properties": {
        "success": {"type": "boolean"},
        "story_id": {"type": "string", "minLength": 1},
        "slide_count": {"type": "integer", "minimum": 0},
        "quality_score": {"type": ["number", "null"], "minimum": 0, "maximum": 100},
        "error": {"type": ["string", "null"]},
    },
    "if": {"properties": {"success": {"const": True}}},
    "then": {"required": ["story_id", "slide_count"]},
}


class GenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class GenerationRequest:
    job_id: str
    content_item_id: int
    tenant_id: str | None
    url: str
    title: str
    params: SlidesParams | SimplifyParams


@dataclass(frozen=True)
class GenerationResult:
    story_id: str
    slide_count: int
    quality_score: float | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "story_id": self.story_id,
            "slide_count": self.slide_count,
            "quality_score": self.quality_score,
        }


Generator = Callable[[GenerationRequest], GenerationResult]


def parse_generator_response(payload: Any) -> GenerationResult:
    """Validate a generator reply; a non-success reply raises like a transport error."""
    try:
        jsonschema.validate(payload, GENERATOR_RESPONSE_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise GenerationError(f"invalid generator response: {exc.message}") from exc
    if not payload["success"]:
        raise GenerationError(payload.get("error") or "generator reported failure")
    score = payload.get("quality_score")
    return GenerationResult(
        story_id=payload["story_id"],
        slide_count=int(payload["slide_count"]),
        quality_score=float(score) if score is not None else None,
    )


class HttpGenerator:
    def __init__(self, url: str, api_key: str, timeout_seconds: float = GENERATOR_TIMEOUT_CAP_SECONDS) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout_seconds = min(timeout_seconds, GENERATOR_TIMEOUT_CAP_SECONDS)

    def __call__(self, request: GenerationRequest) -> GenerationResult:
        payload = {
            "job_id": request.job_id,
            "content_item_id": request.content_item_id,
            "tenant_id": request.tenant_id,
            "article": {"url": request.url, "title": request.title},
            "params": request.params.model_dump(),
        }
        data = post_json(
            self.url,
            payload,
            api_key=self.api_key,
            timeout_seconds=self.timeout_seconds,
            error_cls=GenerationError,
        )
        return parse_generator_response(data)
