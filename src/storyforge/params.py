"""Typed job parameters and extractor payloads.

Jobs are stored with a JSON ``params`` blob; it is parsed into one of the
models below at the queue boundary and never handled as a raw dict past
that point.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .models import ExtractedItem

SLIDES = "slides"
SIMPLIFY = "simplify"


class SlidesParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["slides"] = SLIDES
    slide_type: Literal["short", "tabloid", "indepth", "extensive"] = "tabloid"
    tone: Literal["formal", "conversational", "engaging"] = "conversational"
    ai_provider: str = "default"
    writing_style: Literal["journalistic", "educational", "listicle", "story_driven"] = "journalistic"


class SimplifyParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["simplify"] = SIMPLIFY
    reading_level: Literal["general", "young_adult", "child"] = "general"
    ai_provider: str = "default"


JobParams = Annotated[Union[SlidesParams, SimplifyParams], Field(discriminator="kind")]

_JOB_PARAMS_ADAPTER: TypeAdapter[JobParams] = TypeAdapter(JobParams)


class InvalidJobParams(ValueError):
    pass


def parse_job_params(kind: str, raw: dict[str, object] | None) -> SlidesParams | SimplifyParams:
    payload = dict(raw or {})
    payload.setdefault("kind", kind)
    if payload.get("kind") != kind:
        raise InvalidJobParams(f"params kind {payload.get('kind')!r} does not match job kind {kind!r}")
    try:
        return _JOB_PARAMS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise InvalidJobParams(str(exc)) from exc


def default_params(kind: str, slide_type: str | None = None) -> dict[str, object]:
    if kind == SIMPLIFY:
        return SimplifyParams().model_dump()
    params = SlidesParams()
    if slide_type:
        params = SlidesParams(slide_type=slide_type)
    return params.model_dump()


class ExtractorArticle(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    url: str = Field(min_length=1)
    body: str | None = Field(default=None, validation_alias=AliasChoices("body", "content"))
    published_at: str | None = None
    word_count: int | None = Field(default=None, ge=0)
    is_snippet: bool = False
    quality_score: float | None = Field(default=None, ge=0, le=100)

    def to_item(self) -> ExtractedItem:
        words = self.word_count
        if words is None:
            words = len(self.body.split()) if self.body else 0
        return ExtractedItem(
            title=self.title.strip(),
            url=self.url.strip(),
            body=self.body,
            published_at=self.published_at,
            word_count=words,
            is_snippet=self.is_snippet,
            quality_score=self.quality_score,
        )


class ExtractorResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    articles: list[ExtractorArticle] = Field(default_factory=list)
    error: str | None = None
