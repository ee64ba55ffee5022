from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .state import JobStatus, StoryStatus


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str
    auto_approve_threshold: float | None
    auto_simplify_enabled: bool
    default_slide_type: str


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    address: str
    source_type: str | None
    tenant_id: str | None
    topic_id: str | None
    region: str | None
    active: bool
    frequency_minutes: int
    scraping_method: str | None
    success_rate: float | None
    last_successful_method: str | None
    last_method_execution_ms: int | None
    quality_metrics: dict[str, Any]
    articles_scraped: int
    last_acquired_at: str | None


@dataclass(frozen=True)
class ExtractedItem:
    title: str
    url: str
    body: str | None = None
    published_at: str | None = None
    word_count: int = 0
    is_snippet: bool = False
    quality_score: float | None = None


@dataclass(frozen=True)
class ExtractionRequest:
    address: str
    source_id: str
    region: str | None = None
    topic_id: str | None = None


@dataclass(frozen=True)
class ContentItem:
    id: int
    source_id: str
    tenant_id: str | None
    stable_id: str
    url: str
    title: str
    word_count: int
    quality_score: float | None
    processing_status: str


@dataclass(frozen=True)
class ProcessingJob:
    id: str
    content_item_id: int
    tenant_id: str | None
    kind: str
    status: JobStatus
    attempts: int
    max_attempts: int
    scheduled_at: str | None
    started_at: str | None
    completed_at: str | None
    params: dict[str, Any]
    result: dict[str, Any] | None
    error_message: str | None
    created_at: str


@dataclass(frozen=True)
class Story:
    id: str
    content_item_id: int
    tenant_id: str | None
    job_id: str | None
    slide_count: int
    quality_score: float | None
    status: StoryStatus


@dataclass(frozen=True)
class AcquisitionAttempt:
    method: str
    attempt: int
    started_at: str
    success: bool
    items: int = 0
    classification: dict[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True)
class AcquisitionResult:
    source_id: str
    method_used: str
    attempts_made: int
    execution_ms: int
    items: list[ExtractedItem]
    attempts: list[AcquisitionAttempt] = field(default_factory=list)
