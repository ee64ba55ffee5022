from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from .methods import METHODS, MethodSpec, get_fallback_methods
from .models import Source
from .utils import log_event

ADAPTIVE_CONFIDENCE = 95.0
ADAPTIVE_PRIORITY = 0
FORCED_PRIORITY = 1

_FEED_MARKERS = ("rss", "feed", "atom")
_CMS_MARKERS = ("wordpress", "medium", "substack", "ghost")


@dataclass(frozen=True)
class UrlAnalysis:
    likely_feed: bool
    modern_cms: bool


@dataclass(frozen=True)
class AdaptiveHint:
    method: str | None
    execution_ms: int | None
    fast_track: bool


@dataclass(frozen=True)
class StrategySelection:
    method: str
    fallback_chain: list[str]
    confidence: float
    priority: int
    reason: str
    candidates: list[dict[str, object]] = field(default_factory=list)

    @property
    def chain(self) -> list[str]:
        return [self.method, *self.fallback_chain]

    def as_dict(self) -> dict[str, object]:
        return {
            "method": self.method,
            "fallback_chain": list(self.fallback_chain),
            "confidence": self.confidence,
            "priority": self.priority,
            "reason": self.reason,
        }


def analyze_url_patterns(address: str) -> UrlAnalysis:
    lowered = (address or "").lower()
    return UrlAnalysis(
        likely_feed=any(marker in lowered for marker in _FEED_MARKERS) or lowered.endswith(".xml"),
        modern_cms=any(marker in lowered for marker in _CMS_MARKERS),
    )


def get_adaptive_hint(source: Source) -> AdaptiveHint:
    method = source.last_successful_method
    if method:
        return AdaptiveHint(
            method=method,
            execution_ms=source.last_method_execution_ms,
            fast_track=True,
        )
    return AdaptiveHint(method=None, execution_ms=None, fast_track=False)


def select_strategy(
    source: Source,
    method_rates: Mapping[str, float],
    forced_method: str | None = None,
    adaptive_hint: AdaptiveHint | None = None,
    logger: logging.Logger | None = None,
) -> StrategySelection:
    if forced_method:
        selection = StrategySelection(
            method=forced_method,
            fallback_chain=get_fallback_methods(forced_method),
            confidence=0.0,
            priority=FORCED_PRIORITY,
            reason="forced",
        )
        _log_selection(logger, source, selection)
        return selection

    hint = adaptive_hint if adaptive_hint is not None else get_adaptive_hint(source)
    if hint.fast_track and hint.method:
        selection = StrategySelection(
            method=hint.method,
            fallback_chain=get_fallback_methods(hint.method),
            confidence=ADAPTIVE_CONFIDENCE,
            priority=ADAPTIVE_PRIORITY,
            reason="adaptive_memory",
        )
        _log_selection(logger, source, selection)
        return selection

    analysis = analyze_url_patterns(source.address)
    candidates: list[tuple[MethodSpec, float]] = []
    for entry in METHODS.values():
        if not entry.selectable or not _is_eligible(entry, source, analysis):
            continue
        rate = method_rates.get(entry.name)
        candidates.append((entry, float(rate) if rate is not None else entry.prior_success_rate))

    if not candidates:
        # unreachable while an always-eligible method is registered
        entry = max(METHODS.values(), key=lambda item: item.priority)
        candidates.append((entry, entry.prior_success_rate))

    candidates.sort(key=lambda item: (-item[1], item[0].priority))
    best, rate = candidates[0]
    selection = StrategySelection(
        method=best.name,
        fallback_chain=get_fallback_methods(best.name),
        confidence=rate,
        priority=best.priority,
        reason="ranked",
        candidates=[
            {"method": entry.name, "success_rate": value, "priority": entry.priority}
            for entry, value in candidates
        ],
    )
    _log_selection(logger, source, selection)
    return selection


def _is_eligible(entry: MethodSpec, source: Source, analysis: UrlAnalysis) -> bool:
    if entry.eligibility == "always":
        return True
    if entry.eligibility == "feed":
        return analysis.likely_feed or source.source_type == "rss"
    if entry.eligibility == "topic":
        return bool(source.topic_id)
    if entry.eligibility == "cms":
        return analysis.modern_cms or source.source_type == "website"
    return False


def _log_selection(
    logger: logging.Logger | None, source: Source, selection: StrategySelection
) -> None:
    if logger is None:
        return
    log_event(
        logger,
        logging.INFO,
        "strategy_selected",
        source_id=source.id,
        method=selection.method,
        reason=selection.reason,
        confidence=selection.confidence,
        fallbacks=",".join(selection.fallback_chain),
    )
