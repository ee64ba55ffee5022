from __future__ import annotations

from dataclasses import dataclass

RSS = "rss"
TOPIC = "topic"
HTML = "html"
UNIVERSAL = "universal"
FALLBACK_HTML = "fallback_html"
AI_RECOVERY = "ai_recovery"


@dataclass(frozen=True)
class MethodSpec:
    name: str
    priority: int
    prior_success_rate: float
    timeout_seconds: int
    # eligibility rule evaluated by the strategy selector
    eligibility: str
    selectable: bool = True


METHODS: dict[str, MethodSpec] = {
    RSS: MethodSpec(RSS, priority=1, prior_success_rate=90.0, timeout_seconds=30, eligibility="feed"),
    TOPIC: MethodSpec(TOPIC, priority=2, prior_success_rate=75.0, timeout_seconds=30, eligibility="topic"),
    HTML: MethodSpec(HTML, priority=3, prior_success_rate=65.0, timeout_seconds=30, eligibility="cms"),
    UNIVERSAL: MethodSpec(
        UNIVERSAL, priority=4, prior_success_rate=55.0, timeout_seconds=30, eligibility="always"
    ),
    FALLBACK_HTML: MethodSpec(
        FALLBACK_HTML, priority=5, prior_success_rate=45.0, timeout_seconds=30, eligibility="always"
    ),
    AI_RECOVERY: MethodSpec(
        AI_RECOVERY,
        priority=6,
        prior_success_rate=35.0,
        timeout_seconds=60,
        eligibility="never",
        selectable=False,
    ),
}

FALLBACK_CHAINS: dict[str, list[str]] = {
    RSS: [TOPIC, HTML, UNIVERSAL, FALLBACK_HTML],
    TOPIC: [HTML, UNIVERSAL, FALLBACK_HTML],
    HTML: [TOPIC, UNIVERSAL, FALLBACK_HTML, AI_RECOVERY],
    UNIVERSAL: [TOPIC, FALLBACK_HTML, HTML, AI_RECOVERY],
    FALLBACK_HTML: [TOPIC, UNIVERSAL, HTML, AI_RECOVERY],
    AI_RECOVERY: [TOPIC, UNIVERSAL, FALLBACK_HTML],
}

DEFAULT_FALLBACK_CHAIN = [TOPIC, UNIVERSAL, FALLBACK_HTML]


def get_method(name: str) -> MethodSpec | None:
    return METHODS.get(name)


def get_fallback_methods(primary: str) -> list[str]:
    chain = FALLBACK_CHAINS.get(primary, DEFAULT_FALLBACK_CHAIN)
    return [method for method in chain if method != primary]


def method_chain(primary: str) -> list[str]:
    return [primary, *get_fallback_methods(primary)]


def timeout_for(method: str, default: int = 30) -> int:
    entry = METHODS.get(method)
    return entry.timeout_seconds if entry else default
