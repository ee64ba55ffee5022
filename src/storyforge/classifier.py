from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    TRANSPORT = "transport"
    SITE = "site"
    CONTENT = "content"
    METHOD = "method"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    severity: Severity
    retryable: bool
    suggested_fix: str

    def as_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["category"] = self.category.value
        data["severity"] = self.severity.value
        return data


# URLs are stripped before matching; status codes and TLS terms must stand alone.
_URL_RE = re.compile(r"[a-z][a-z0-9+.-]*://\S+")
_TRANSIENT_RE = re.compile(r"timeout|timed out|econnreset|connection reset|\b(?:502|503|520)\b")
_TLS_RE = re.compile(r"certificate|\bssl\b|\btls\b")
_SITE_RE = re.compile(r"\b(?:401|403|404)\b")
_CONTENT_MARKERS = (
    "no content extracted",
    "no articles",
    "invalid_content",
    "parsing",
    "parse error",
    "parse failure",
)


def classify_error(error: BaseException | str | None) -> ErrorClassification:
    message = _URL_RE.sub(" ", str(error or "").lower())
    if isinstance(error, TimeoutError) and "timeout" not in message:
        message = f"timeout {message}"

    if _TRANSIENT_RE.search(message):
        return ErrorClassification(
            category=ErrorCategory.TRANSPORT,
            severity=Severity.MEDIUM,
            retryable=True,
            suggested_fix="Retry with exponential backoff",
        )
    if _TLS_RE.search(message):
        return ErrorClassification(
            category=ErrorCategory.TRANSPORT,
            severity=Severity.HIGH,
            retryable=False,
            suggested_fix="Try a different method or plain HTTP",
        )
    if _SITE_RE.search(message):
        return ErrorClassification(
            category=ErrorCategory.SITE,
            severity=Severity.HIGH,
            retryable=False,
            suggested_fix="Check the URL or find an alternative source",
        )
    if any(marker in message for marker in _CONTENT_MARKERS):
        return ErrorClassification(
            category=ErrorCategory.CONTENT,
            severity=Severity.MEDIUM,
            retryable=False,
            suggested_fix="Try a different extraction method",
        )
    return ErrorClassification(
        category=ErrorCategory.METHOD,
        severity=Severity.MEDIUM,
        retryable=True,
        suggested_fix="Try an alternative extraction method",
    )
