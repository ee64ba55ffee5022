from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``base * factor ** attempt``, capped at ``cap``.

    Both the acquisition executor (seconds, capped) and the job queue
    (minutes, uncapped) schedule their retries through this object.
    """

    base_seconds: float
    cap_seconds: float | None = None
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        value = self.base_seconds * (self.factor ** attempt)
        if self.cap_seconds is not None:
            value = min(value, self.cap_seconds)
        return value

    def schedule(self, attempts: int) -> list[float]:
        return [self.delay(attempt) for attempt in range(attempts)]
