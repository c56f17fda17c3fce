"""
Provider health tracking.

Records the outcome of every dispatch per vendor so ``/health`` can report
which providers are failing. Kept in memory: counts start over with the
process.
"""
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ProviderStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # >10% error rate in the window
    UNHEALTHY = "unhealthy"  # >50% error rate in the window


@dataclass
class ProviderHealth:
    provider: str

    success_count: int = 0
    failure_count: int = 0
    timeout_count: int = 0

    # (timestamp, is_success, latency_ms) within the window
    recent: deque = field(default_factory=deque)
    error_type_counts: dict = field(default_factory=dict)

    last_error: Optional[str] = None
    last_error_type: Optional[str] = None
    last_error_time: Optional[float] = None

    WINDOW_SECONDS: int = 900
    MIN_SAMPLES: int = 5

    def record_success(self, latency_ms: int):
        now = time.time()
        self.success_count += 1
        self.recent.append((now, True, latency_ms))
        self._prune(now)

    def record_failure(self, error_type: str, error_message: str, latency_ms: int = 0):
        now = time.time()
        self.failure_count += 1
        self.recent.append((now, False, latency_ms))
        self.last_error = error_message
        self.last_error_type = error_type
        self.last_error_time = now
        self.error_type_counts[error_type] = self.error_type_counts.get(error_type, 0) + 1
        if error_type == "timeout":
            self.timeout_count += 1
        self._prune(now)

        logger.warning(
            f"Provider {self.provider} request failed",
            extra={
                "provider": self.provider,
                "error_type": error_type,
                "error_message": error_message,
                "failure_count": self.failure_count,
            },
        )

    def _prune(self, now: float):
        cutoff = now - self.WINDOW_SECONDS
        while self.recent and self.recent[0][0] < cutoff:
            self.recent.popleft()

    @property
    def error_rate(self) -> float:
        if not self.recent:
            return 0.0
        failures = sum(1 for _, ok, _ in self.recent if not ok)
        return failures / len(self.recent)

    @property
    def status(self) -> ProviderStatus:
        # Too few samples to judge
        if len(self.recent) < self.MIN_SAMPLES:
            return ProviderStatus.HEALTHY
        if self.error_rate > 0.5:
            return ProviderStatus.UNHEALTHY
        if self.error_rate > 0.1:
            return ProviderStatus.DEGRADED
        return ProviderStatus.HEALTHY

    @property
    def avg_latency_ms(self) -> Optional[float]:
        samples = [latency for _, ok, latency in self.recent if ok and latency]
        if not samples:
            return None
        return round(sum(samples) / len(samples), 1)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "timeout_count": self.timeout_count,
            "error_rate": round(self.error_rate, 3),
            "avg_latency_ms": self.avg_latency_ms,
            "last_error": self.last_error,
            "last_error_type": self.last_error_type,
            "error_type_breakdown": dict(self.error_type_counts),
        }


class ProviderHealthTracker:
    """Process-wide health registry, one ``ProviderHealth`` per vendor."""

    def __init__(self):
        self._providers: dict[str, ProviderHealth] = {}

    def get_health(self, provider: str) -> ProviderHealth:
        if provider not in self._providers:
            self._providers[provider] = ProviderHealth(provider=provider)
        return self._providers[provider]

    def record_success(self, provider: str, latency_ms: int):
        self.get_health(provider).record_success(latency_ms)

    def record_failure(self, provider: str, error_type: str, error_message: str, latency_ms: int = 0):
        self.get_health(provider).record_failure(error_type, error_message, latency_ms)

    def get_status(self, provider: str) -> ProviderStatus:
        return self.get_health(provider).status

    def reset(self):
        self._providers.clear()

    def get_summary(self) -> dict:
        all_health = {p: h.to_dict() for p, h in self._providers.items()}
        unhealthy = [p for p, h in all_health.items() if h["status"] == ProviderStatus.UNHEALTHY.value]
        degraded = [p for p, h in all_health.items() if h["status"] == ProviderStatus.DEGRADED.value]
        return {
            "providers": all_health,
            "unhealthy_providers": unhealthy,
            "degraded_providers": degraded,
            "all_healthy": not unhealthy and not degraded,
        }


# Global instance
provider_health = ProviderHealthTracker()
