"""Tests for ProviderHealthTracker."""
import pytest

from switchboard.services.provider_health import (
    ProviderHealth,
    ProviderHealthTracker,
    ProviderStatus,
)


@pytest.fixture
def tracker():
    return ProviderHealthTracker()


class TestProviderHealth:
    """Test ProviderHealth."""

    def test_record_failure_tracks_last_error(self):
        """A failure keeps the message, type and timeout count."""
        health = ProviderHealth(provider="anthropic")
        health.record_failure("timeout", "Request timed out", 30000)

        assert health.failure_count == 1
        assert health.timeout_count == 1
        assert health.last_error == "Request timed out"
        assert health.error_type_counts == {"timeout": 1}

    def test_healthy_below_min_samples(self):
        """Too few samples are never judged."""
        health = ProviderHealth(provider="openai")
        for _ in range(ProviderHealth.MIN_SAMPLES - 1):
            health.record_failure("vendor_error", "boom")

        assert health.status == ProviderStatus.HEALTHY

    @pytest.mark.parametrize("successes,failures,expected", [
        (19, 1, ProviderStatus.HEALTHY),
        (8, 2, ProviderStatus.DEGRADED),
        (5, 5, ProviderStatus.DEGRADED),
        (4, 6, ProviderStatus.UNHEALTHY),
    ])
    def test_status_thresholds(self, successes, failures, expected):
        """Above 10% errors is degraded, above 50% unhealthy."""
        health = ProviderHealth(provider="openai")
        for _ in range(successes):
            health.record_success(100)
        for _ in range(failures):
            health.record_failure("vendor_error", "boom", 100)

        assert health.status == expected

    def test_old_samples_leave_the_window(self, monkeypatch):
        """Failures older than the window stop counting."""
        clock = [1_000_000.0]
        monkeypatch.setattr("switchboard.services.provider_health.time.time", lambda: clock[0])
        health = ProviderHealth(provider="openai")
        for _ in range(10):
            health.record_failure("vendor_error", "boom")
        assert health.status == ProviderStatus.UNHEALTHY

        clock[0] += ProviderHealth.WINDOW_SECONDS + 1
        health.record_success(50)

        assert len(health.recent) == 1
        assert health.error_rate == 0.0
        assert health.failure_count == 10

    def test_avg_latency_ignores_failures(self):
        """Average latency covers successful calls only."""
        health = ProviderHealth(provider="openai")
        health.record_success(100)
        health.record_success(300)
        health.record_failure("timeout", "slow", 30000)

        assert health.avg_latency_ms == pytest.approx(200)

    def test_avg_latency_none_with_no_samples(self):
        assert ProviderHealth(provider="openai").avg_latency_ms is None


class TestProviderHealthTracker:
    """Test ProviderHealthTracker."""

    def test_providers_tracked_independently(self, tracker):
        """Different providers do not share counts."""
        tracker.record_success("openai", 100)
        tracker.record_failure("anthropic", "vendor_error", "Test", 100)

        assert tracker.get_health("openai").failure_count == 0
        assert tracker.get_health("anthropic").success_count == 0

    def test_summary_lists_unhealthy(self, tracker):
        """get_summary splits providers by status."""
        for _ in range(10):
            tracker.record_success("openai", 100)
        for _ in range(2):
            tracker.record_success("deepseek", 100)
        for _ in range(8):
            tracker.record_failure("deepseek", "rate_limit", "slow down", 100)

        summary = tracker.get_summary()

        assert summary["all_healthy"] is False
        assert summary["unhealthy_providers"] == ["deepseek"]
        assert summary["providers"]["deepseek"]["error_type_breakdown"] == {"rate_limit": 8}

    def test_reset(self, tracker):
        tracker.record_failure("openai", "timeout", "slow")
        tracker.reset()

        assert tracker.get_summary()["providers"] == {}
        assert tracker.get_summary()["all_healthy"] is True
