"""Tests for service health tracking and degradation modes."""

import time

import pytest

from conftest import health_map

from pr_review_guard.execution.degradation import (
    MAX_MODE_HISTORY,
    DegradationMode,
    ServiceAvailabilityMonitor,
    ServiceHealth,
    ServiceName,
)


def _monitor(**available):
    return ServiceAvailabilityMonitor(health=health_map(**available))


class TestDetermineMode:

    def test_all_available_is_full(self, healthy_monitor):
        assert healthy_monitor.determine_mode() == DegradationMode.FULL

    def test_nothing_checked_is_offline(self):
        assert ServiceAvailabilityMonitor().determine_mode() == DegradationMode.OFFLINE

    def test_one_critical_down_is_partial(self):
        monitor = _monitor(language_model=False, source_host=True, email=True, storage=True)
        assert monitor.determine_mode() == DegradationMode.PARTIAL

    def test_critical_down_with_non_critical_up_is_minimal(self):
        monitor = _monitor(language_model=False, source_host=False, email=False, storage=True)
        assert monitor.determine_mode() == DegradationMode.MINIMAL

    def test_everything_down_is_offline(self):
        monitor = _monitor(language_model=False, source_host=False, email=False, storage=False)
        assert monitor.determine_mode() == DegradationMode.OFFLINE

    @pytest.mark.parametrize("lm", [True, False])
    @pytest.mark.parametrize("host", [True, False])
    @pytest.mark.parametrize("email", [True, False])
    @pytest.mark.parametrize("storage", [True, False])
    def test_full_iff_all_critical_available(self, lm, host, email, storage):
        monitor = _monitor(language_model=lm, source_host=host, email=email, storage=storage)

        mode = monitor.determine_mode()

        assert (mode == DegradationMode.FULL) is (lm and host)
        if not lm and not host and not email and not storage:
            assert mode == DegradationMode.OFFLINE

    def test_disabled_mode_steps_down(self):
        monitor = ServiceAvailabilityMonitor(
            health=health_map(language_model=True, source_host=False),
            modes=["full", "minimal", "offline"],
        )
        assert monitor.determine_mode() == DegradationMode.MINIMAL

    def test_offline_always_allowed(self):
        monitor = ServiceAvailabilityMonitor(modes=["full"])
        assert monitor.determine_mode() == DegradationMode.OFFLINE

    def test_transitions_recorded_and_bounded(self):
        monitor = ServiceAvailabilityMonitor()
        for i in range(MAX_MODE_HISTORY + 10):
            available = i % 2 == 0
            monitor.health = health_map(language_model=available, source_host=available)
            monitor.determine_mode()

        assert len(monitor.mode_history) == MAX_MODE_HISTORY

    def test_no_history_without_change(self, healthy_monitor):
        healthy_monitor.determine_mode()
        healthy_monitor.determine_mode()
        assert healthy_monitor.mode_history == []


class TestModeConfiguration:

    def test_full(self, healthy_monitor):
        config = healthy_monitor.get_mode_configuration(DegradationMode.FULL)
        assert config.ai_review is True
        assert config.timeout_ms == 30000

    def test_partial_follows_availability(self):
        monitor = _monitor(language_model=False, source_host=True, email=True, storage=False)

        config = monitor.get_mode_configuration(DegradationMode.PARTIAL)

        assert config.ai_review is False
        assert config.source_host_issues is True
        assert config.email_notifications is True
        assert config.storage is False
        assert config.timeout_ms == 45000

    def test_minimal_and_offline(self):
        monitor = _monitor(source_host=True)

        minimal = monitor.get_mode_configuration(DegradationMode.MINIMAL)
        offline = monitor.get_mode_configuration(DegradationMode.OFFLINE)

        assert minimal.ai_review is False
        assert minimal.source_host_issues is True
        assert minimal.timeout_ms == 60000
        assert offline.timeout_ms == 0
        assert offline.source_host_issues is False

    def test_should_proceed(self):
        monitor = _monitor(language_model=False, source_host=True, email=True, storage=True)

        assert monitor.should_proceed("ai_review") is False
        assert monitor.should_proceed("email_notification") is True
        assert monitor.should_proceed("source_host_issue") is True
        assert monitor.should_proceed("storage") is True
        assert monitor.should_proceed("something_else") is True
        assert monitor.current_mode == DegradationMode.PARTIAL


class TestCheckService:

    def test_healthy_probe(self):
        monitor = ServiceAvailabilityMonitor()

        assert monitor.check_service(ServiceName.STORAGE, lambda: True) is True

        health = monitor.health[ServiceName.STORAGE]
        assert health.available is True
        assert health.response_time_ms >= 0
        assert health.last_checked_at is not None
        assert health.error is None

    def test_probe_reporting_false(self):
        monitor = ServiceAvailabilityMonitor()

        assert monitor.check_service(ServiceName.EMAIL, lambda: False) is False
        assert monitor.health[ServiceName.EMAIL].error is None

    def test_raising_probe_marks_unavailable(self):
        def probe():
            raise ConnectionError("refused")

        monitor = ServiceAvailabilityMonitor()

        assert monitor.check_service(ServiceName.LANGUAGE_MODEL, probe) is False
        assert monitor.health[ServiceName.LANGUAGE_MODEL].error == "refused"

    def test_slow_probe_times_out(self):
        monitor = ServiceAvailabilityMonitor(probe_timeout_s=0.05)

        assert monitor.check_service(ServiceName.SOURCE_HOST, lambda: time.sleep(1) or True) is False
        assert "timed out" in monitor.health[ServiceName.SOURCE_HOST].error

    def test_check_all(self):
        monitor = ServiceAvailabilityMonitor()

        results = monitor.check_all({
            ServiceName.LANGUAGE_MODEL: lambda: True,
            ServiceName.SOURCE_HOST: lambda: True,
            ServiceName.EMAIL: lambda: False,
        })

        assert results == {
            ServiceName.LANGUAGE_MODEL: True,
            ServiceName.SOURCE_HOST: True,
            ServiceName.EMAIL: False,
        }
        assert monitor.determine_mode() == DegradationMode.FULL
        assert monitor.check_all({}) == {}

    def test_needs_check_respects_interval(self):
        now = [100.0]
        monitor = ServiceAvailabilityMonitor(check_interval_ms=30000, clock=lambda: now[0])

        assert monitor.needs_check(ServiceName.STORAGE) is True
        monitor.check_service(ServiceName.STORAGE, lambda: True)
        assert monitor.needs_check(ServiceName.STORAGE) is False

        now[0] += 29.9
        assert monitor.needs_check(ServiceName.STORAGE) is False
        now[0] += 0.1
        assert monitor.needs_check(ServiceName.STORAGE) is True


class TestResponses:

    def test_offline_response(self, context):
        monitor = ServiceAvailabilityMonitor()
        monitor.determine_mode()

        response = monitor.create_offline_review_response(context)

        assert len(response["issues"]) == 1
        issue = response["issues"][0]
        assert issue["severity"] == "MEDIUM"
        assert issue["file"] == "all"
        assert response["summary"]["offline_mode"] is True
        assert response["summary"]["service_outage"] is True
        assert response["summary"]["medium_severity_count"] == 1
        assert response["metadata"]["mode"] == "offline"
        assert len(response["metadata"]["instructions"]) == 5
        assert response["metadata"]["context"]["repository"] == "acme/shop"

    def test_partial_response_keeps_ai_issues(self, context):
        monitor = _monitor(language_model=True, source_host=False)
        ai_response = {"issues": [{"severity": "HIGH", "category": "Logic", "description": "x"}]}

        response = monitor.create_partial_review_response(context, ai_response)

        assert response["issues"] == ai_response["issues"]
        assert response["summary"]["partial_mode"] is True
        assert response["summary"]["high_severity_count"] == 1
        assert response["metadata"]["fallback_strategies"]["source-host"] == "manual"

    def test_partial_response_notes_missing_language_model(self):
        monitor = _monitor(language_model=False, source_host=True)

        response = monitor.create_partial_review_response()

        assert [i["description"] for i in response["issues"]] == [
            "AI review service unavailable - partial review performed"
        ]


class TestStrategyAndReporting:

    def test_fallback_strategy_lookup(self):
        monitor = ServiceAvailabilityMonitor()

        assert monitor.get_fallback_strategy(ServiceName.EMAIL) == "source-host-issue"
        assert monitor.get_fallback_strategy("storage") == "memory"
        assert monitor.get_fallback_strategy("pager") == "manual"

    def test_degraded_review_strategy_partial(self):
        monitor = _monitor(language_model=False, source_host=True, email=False, storage=True)

        strategy = monitor.create_degraded_review_strategy()

        assert strategy.mode == DegradationMode.PARTIAL
        assert strategy.available_services == ["source-host", "storage"]
        assert strategy.unavailable_services == ["language-model", "email"]
        assert "AI review unavailable - using manual review fallback" in strategy.recommendations
        assert strategy.fallback_strategies == {
            "language-model": "manual",
            "email": "source-host-issue",
        }

    def test_degraded_review_strategy_offline(self):
        strategy = ServiceAvailabilityMonitor().create_degraded_review_strategy()

        assert strategy.mode == DegradationMode.OFFLINE
        assert strategy.recommendations[0] == "Critical services unavailable - offline mode"

    def test_health_report(self):
        monitor = ServiceAvailabilityMonitor(health={
            ServiceName.LANGUAGE_MODEL: ServiceHealth(available=True, response_time_ms=12),
        })

        report = monitor.get_health_report()

        lm = report["services"]["language-model"]
        assert lm["available"] is True
        assert lm["response_time_ms"] == 12
        assert report["services"]["email"]["available"] is False
        assert "Critical service Source Host API is unavailable" in report["recommendations"]
        assert "Service Storage Service is unavailable - using fallback" in report["recommendations"]

    def test_reset(self, healthy_monitor):
        healthy_monitor.health[ServiceName.EMAIL] = ServiceHealth(available=False)
        healthy_monitor.determine_mode()

        healthy_monitor.reset()

        assert healthy_monitor.health == {}
        assert healthy_monitor.current_mode == DegradationMode.FULL
        assert healthy_monitor.needs_check(ServiceName.EMAIL) is True

    def test_shared_health_between_monitors(self):
        shared = {}
        first = ServiceAvailabilityMonitor(health=shared)
        second = ServiceAvailabilityMonitor(health=shared)

        first.check_service(ServiceName.LANGUAGE_MODEL, lambda: True)
        first.check_service(ServiceName.SOURCE_HOST, lambda: True)

        assert second.determine_mode() == DegradationMode.FULL

    def test_configuration(self):
        config = ServiceAvailabilityMonitor(modes=["full", "offline"]).get_configuration()

        assert config["degradation_modes"] == ["full", "offline"]
        assert config["services"]["email"]["critical"] is False
        assert config["check_interval_ms"] == 30000
