"""Service health tracking and degradation modes.

The monitor records the latest health of each dependent service and derives
the operating mode from the critical ones:
  full → partial → minimal → offline

In minimal and offline modes the pipeline skips review entirely and returns
a canned manual-review response; in partial mode whatever review output
exists is kept and flagged.
"""

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from loguru import logger

from pr_review_guard.config import DEGRADATION_MODES
from pr_review_guard.execution.circuit_breaker import run_with_breaker
from pr_review_guard.models import ReviewContext, build_summary

MAX_MODE_HISTORY = 50

OFFLINE_INSTRUCTIONS = [
    "Perform manual code review for security issues",
    "Check for coding standards compliance",
    "Verify performance implications",
    "Review error handling and edge cases",
    "Ensure proper testing coverage",
]


class ServiceName(Enum):
    """Services the review pipeline depends on."""

    LANGUAGE_MODEL = "language-model"
    SOURCE_HOST = "source-host"
    EMAIL = "email"
    STORAGE = "storage"


@dataclass(frozen=True)
class ServiceSpec:
    display_name: str
    critical: bool
    fallback: str


SERVICES: dict[ServiceName, ServiceSpec] = {
    ServiceName.LANGUAGE_MODEL: ServiceSpec("Language Model API", True, "manual"),
    ServiceName.SOURCE_HOST: ServiceSpec("Source Host API", True, "manual"),
    ServiceName.EMAIL: ServiceSpec("Email Service", False, "source-host-issue"),
    ServiceName.STORAGE: ServiceSpec("Storage Service", False, "memory"),
}

CRITICAL_SERVICES = [name for name, spec in SERVICES.items() if spec.critical]


class DegradationMode(Enum):
    """Operating tiers, best to worst."""

    FULL = "full"
    PARTIAL = "partial"
    MINIMAL = "minimal"
    OFFLINE = "offline"

    @property
    def rank(self) -> int:
        return _MODE_RANKS[self]


_MODE_RANKS = {
    DegradationMode.FULL: 3,
    DegradationMode.PARTIAL: 2,
    DegradationMode.MINIMAL: 1,
    DegradationMode.OFFLINE: 0,
}


@dataclass
class ServiceHealth:
    """Latest health check result for one service."""

    available: bool = False
    response_time_ms: int | None = None
    last_checked_at: datetime | None = None
    error: str | None = None


@dataclass(frozen=True)
class ModeConfiguration:
    """Which operations a mode permits, plus its call timeout."""

    ai_review: bool
    email_notifications: bool
    source_host_issues: bool
    storage: bool
    timeout_ms: int


@dataclass
class DegradedStrategy:
    """Snapshot of service availability with per-service fallbacks."""

    mode: DegradationMode
    available_services: list[str] = field(default_factory=list)
    unavailable_services: list[str] = field(default_factory=list)
    fallback_strategies: dict[str, str] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)


class ServiceAvailabilityMonitor:
    """Owns service health state and the current degradation mode.

    Health is process-lifetime state; pass a shared ``health`` mapping to let
    several monitors see the same results, and call ``reset`` to forget it.
    Services never checked count as unavailable.
    """

    def __init__(
        self,
        health: dict[ServiceName, ServiceHealth] | None = None,
        check_interval_ms: int = 30000,
        probe_timeout_s: float | None = 10.0,
        modes: list[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.health = health if health is not None else {}
        self.check_interval_ms = check_interval_ms
        self.probe_timeout_s = probe_timeout_s
        self.modes = [DegradationMode(m) for m in (modes or DEGRADATION_MODES)]
        self.clock = clock
        self.current_mode = DegradationMode.FULL
        self.mode_history: list[tuple[datetime, DegradationMode]] = []
        self._last_check: dict[ServiceName, float] = {}

    def check_service(self, name: ServiceName, probe: Callable[[], bool]) -> bool:
        """Run one health probe under the timeout budget and record the result."""
        log = logger.bind(service=name.value)
        result = run_with_breaker(probe, self.probe_timeout_s)

        if result.completed:
            available = bool(result.value)
            self.health[name] = ServiceHealth(
                available=available,
                response_time_ms=result.elapsed_ms,
                last_checked_at=datetime.now(UTC),
            )
            if available:
                log.debug(f"{name.value} healthy ({result.elapsed_ms}ms)")
            else:
                log.warning(f"{name.value} reported unavailable")
        else:
            available = False
            self.health[name] = ServiceHealth(
                available=False,
                last_checked_at=datetime.now(UTC),
                error=str(result.error),
            )
            log.warning(f"{name.value} health check failed: {result.error}")

        self._last_check[name] = self.clock()
        return available

    def check_all(self, probes: dict[ServiceName, Callable[[], bool]]) -> dict[ServiceName, bool]:
        """Probe services concurrently. Each probe writes only its own entry."""
        if not probes:
            return {}

        with ThreadPoolExecutor(max_workers=len(probes)) as executor:
            futures = {
                name: executor.submit(self.check_service, name, probe)
                for name, probe in probes.items()
            }
            return {name: future.result() for name, future in futures.items()}

    def needs_check(self, name: ServiceName) -> bool:
        """True when the service was never checked or its interval has elapsed."""
        last = self._last_check.get(name)
        if last is None:
            return True
        return (self.clock() - last) * 1000 >= self.check_interval_ms

    def is_available(self, name: ServiceName) -> bool:
        status = self.health.get(name)
        return status.available if status else False

    def _allowed(self, mode: DegradationMode) -> DegradationMode:
        """Step down to the next enabled mode. Offline is always allowed."""
        for candidate in sorted(DegradationMode, key=lambda m: m.rank, reverse=True):
            if candidate.rank > mode.rank:
                continue
            if candidate in self.modes or candidate == DegradationMode.OFFLINE:
                return candidate
        return DegradationMode.OFFLINE

    def determine_mode(self) -> DegradationMode:
        """Recompute the mode from the latest health of the critical services."""
        available_critical = sum(1 for name in CRITICAL_SERVICES if self.is_available(name))
        any_non_critical = any(
            self.is_available(name) for name, spec in SERVICES.items() if not spec.critical
        )

        if available_critical == len(CRITICAL_SERVICES):
            mode = DegradationMode.FULL
        elif available_critical > 0 and available_critical >= len(CRITICAL_SERVICES) * 0.5:
            mode = DegradationMode.PARTIAL
        elif any_non_critical:
            mode = DegradationMode.MINIMAL
        else:
            mode = DegradationMode.OFFLINE

        mode = self._allowed(mode)

        if mode != self.current_mode:
            if mode.rank < self.current_mode.rank:
                logger.warning(f"Degradation mode {self.current_mode.value} -> {mode.value}")
            else:
                logger.info(f"Degradation mode {self.current_mode.value} -> {mode.value}")
            self.mode_history.append((datetime.now(UTC), mode))
            del self.mode_history[:-MAX_MODE_HISTORY]

        self.current_mode = mode
        return mode

    def get_mode_configuration(self, mode: DegradationMode | None = None) -> ModeConfiguration:
        mode = mode or self.current_mode

        if mode == DegradationMode.FULL:
            return ModeConfiguration(True, True, True, True, 30000)

        if mode == DegradationMode.PARTIAL:
            return ModeConfiguration(
                ai_review=self.is_available(ServiceName.LANGUAGE_MODEL),
                email_notifications=self.is_available(ServiceName.EMAIL),
                source_host_issues=self.is_available(ServiceName.SOURCE_HOST),
                storage=self.is_available(ServiceName.STORAGE),
                timeout_ms=45000,
            )

        if mode == DegradationMode.MINIMAL:
            return ModeConfiguration(
                ai_review=False,
                email_notifications=False,
                source_host_issues=self.is_available(ServiceName.SOURCE_HOST),
                storage=False,
                timeout_ms=60000,
            )

        return ModeConfiguration(False, False, False, False, 0)

    def should_proceed(self, operation: str) -> bool:
        """Whether the current mode permits an operation. Unknown operations proceed."""
        config = self.get_mode_configuration(self.determine_mode())

        if operation == "ai_review":
            return config.ai_review
        if operation == "email_notification":
            return config.email_notifications
        if operation == "source_host_issue":
            return config.source_host_issues
        if operation == "storage":
            return config.storage
        return True

    def get_fallback_strategy(self, service: ServiceName | str) -> str:
        try:
            name = ServiceName(service) if isinstance(service, str) else service
        except ValueError:
            return "manual"
        return SERVICES[name].fallback

    def _split_services(self) -> tuple[list[str], list[str], dict[str, str]]:
        available, unavailable, fallbacks = [], [], {}
        for name in SERVICES:
            if self.is_available(name):
                available.append(name.value)
            else:
                unavailable.append(name.value)
                fallbacks[name.value] = self.get_fallback_strategy(name)
        return available, unavailable, fallbacks

    def create_degraded_review_strategy(self) -> DegradedStrategy:
        mode = self.determine_mode()
        available, unavailable, fallbacks = self._split_services()
        strategy = DegradedStrategy(
            mode=mode,
            available_services=available,
            unavailable_services=unavailable,
            fallback_strategies=fallbacks,
        )

        if mode == DegradationMode.FULL:
            strategy.recommendations.append("All services available - full functionality")
        elif mode == DegradationMode.PARTIAL:
            strategy.recommendations.append(
                "Some services unavailable - using fallback strategies"
            )
            if not self.is_available(ServiceName.LANGUAGE_MODEL):
                strategy.recommendations.append(
                    "AI review unavailable - using manual review fallback"
                )
            if not self.is_available(ServiceName.EMAIL):
                strategy.recommendations.append(
                    "Email notifications unavailable - using source host issues"
                )
        elif mode == DegradationMode.MINIMAL:
            strategy.recommendations.extend([
                "Limited services available - minimal functionality",
                "Manual review required for all changes",
                "Notifications via source host issues only",
            ])
        else:
            strategy.recommendations.extend([
                "Critical services unavailable - offline mode",
                "All reviews must be performed manually",
                "No automated notifications available",
            ])

        return strategy

    def create_offline_review_response(self, context: ReviewContext | None = None) -> dict[str, Any]:
        """Canned manual-review response used when review cannot run at all."""
        context = context or ReviewContext()
        issues = [{
            "severity": "MEDIUM",
            "category": "Standards",
            "description": "Automated code review unavailable due to service outage",
            "file": "all",
            "recommendation": "Please perform manual code review before merging",
        }]
        _, unavailable, _ = self._split_services()

        return {
            "issues": issues,
            "summary": build_summary(issues, offline_mode=True, service_outage=True),
            "metadata": {
                "mode": self.current_mode.value,
                "timestamp": datetime.now(UTC).isoformat(),
                "context": context.as_metadata(),
                "unavailable_services": unavailable,
                "instructions": list(OFFLINE_INSTRUCTIONS),
            },
        }

    def create_partial_review_response(
        self,
        context: ReviewContext | None = None,
        ai_response: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Keep whatever review output exists and note the degraded operation."""
        context = context or ReviewContext()
        issues: list[dict[str, Any]] = []

        if ai_response and isinstance(ai_response.get("issues"), list):
            issues.extend(ai_response["issues"])

        if not self.is_available(ServiceName.LANGUAGE_MODEL):
            issues.append({
                "severity": "MEDIUM",
                "category": "Standards",
                "description": "AI review service unavailable - partial review performed",
                "file": "all",
                "recommendation": "Consider manual review for comprehensive analysis",
            })

        available, unavailable, fallbacks = self._split_services()
        return {
            "issues": issues,
            "summary": build_summary(issues, partial_mode=True),
            "metadata": {
                "mode": DegradationMode.PARTIAL.value,
                "timestamp": datetime.now(UTC).isoformat(),
                "context": context.as_metadata(),
                "available_services": available,
                "unavailable_services": unavailable,
                "fallback_strategies": fallbacks,
            },
        }

    def get_health_report(self) -> dict[str, Any]:
        report: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "current_mode": self.current_mode.value,
            "services": {},
            "recommendations": [],
        }

        for name, spec in SERVICES.items():
            status = self.health.get(name)
            report["services"][name.value] = {
                "name": spec.display_name,
                "critical": spec.critical,
                "available": status.available if status else False,
                "response_time_ms": status.response_time_ms if status else None,
                "last_checked_at": (
                    status.last_checked_at.isoformat()
                    if status and status.last_checked_at
                    else None
                ),
                "error": status.error if status else None,
                "fallback": spec.fallback,
            }

            if not status or not status.available:
                if spec.critical:
                    report["recommendations"].append(
                        f"Critical service {spec.display_name} is unavailable"
                    )
                else:
                    report["recommendations"].append(
                        f"Service {spec.display_name} is unavailable - using fallback"
                    )

        return report

    def reset(self) -> None:
        """Forget all health results and return to full mode."""
        self.health.clear()
        self._last_check.clear()
        self.mode_history.clear()
        self.current_mode = DegradationMode.FULL

    def get_configuration(self) -> dict[str, Any]:
        return {
            "services": {name.value: asdict(spec) for name, spec in SERVICES.items()},
            "degradation_modes": [m.value for m in self.modes],
            "current_mode": self.current_mode.value,
            "check_interval_ms": self.check_interval_ms,
        }
