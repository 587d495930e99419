"""Quality gate deciding whether a review result may block a production change."""

import re
import time
from collections.abc import Callable, Iterator
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Protocol

from loguru import logger

from pr_review_guard.config import QualityGateConfig
from pr_review_guard.metrics.audit import AuditSink, NullAuditSink, safe_audit
from pr_review_guard.models import SEVERITY_VALUES, ReviewContext, Severity, SeverityBreakdown

NO_SEVERITY = "NONE"

# Words that cancel an override keyword placed right after them ("not urgent")
_NEGATION_SUFFIX = re.compile(r"\b(?:not|no|non)[\s-]+$", re.IGNORECASE)


class OverrideStore(Protocol):
    """Per-author, per-day override counts.

    The in-memory ledger below is the default; deployments running several
    evaluators can back this with a shared store.
    """

    def count(self, author: str, day: date) -> int:
        ...

    def increment(self, author: str, day: date) -> int:
        ...

    def clear(self, keep_date: date | None = None) -> None:
        ...

    def items(self) -> Iterator[tuple[tuple[str, date], int]]:
        ...


class OverrideLedger:
    """In-memory override counts keyed by (author, calendar date).

    Counts only grow within a date; a new date starts from zero. Entries are
    removed only by an explicit ``clear``.
    """

    def __init__(self):
        self._counts: dict[tuple[str, date], int] = {}

    def __len__(self) -> int:
        return len(self._counts)

    def count(self, author: str, day: date) -> int:
        """Overrides used by ``author`` on ``day``."""
        return self._counts.get((author, day), 0)

    def increment(self, author: str, day: date) -> int:
        """Record one more override and return the new count."""
        key = (author, day)
        self._counts[key] = self._counts.get(key, 0) + 1
        return self._counts[key]

    def set(self, author: str, day: date, count: int) -> None:
        self._counts[(author, day)] = count

    def clear(self, keep_date: date | None = None) -> None:
        """Drop all entries, or all entries except those for ``keep_date``."""
        if keep_date is None:
            self._counts.clear()
            return
        self._counts = {k: v for k, v in self._counts.items() if k[1] == keep_date}

    def items(self) -> Iterator[tuple[tuple[str, date], int]]:
        return iter(list(self._counts.items()))


def _is_emergency_response(data: dict[str, Any]) -> bool:
    summary = data.get("summary")
    if isinstance(summary, dict) and summary.get("fallback_type") == "emergency_bypass":
        return True
    return bool(data.get("emergency", False))


@dataclass
class GateReview:
    """The parts of a review result the gate looks at."""

    severity_breakdown: SeverityBreakdown = field(default_factory=SeverityBreakdown)
    commit_message: str = ""
    commit_author: str = ""
    target_branch: str = ""
    emergency: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GateReview":
        """Build from a saved review: either a breakdown or a full issue list."""
        if "severity_breakdown" in data:
            counts = data["severity_breakdown"] or {}
            breakdown = SeverityBreakdown(
                high=counts.get("high", 0),
                medium=counts.get("medium", 0),
                low=counts.get("low", 0),
            )
        else:
            breakdown = SeverityBreakdown.from_issues(data.get("issues") or [])

        return cls(
            severity_breakdown=breakdown,
            commit_message=data.get("commit_message", ""),
            commit_author=data.get("commit_author", ""),
            target_branch=data.get("target_branch", ""),
            emergency=_is_emergency_response(data),
        )


@dataclass
class OverrideCheck:
    """Outcome of checking a commit message for an authorized override."""

    override_used: bool = False
    authorized: bool = False
    limit_exceeded: bool = False
    reason: str = ""
    remaining: int | None = None


@dataclass
class SeverityEvaluation:
    blocked: bool
    reason: str
    highest_severity: str
    issues_found: int


@dataclass
class QualityGateResult:
    """Pass/block decision for one review result."""

    passed: bool
    blocked: bool
    reason: str
    override_used: bool = False
    highest_severity: str = NO_SEVERITY
    issues_found: int = 0
    evaluation_time_ms: int = 0
    is_production: bool = False
    limit_exceeded: bool = False
    remaining_overrides: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QualityGateEvaluator:
    """Applies the severity policy, production rules and override quota."""

    def __init__(
        self,
        policy: QualityGateConfig | None = None,
        ledger: OverrideStore | None = None,
        audit: AuditSink | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.policy = policy or QualityGateConfig()
        self.ledger = ledger if ledger is not None else OverrideLedger()
        self.audit = audit or NullAuditSink()
        self.today = today
        self._validate_policy()

        keyword = re.escape(self.policy.urgent_keyword.strip())
        self._keyword_pattern = re.compile(rf"\b{keyword}\b", re.IGNORECASE)

    def _validate_policy(self) -> None:
        threshold = self.policy.severity_threshold
        if threshold not in SEVERITY_VALUES:
            raise ValueError(
                f"Invalid severity threshold: {threshold!r} (expected HIGH, MEDIUM or LOW)"
            )

        quota = self.policy.max_overrides_per_day
        if isinstance(quota, bool) or not isinstance(quota, int) or quota < 0:
            raise ValueError("max_overrides_per_day must be a non-negative number")

        if not self.policy.urgent_keyword or not self.policy.urgent_keyword.strip():
            raise ValueError("urgent_keyword must not be empty")

    @property
    def threshold(self) -> Severity:
        return Severity(self.policy.severity_threshold)

    def is_production(self, branch: str | None, environment: str | None) -> bool:
        """True when the branch or the environment name is a production one."""
        production = {b.lower() for b in self.policy.production_branches}
        return (branch or "").lower() in production or (environment or "").lower() in production

    def has_override_keyword(self, message: str | None) -> bool:
        """Whole-word, case-insensitive keyword match, ignoring negated uses."""
        if not message:
            return False

        for match in self._keyword_pattern.finditer(message):
            if not _NEGATION_SUFFIX.search(message[: match.start()]):
                return True
        return False

    def get_highest_severity(self, breakdown: SeverityBreakdown) -> str:
        """Highest severity with a non-zero count, or NONE."""
        if breakdown.high > 0:
            return Severity.HIGH.value
        if breakdown.medium > 0:
            return Severity.MEDIUM.value
        if breakdown.low > 0:
            return Severity.LOW.value
        return NO_SEVERITY

    def count_issues_at_or_above(self, breakdown: SeverityBreakdown, severity: Severity | str) -> int:
        """Number of issues at ``severity`` or worse."""
        level = Severity(severity) if isinstance(severity, str) else severity
        return sum(
            breakdown.count(s) for s in Severity if s.ordinal >= level.ordinal
        )

    def evaluate_severity(self, breakdown: SeverityBreakdown) -> SeverityEvaluation:
        """Block iff the highest severity present is at or above the threshold."""
        threshold = self.threshold
        highest = self.get_highest_severity(breakdown)
        highest_ordinal = Severity(highest).ordinal if highest != NO_SEVERITY else 0
        issues_found = self.count_issues_at_or_above(breakdown, threshold)

        if highest_ordinal >= threshold.ordinal:
            return SeverityEvaluation(
                blocked=True,
                reason=(
                    f"{highest} severity issues detected "
                    f"({issues_found} at or above {threshold.value} threshold)"
                ),
                highest_severity=highest,
                issues_found=issues_found,
            )

        return SeverityEvaluation(
            blocked=False,
            reason=f"Issues below threshold ({threshold.value})",
            highest_severity=highest,
            issues_found=issues_found,
        )

    def check_override(
        self,
        message: str | None,
        author: str,
        context: ReviewContext | None = None,
    ) -> OverrideCheck:
        """Consume one of the author's daily overrides if the message asks for it."""
        if not self.policy.allow_urgent_override:
            return OverrideCheck(reason="Override disabled")

        if not self.has_override_keyword(message):
            return OverrideCheck(reason="No override keyword found")

        return self._consume_override(author, context, self.policy.urgent_keyword)

    def _consume_override(
        self,
        author: str,
        context: ReviewContext | None,
        keyword: str,
    ) -> OverrideCheck:
        quota = self.policy.max_overrides_per_day
        today = self.today()
        used = self.ledger.count(author, today)

        if used >= quota:
            logger.warning(f"Override by {author} rejected: {used}/{quota} already used today")
            safe_audit(
                self.audit.log_override_attempt,
                "override_attempt",
                {
                    "author": author,
                    "keyword": keyword,
                    "authorized": False,
                    "overrides_used": used,
                    "remaining_overrides": 0,
                },
                context,
            )
            return OverrideCheck(
                limit_exceeded=True,
                reason=f"Override limit exceeded ({used}/{quota} used today)",
                remaining=0,
            )

        used = self.ledger.increment(author, today)
        remaining = quota - used
        logger.warning(f"{keyword} override applied by {author} ({remaining} remaining today)")
        safe_audit(
            self.audit.log_override_attempt,
            "override_attempt",
            {
                "author": author,
                "keyword": keyword,
                "authorized": True,
                "overrides_used": used,
                "remaining_overrides": remaining,
            },
            context,
        )
        return OverrideCheck(
            override_used=True,
            authorized=True,
            reason=f"{keyword} override applied",
            remaining=remaining,
        )

    def evaluate(
        self,
        review: GateReview,
        environment: str | None = None,
        context: ReviewContext | None = None,
    ) -> QualityGateResult:
        """Decide pass/block for a review result.

        Never raises: any failure during evaluation produces a blocked result.
        """
        start = time.monotonic()

        try:
            safe_audit(
                self.audit.log_quality_gate_start,
                "quality_gate_start",
                {"branch": review.target_branch, "environment": environment},
                context,
            )
            production = self.is_production(review.target_branch, environment)

            if not self.policy.enabled:
                result = QualityGateResult(
                    passed=True, blocked=False, reason="Quality gates disabled",
                    is_production=production,
                )
            elif not production or not self.policy.block_production:
                result = QualityGateResult(
                    passed=True, blocked=False,
                    reason="Not a production environment or blocking disabled",
                    is_production=production,
                )
            else:
                result = self._evaluate_production(review, context)

            result.evaluation_time_ms = int((time.monotonic() - start) * 1000)
            safe_audit(
                self.audit.log_quality_gate_decision,
                "quality_gate_decision",
                result.to_dict(),
                context,
            )
            logger.info(
                f"Quality gate {'blocked' if result.blocked else 'passed'} "
                f"for {review.target_branch or 'unknown branch'}: {result.reason}"
            )
            return result

        except Exception as e:
            logger.error(f"Quality gate evaluation failed, blocking: {e}")
            safe_audit(
                self.audit.log_quality_gate_error,
                "quality_gate_error",
                {"error": str(e), "branch": review.target_branch},
                context,
            )
            return QualityGateResult(
                passed=False,
                blocked=True,
                reason=f"Quality gate evaluation failed: {e}",
                evaluation_time_ms=int((time.monotonic() - start) * 1000),
                is_production=True,
            )

    def _evaluate_production(
        self, review: GateReview, context: ReviewContext | None
    ) -> QualityGateResult:
        if review.emergency:
            return self._evaluate_emergency(review, context)

        override = self.check_override(review.commit_message, review.commit_author, context)
        highest = self.get_highest_severity(review.severity_breakdown)

        if override.override_used:
            return QualityGateResult(
                passed=True,
                blocked=False,
                reason=override.reason,
                override_used=True,
                highest_severity=highest,
                issues_found=self.count_issues_at_or_above(
                    review.severity_breakdown, self.threshold
                ),
                is_production=True,
                remaining_overrides=override.remaining,
            )

        severity = self.evaluate_severity(review.severity_breakdown)
        return QualityGateResult(
            passed=not severity.blocked,
            blocked=severity.blocked,
            reason=severity.reason if severity.blocked else "Quality gate passed",
            highest_severity=severity.highest_severity,
            issues_found=severity.issues_found,
            is_production=True,
            limit_exceeded=override.limit_exceeded,
            remaining_overrides=override.remaining,
        )

    def _evaluate_emergency(
        self, review: GateReview, context: ReviewContext | None
    ) -> QualityGateResult:
        """Nothing was reviewed, so the bypass passes only by spending an override."""
        if self.policy.allow_urgent_override:
            override = self._consume_override(
                review.commit_author, context, self.policy.urgent_keyword
            )
        else:
            override = OverrideCheck(reason="Override disabled")

        if override.override_used:
            return QualityGateResult(
                passed=True,
                blocked=False,
                reason=f"Emergency bypass: {override.reason}",
                override_used=True,
                highest_severity=self.get_highest_severity(review.severity_breakdown),
                is_production=True,
                remaining_overrides=override.remaining,
            )

        return QualityGateResult(
            passed=False,
            blocked=True,
            reason=f"Emergency bypass rejected: {override.reason}",
            is_production=True,
            limit_exceeded=override.limit_exceeded,
            remaining_overrides=override.remaining,
        )

    def generate_status_message(self, result: QualityGateResult) -> str:
        """One-line status for the PR or console."""
        if result.passed and result.override_used:
            return f"✅ Quality gate passed ({self.policy.urgent_keyword} override used)"
        if result.passed:
            return "✅ Quality gate passed"
        return f"❌ Quality gate failed: {result.reason}"

    def get_override_stats(self) -> dict[str, Any]:
        """Totals per day and the authors who have used overrides."""
        total = 0
        users: set[str] = set()
        daily: dict[str, int] = {}

        for (author, day), count in self.ledger.items():
            total += count
            users.add(author)
            daily[day.isoformat()] = daily.get(day.isoformat(), 0) + count

        return {
            "total_overrides": total,
            "users_with_overrides": sorted(users),
            "daily_breakdown": daily,
        }

    def clear_override_tracking(self, keep_date: date | None = None) -> None:
        """Forget recorded overrides, optionally keeping one date."""
        self.ledger.clear(keep_date)

    def get_config_summary(self) -> dict[str, Any]:
        """Active policy plus the number of ledger entries."""
        return {
            "enabled": self.policy.enabled,
            "severity_threshold": self.policy.severity_threshold,
            "block_production": self.policy.block_production,
            "allow_urgent_override": self.policy.allow_urgent_override,
            "urgent_keyword": self.policy.urgent_keyword,
            "max_overrides_per_day": self.policy.max_overrides_per_day,
            "production_branches": list(self.policy.production_branches),
            "override_tracking_size": sum(1 for _ in self.ledger.items()),
        }
