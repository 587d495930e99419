"""Recovery strategy selection and execution after a failed review call."""

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from loguru import logger

from pr_review_guard.execution.retry_handler import (
    DEFAULT_MAX_RETRY_DELAY_MS,
    DEFAULT_RETRY_DELAY_MS,
    ErrorClass,
    calculate_retry_delay,
    classify_error,
)
from pr_review_guard.models import FileDescriptor, ReviewContext, build_summary
from pr_review_guard.review.llm_reviewer import ReviewPrompt

MANUAL_REVIEW_DESCRIPTION = "AI code review service unavailable. Manual review required."
EMERGENCY_WARNING = (
    "Code review was bypassed due to emergency. Manual review is strongly recommended."
)
DEGRADED_NOTE = (
    "This review was performed using basic static analysis due to AI service unavailability."
)
MAX_FUNCTION_LINES = 50

SIMPLIFIED_SYSTEM_PROMPT = """\
You are a code reviewer. Review the provided code for issues and respond with a simple JSON format:
{
  "issues": [
    {
      "severity": "HIGH|MEDIUM|LOW",
      "category": "Security|Performance|Standards|Formatting|Logic",
      "description": "Brief description of the issue"
    }
  ],
  "summary": {
    "total_issues": 0,
    "high_severity_count": 0,
    "medium_severity_count": 0,
    "low_severity_count": 0
  }
}"""

SIMPLIFIED_USER_PREFIX = (
    "Review this code for critical issues only. "
    "Focus on security and major problems. Keep response concise."
)

_CREDENTIAL_PATTERN = re.compile(
    r"(?:password|passwd|pwd|secret|api[_-]?key|access[_-]?token)\s*[=:]\s*['\"][^'\"]+['\"]",
    re.IGNORECASE,
)
_DEBUG_PATTERN = re.compile(
    r"console\.log\(|\bdebugger;|\bbreakpoint\(\)|pdb\.set_trace\(\)"
)
_FUNCTION_START = re.compile(
    r"^\s*(?:export\s+)?(?:async\s+)?(?:def|function|func|fn)\s+\w+",
    re.MULTILINE,
)


class FallbackStrategy(Enum):
    """Recovery actions after a failed review attempt."""

    RETRY = "retry"
    SIMPLIFIED = "simplified"
    DEGRADED = "degraded"
    MANUAL = "manual"
    EMERGENCY = "emergency"
    NONE = "none"


@dataclass
class FallbackDecision:
    """What the attempt loop should do next."""

    strategy: FallbackStrategy
    should_retry: bool
    delay_ms: float | None = None
    response: dict[str, Any] | None = None
    prompt: ReviewPrompt | None = None


def _metadata(
    reason: str,
    context: ReviewContext,
    include_author: bool = False,
    **extra: Any,
) -> dict[str, Any]:
    ctx = context.as_metadata()
    if not include_author:
        ctx.pop("author")
    metadata = {
        "fallback_reason": reason,
        "timestamp": datetime.now(UTC).isoformat(),
        "context": ctx,
    }
    metadata.update(extra)
    return metadata


def create_simplified_prompt(original_prompt: ReviewPrompt | None) -> ReviewPrompt:
    """Reduced-scope prompt asking for critical issues only."""
    original_user = original_prompt.user if original_prompt else ""
    return ReviewPrompt(
        system=SIMPLIFIED_SYSTEM_PROMPT,
        user=f"{SIMPLIFIED_USER_PREFIX}\n\n{original_user or 'Code to review:'}",
    )


def get_manual_review_instructions(context: ReviewContext | None = None) -> list[str]:
    """Checklist for a human reviewer, with extra items for main/develop branches."""
    context = context or ReviewContext()
    instructions = [
        "Review code for security vulnerabilities",
        "Check for performance issues",
        "Verify coding standards compliance",
        "Ensure proper error handling",
        "Review for potential bugs or logic errors",
    ]

    if context.target_branch in ("main", "master"):
        instructions.append("Pay special attention to production readiness")
        instructions.append("Verify all security measures are in place")

    if context.target_branch in ("develop", "dev"):
        instructions.append("Focus on code quality and maintainability")

    return instructions


def _longest_function_body(content: str) -> int:
    lines = content.split("\n")
    starts = [content.count("\n", 0, m.start()) for m in _FUNCTION_START.finditer(content)]
    if not starts:
        return 0
    bounds = starts + [len(lines)]
    return max(end - start for start, end in zip(bounds, bounds[1:]))


def scan_file(f: FileDescriptor) -> list[dict[str, Any]]:
    """Keyword heuristics run locally when the review service is unusable."""
    issues = []
    content = f.content or ""
    path = f.path or "unknown"

    if "eval(" in content or "innerHTML" in content:
        issues.append({
            "severity": "HIGH",
            "category": "Security",
            "description": "Potential security vulnerability detected",
            "file": path,
            "recommendation": "Avoid using eval() or innerHTML with user input",
        })

    if _CREDENTIAL_PATTERN.search(content):
        issues.append({
            "severity": "HIGH",
            "category": "Security",
            "description": "Potential hardcoded credentials detected",
            "file": path,
            "recommendation": "Use environment variables for sensitive data",
        })

    if _DEBUG_PATTERN.search(content) and "test" not in path.lower():
        issues.append({
            "severity": "LOW",
            "category": "Standards",
            "description": "Debug statement found in production code",
            "file": path,
            "recommendation": "Remove or replace with proper logging",
        })

    if _longest_function_body(content) > MAX_FUNCTION_LINES:
        issues.append({
            "severity": "MEDIUM",
            "category": "Standards",
            "description": "Large function detected",
            "file": path,
            "recommendation": "Consider breaking down into smaller, more manageable functions",
        })

    return issues


def create_degraded_response(
    files: list[FileDescriptor],
    context: ReviewContext | None = None,
) -> dict[str, Any]:
    """Response built from the local heuristic scan of every file."""
    context = context or ReviewContext()
    issues = []
    for f in files:
        issues.extend(scan_file(f))

    return {
        "issues": issues,
        "summary": build_summary(issues, fallback_used=True, fallback_type="degraded_review"),
        "metadata": _metadata("ai_service_unavailable", context, note=DEGRADED_NOTE),
    }


def create_manual_response(
    error: BaseException | None,
    context: ReviewContext | None = None,
) -> dict[str, Any]:
    """Terminal response with one issue asking for a human review."""
    context = context or ReviewContext()
    issues = [{
        "severity": "MEDIUM",
        "category": "Standards",
        "description": MANUAL_REVIEW_DESCRIPTION,
        "file": "all",
        "recommendation": "Please have a team member review this code manually before merging.",
    }]
    error_class = classify_error(error) if error is not None else ErrorClass.UNKNOWN

    return {
        "issues": issues,
        "summary": build_summary(
            issues,
            fallback_used=True,
            fallback_type="manual_review",
            error=str(error) if error is not None else "",
        ),
        "metadata": _metadata(
            error_class.value,
            context,
            include_author=True,
            instructions=get_manual_review_instructions(context),
        ),
    }


def create_emergency_response(
    context: ReviewContext | None = None,
    reason: str = "emergency",
) -> dict[str, Any]:
    """Terminal response with no issues and a bypass warning."""
    context = context or ReviewContext()
    return {
        "issues": [],
        "summary": build_summary(
            [],
            fallback_used=True,
            fallback_type="emergency_bypass",
            bypass_reason=reason,
        ),
        "metadata": _metadata(
            "emergency_bypass",
            context,
            include_author=True,
            warning=EMERGENCY_WARNING,
        ),
    }


class FallbackStrategist:
    """Maps a failed attempt to the next recovery action."""

    def __init__(
        self,
        max_attempts: int = 3,
        enabled: bool = True,
        base_delay_ms: float = DEFAULT_RETRY_DELAY_MS,
        max_delay_ms: float = DEFAULT_MAX_RETRY_DELAY_MS,
    ):
        self.max_attempts = max_attempts
        self.enabled = enabled
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    def determine_strategy(self, error: BaseException, attempt: int = 1) -> FallbackStrategy:
        """Pick a strategy from the error class and attempt number.

        Out of attempts always means manual review; otherwise the error
        class decides, with timeouts and network errors getting one plain
        retry before escalating.
        """
        if not self.enabled:
            return FallbackStrategy.NONE

        if attempt >= self.max_attempts:
            return FallbackStrategy.MANUAL

        error_class = classify_error(error)

        if error_class == ErrorClass.TIMEOUT:
            return FallbackStrategy.RETRY if attempt < 2 else FallbackStrategy.SIMPLIFIED
        if error_class == ErrorClass.RATE_LIMIT:
            return FallbackStrategy.RETRY
        if error_class == ErrorClass.AUTHENTICATION:
            return FallbackStrategy.MANUAL
        if error_class == ErrorClass.MALFORMED_RESPONSE:
            return FallbackStrategy.SIMPLIFIED
        if error_class == ErrorClass.NETWORK:
            return FallbackStrategy.RETRY if attempt < 2 else FallbackStrategy.MANUAL
        if error_class == ErrorClass.TOKEN_LIMIT:
            return FallbackStrategy.SIMPLIFIED
        return FallbackStrategy.MANUAL

    def execute_strategy(
        self,
        strategy: FallbackStrategy,
        error: BaseException | None = None,
        attempt: int = 1,
        files: list[FileDescriptor] | None = None,
        original_prompt: ReviewPrompt | None = None,
        context: ReviewContext | None = None,
        reason: str = "emergency",
    ) -> FallbackDecision:
        """Turn a strategy into a concrete decision for the attempt loop."""
        logger.info(f"Executing fallback strategy {strategy.value} after attempt {attempt}")

        if strategy == FallbackStrategy.RETRY:
            return FallbackDecision(
                strategy=strategy,
                should_retry=True,
                delay_ms=calculate_retry_delay(attempt, self.base_delay_ms, self.max_delay_ms),
            )

        if strategy == FallbackStrategy.SIMPLIFIED:
            return FallbackDecision(
                strategy=strategy,
                should_retry=True,
                prompt=create_simplified_prompt(original_prompt),
            )

        if strategy == FallbackStrategy.DEGRADED:
            return FallbackDecision(
                strategy=strategy,
                should_retry=False,
                response=create_degraded_response(files or [], context),
            )

        if strategy == FallbackStrategy.MANUAL:
            return FallbackDecision(
                strategy=strategy,
                should_retry=False,
                response=create_manual_response(error, context),
            )

        if strategy == FallbackStrategy.EMERGENCY:
            return FallbackDecision(
                strategy=strategy,
                should_retry=False,
                response=create_emergency_response(context, reason),
            )

        return FallbackDecision(strategy=FallbackStrategy.NONE, should_retry=False)
