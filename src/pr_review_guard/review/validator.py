"""Validation and repair of review-service responses."""

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from pr_review_guard.execution.retry_handler import get_fallback_reason, is_retryable_error
from pr_review_guard.models import Category, ReviewContext, Severity, build_summary

DEFAULT_REQUIRED_FIELDS = ("issues", "summary")
REQUIRED_ISSUE_FIELDS = ("severity", "category", "description")
MISSING_DESCRIPTION = "Issue detected but description unavailable"


class MalformedResponseError(ValueError):
    """A review response failed validation in a way worth retrying."""


@dataclass
class ResponseValidation:
    """Outcome of validating one review response."""

    is_valid: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    retryable: bool = False
    fallback_needed: bool = False


@dataclass
class IssueValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ProcessedResponse:
    """Result of running a response (or error) through validation and repair."""

    success: bool = False
    response: dict[str, Any] | None = None
    validation: ResponseValidation | None = None
    fallback_used: bool = False
    retryable: bool = False
    error: Exception | None = None


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def validate_issue(issue: Any, index: int) -> IssueValidation:
    """Check one issue. Bad severity is an error; unknown category a warning."""
    result = IssueValidation()

    if not isinstance(issue, dict):
        result.errors.append(f"Issue {index}: Must be an object")
        return result

    for name in REQUIRED_ISSUE_FIELDS:
        if issue.get(name) in (None, ""):
            result.errors.append(f"Issue {index}: Missing required field: {name}")

    severity = issue.get("severity")
    if severity not in (None, "") and Severity.parse(severity) is None:
        result.errors.append(f"Issue {index}: Invalid severity: {severity}")

    category = issue.get("category")
    if category not in (None, "") and Category.parse(category) is None:
        result.warnings.append(f"Issue {index}: Unknown category: {category}")

    description = issue.get("description")
    if description not in (None, "") and not isinstance(description, str):
        result.errors.append(f"Issue {index}: Description must be a string")

    if "file" in issue and issue["file"] is not None and not isinstance(issue["file"], str):
        result.warnings.append(f"Issue {index}: File path should be a string")

    if "line" in issue and issue["line"] is not None and not _is_positive_int(issue["line"]):
        result.warnings.append(f"Issue {index}: Line number should be a positive integer")

    recommendation = issue.get("recommendation")
    if recommendation is not None and not isinstance(recommendation, str):
        result.warnings.append(f"Issue {index}: Recommendation should be a string")

    return result


def validate_response(
    response: Any,
    required_fields: tuple[str, ...] | list[str] = DEFAULT_REQUIRED_FIELDS,
) -> ResponseValidation:
    """Validate the shape of a review response.

    Structural problems (missing response, missing fields, wrong container
    types) are retryable. Per-issue problems are not. A response with only
    warnings is valid but flagged for repair.
    """
    validation = ResponseValidation()

    if response is None:
        validation.errors.append("Response is null or undefined")
        validation.retryable = True
        return validation

    if not isinstance(response, dict):
        validation.errors.append("Response must be an object")
        validation.retryable = True
        return validation

    for name in required_fields:
        if name not in response:
            validation.errors.append(f"Missing required field: {name}")
            validation.retryable = True

    # A present-but-null field is as unusable as a wrongly typed one
    if "issues" in response:
        issues = response["issues"]
        if not isinstance(issues, list):
            validation.errors.append("Issues field must be an array")
            validation.retryable = True
        else:
            for i, issue in enumerate(issues):
                issue_validation = validate_issue(issue, i)
                validation.errors.extend(issue_validation.errors)
                validation.warnings.extend(issue_validation.warnings)

    if "summary" in response and not isinstance(response["summary"], dict):
        validation.errors.append("Summary field must be an object")
        validation.retryable = True

    if not validation.errors:
        validation.is_valid = True
        validation.fallback_needed = bool(validation.warnings)

    return validation


def _fix_issue(issue: dict[str, Any]) -> dict[str, Any]:
    fixed = dict(issue)

    if Severity.parse(fixed.get("severity")) is None:
        fixed["severity"] = "MEDIUM"

    if Category.parse(fixed.get("category")) is None:
        fixed["category"] = "Standards"

    description = fixed.get("description")
    if not isinstance(description, str) or not description:
        fixed["description"] = MISSING_DESCRIPTION

    if "file" in fixed and not isinstance(fixed["file"], str):
        del fixed["file"]

    if "line" in fixed and not _is_positive_int(fixed["line"]):
        del fixed["line"]

    if "recommendation" in fixed and not isinstance(fixed["recommendation"], str):
        del fixed["recommendation"]

    return fixed


def fix_response(response: Any) -> dict[str, Any] | None:
    """Repair a response so it passes validation.

    Never raises. Returns None when the top level is not an object; the
    caller must treat that as fatal. Applying it to its own output is a
    no-op.
    """
    if not isinstance(response, dict):
        return None

    fixed = copy.deepcopy(response)

    issues = fixed.get("issues")
    if not isinstance(issues, list):
        issues = []
    fixed["issues"] = [_fix_issue(issue) for issue in issues if isinstance(issue, dict)]

    summary = fixed.get("summary")
    if not isinstance(summary, dict):
        summary = {}
    summary.update(build_summary(fixed["issues"]))
    fixed["summary"] = summary

    return fixed


def create_fallback_response(
    error: BaseException,
    context: ReviewContext | None = None,
) -> dict[str, Any]:
    """Synthesized response standing in for a failed review."""
    context = context or ReviewContext()
    issues: list[dict[str, Any]] = []

    message = str(error)
    if "parse" in type(error).__name__.lower() or "parse" in message.lower():
        issues.append({
            "severity": "MEDIUM",
            "category": "Standards",
            "description": "AI response parsing failed. Manual review recommended.",
            "file": "unknown",
            "recommendation": (
                "Review the code changes manually to ensure quality standards are met."
            ),
        })

    return {
        "issues": issues,
        "summary": build_summary(issues, fallback_used=True, error=message),
        "metadata": {
            "fallback_reason": get_fallback_reason(error),
            "timestamp": datetime.now(UTC).isoformat(),
            "context": context.as_metadata(),
        },
    }


def process_response(
    response: Any,
    error: BaseException | None = None,
    context: ReviewContext | None = None,
    required_fields: tuple[str, ...] | list[str] = DEFAULT_REQUIRED_FIELDS,
) -> ProcessedResponse:
    """Turn a raw review outcome into a usable response or a retry signal.

    A retryable error comes back with ``success=False, retryable=True``.
    A non-retryable error is replaced by a synthesized fallback response.
    Retryable validation failures carry a ``MalformedResponseError``;
    non-retryable ones are repaired.
    """
    result = ProcessedResponse()

    if error is not None:
        result.error = error
        result.retryable = is_retryable_error(error)
        if not result.retryable:
            logger.warning(f"Non-retryable review error, using fallback: {error}")
            result.response = create_fallback_response(error, context)
            result.fallback_used = True
            result.success = True
        return result

    validation = validate_response(response, required_fields)
    result.validation = validation

    if validation.is_valid:
        result.success = True
        result.response = response
        if validation.fallback_needed:
            logger.info(f"Repairing review response: {'; '.join(validation.warnings)}")
            result.response = fix_response(response)
            result.fallback_used = True
        return result

    if validation.retryable:
        result.retryable = True
        result.error = MalformedResponseError(
            f"Malformed review response: {', '.join(validation.errors)}"
        )
        return result

    fixed = fix_response(response)
    if fixed is not None:
        logger.warning(f"Repaired invalid review response: {'; '.join(validation.errors)}")
        result.response = fixed
    else:
        result.response = create_fallback_response(
            MalformedResponseError(
                f"Response validation failed: {', '.join(validation.errors)}"
            ),
            context,
        )
    result.fallback_used = True
    result.success = True
    return result
