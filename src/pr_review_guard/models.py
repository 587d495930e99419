"""Shared data types for review requests and results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Rough token estimate used everywhere a file's content is sized
TOKENS_PER_CHAR = 0.25


class Severity(Enum):
    """Issue severity, ordered LOW < MEDIUM < HIGH."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def ordinal(self) -> int:
        return _SEVERITY_ORDINALS[self]

    @classmethod
    def parse(cls, value: object) -> "Severity | None":
        """Return the matching severity, or None for anything unrecognized."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                return None
        return None


_SEVERITY_ORDINALS = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}


class Category(Enum):
    """Canonical issue categories."""

    SECURITY = "Security"
    PERFORMANCE = "Performance"
    STANDARDS = "Standards"
    FORMATTING = "Formatting"
    LOGIC = "Logic"

    @classmethod
    def parse(cls, value: object) -> "Category | None":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                return None
        return None


SEVERITY_VALUES = frozenset(s.value for s in Severity)
CATEGORY_VALUES = frozenset(c.value for c in Category)


def estimate_tokens(content: str | None) -> float:
    """Approximate token count: character count times 0.25."""
    if not content:
        return 0.0
    return len(content) * TOKENS_PER_CHAR


@dataclass
class FileDescriptor:
    """A changed file handed to the engine. Treated as read-only."""

    path: str
    size_bytes: int = 0
    content: str = ""
    estimated_tokens: float | None = None

    def __post_init__(self):
        if self.estimated_tokens is None:
            self.estimated_tokens = estimate_tokens(self.content)


@dataclass
class ReviewIssue:
    """Single review issue in typed form."""

    severity: Severity
    category: Category
    description: str
    file: str | None = None
    line: int | None = None
    recommendation: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewIssue":
        """Build from a repaired response issue. Unknown values get defaults."""
        line = data.get("line")
        return cls(
            severity=Severity.parse(data.get("severity")) or Severity.MEDIUM,
            category=Category.parse(data.get("category")) or Category.STANDARDS,
            description=data.get("description") or "",
            file=data.get("file") if isinstance(data.get("file"), str) else None,
            line=line if isinstance(line, int) and not isinstance(line, bool) else None,
            recommendation=(
                data.get("recommendation")
                if isinstance(data.get("recommendation"), str)
                else None
            ),
        )


@dataclass
class SeverityBreakdown:
    """Issue counts per severity level."""

    high: int = 0
    medium: int = 0
    low: int = 0

    def count(self, severity: Severity) -> int:
        return {
            Severity.HIGH: self.high,
            Severity.MEDIUM: self.medium,
            Severity.LOW: self.low,
        }[severity]

    @classmethod
    def from_issues(cls, issues: list[dict[str, Any]]) -> "SeverityBreakdown":
        breakdown = cls()
        for issue in issues:
            severity = Severity.parse(issue.get("severity"))
            if severity is Severity.HIGH:
                breakdown.high += 1
            elif severity is Severity.MEDIUM:
                breakdown.medium += 1
            elif severity is Severity.LOW:
                breakdown.low += 1
        return breakdown


def build_summary(issues: list[dict[str, Any]], **extra: Any) -> dict[str, Any]:
    """Summary block with counts recomputed from the issue list."""
    breakdown = SeverityBreakdown.from_issues(issues)
    summary: dict[str, Any] = {
        "total_issues": len(issues),
        "high_severity_count": breakdown.high,
        "medium_severity_count": breakdown.medium,
        "low_severity_count": breakdown.low,
    }
    summary.update(extra)
    return summary


@dataclass
class ReviewContext:
    """Identifies the change under review, for audit and response metadata."""

    repository: str = ""
    target_branch: str = ""
    commit_sha: str = ""
    author: str = ""
    session_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def as_metadata(self) -> dict[str, Any]:
        return {
            "repository": self.repository,
            "branch": self.target_branch,
            "commit": self.commit_sha,
            "author": self.author,
        }
