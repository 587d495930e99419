"""Size gate deciding whether a changeset is skipped, split or reviewed as-is."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from pr_review_guard.config import LimitsConfig
from pr_review_guard.models import FileDescriptor, ReviewContext

_BYTE_UNITS = ["Bytes", "KB", "MB", "GB"]

_REASON_ADVICE = {
    "total_size_exceeded": [
        "Consider splitting the commit into smaller, focused changes",
        "Review if all files in the commit are necessary for this change",
        "Consider excluding large binary files or generated files from review",
    ],
    "file_count_exceeded": [
        "Break down the commit into logical units (e.g., feature + tests)",
        "Consider reviewing related files in separate commits",
        "Use smaller, incremental commits for better reviewability",
    ],
    "token_limit_exceeded": [
        "Split the commit to reduce the amount of code being reviewed at once",
        "Focus on the most critical files first",
        "Consider manual review for very large changes",
    ],
    "oversized_files": [
        "Exclude large files (binaries, generated files) from AI review",
        "Consider manual review for large files",
        "Add large files to .gitignore or review exclusion patterns",
    ],
}


class SizeStrategy(Enum):
    """How an oversized changeset is handled."""

    NONE = "none"
    SKIP = "skip"
    SPLIT = "split"


@dataclass(frozen=True)
class OversizedFile:
    """A file individually larger than the per-file limit."""

    path: str
    size: int
    max_size: int
    reason: str = "file_too_large"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "reason": self.reason,
            "max_size": self.max_size,
        }


@dataclass(frozen=True)
class CommitSizeAnalysis:
    """Result of analyzing a changeset against the size limits."""

    total_files: int
    total_size_bytes: int
    estimated_tokens: float
    oversized_files: tuple[OversizedFile, ...] = ()
    needs_handling: bool = False
    strategy: SizeStrategy = SizeStrategy.NONE
    reason: str | None = None
    recommendations: tuple[str, ...] = ()


@dataclass
class FilteredFiles:
    """Files split into those small enough to review and those excluded."""

    included: list[FileDescriptor] = field(default_factory=list)
    excluded: list[OversizedFile] = field(default_factory=list)


def format_bytes(num_bytes: float) -> str:
    """Human-readable size, base 1024: 6291456 -> '6 MB'."""
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(_BYTE_UNITS) - 1:
        value /= 1024
        index += 1
    return f"{float(f'{value:.2f}'):g} {_BYTE_UNITS[index]}"


def analyze_commit_size(
    files: list[FileDescriptor],
    limits: LimitsConfig,
) -> CommitSizeAnalysis:
    """Decide whether a changeset needs special handling before review.

    Conditions are checked in fixed priority order and only the first match
    is reported: total size (skip), file count (split), token estimate
    (split), then individually oversized files (skip).
    """
    total_size = 0
    total_tokens = 0.0
    oversized: list[OversizedFile] = []

    for f in files:
        total_size += f.size_bytes
        total_tokens += f.estimated_tokens or 0.0
        if f.size_bytes > limits.max_file_size_bytes:
            oversized.append(OversizedFile(
                path=f.path,
                size=f.size_bytes,
                max_size=limits.max_file_size_bytes,
            ))

    strategy = SizeStrategy.NONE
    reason = None
    recommendation = None

    if total_size > limits.max_total_size_bytes:
        strategy, reason = SizeStrategy.SKIP, "total_size_exceeded"
        recommendation = (
            f"Total commit size ({format_bytes(total_size)}) exceeds limit "
            f"({format_bytes(limits.max_total_size_bytes)})"
        )
    elif len(files) > limits.max_files_per_review:
        strategy, reason = SizeStrategy.SPLIT, "file_count_exceeded"
        recommendation = (
            f"File count ({len(files)}) exceeds limit ({limits.max_files_per_review}). "
            "Consider splitting into smaller commits."
        )
    elif total_tokens > limits.max_tokens:
        strategy, reason = SizeStrategy.SPLIT, "token_limit_exceeded"
        recommendation = (
            f"Estimated tokens ({round(total_tokens)}) exceeds limit ({limits.max_tokens}). "
            "Consider splitting into smaller commits."
        )
    elif oversized:
        strategy, reason = SizeStrategy.SKIP, "oversized_files"
        recommendation = (
            f"{len(oversized)} file(s) exceed size limit. "
            "Consider excluding large files from review."
        )

    if reason:
        logger.info(
            f"Changeset of {len(files)} files needs handling: "
            f"{strategy.value} ({reason})"
        )

    return CommitSizeAnalysis(
        total_files=len(files),
        total_size_bytes=total_size,
        estimated_tokens=total_tokens,
        oversized_files=tuple(oversized),
        needs_handling=reason is not None,
        strategy=strategy,
        reason=reason,
        recommendations=(recommendation,) if recommendation else (),
    )


def filter_oversized_files(
    files: list[FileDescriptor],
    limits: LimitsConfig,
) -> FilteredFiles:
    """Drop files individually larger than ``max_file_size_bytes``."""
    result = FilteredFiles()
    for f in files:
        if f.size_bytes > limits.max_file_size_bytes:
            result.excluded.append(OversizedFile(
                path=f.path,
                size=f.size_bytes,
                max_size=limits.max_file_size_bytes,
            ))
        else:
            result.included.append(f)
    return result


def get_recommendations(analysis: CommitSizeAnalysis) -> list[str]:
    """Analysis recommendations followed by advice for the detected reason."""
    return list(analysis.recommendations) + _REASON_ADVICE.get(analysis.reason, [])


def build_skip_notification(
    analysis: CommitSizeAnalysis,
    limits: LimitsConfig,
    context: ReviewContext,
) -> dict[str, Any]:
    """Notification payload for a changeset that will not be reviewed."""
    message = "AI code review was skipped due to commit size limitations."
    if analysis.reason == "total_size_exceeded":
        message += (
            f" Total commit size ({format_bytes(analysis.total_size_bytes)}) exceeds "
            f"the {format_bytes(limits.max_total_size_bytes)} limit."
        )
    elif analysis.reason == "oversized_files":
        message += (
            f" {len(analysis.oversized_files)} file(s) exceed the "
            f"{format_bytes(limits.max_file_size_bytes)} individual file size limit."
        )
    else:
        message += " Commit exceeds configured size limits."

    return {
        "type": "large_commit_skipped",
        "title": f"Large Commit Skipped - {context.repository} ({context.target_branch})",
        "message": message,
        "details": {
            "total_files": analysis.total_files,
            "total_size": format_bytes(analysis.total_size_bytes),
            "reason": analysis.reason,
            "recommendations": list(analysis.recommendations),
        },
        "severity": "warning",
    }


def build_split_notification(
    chunks: list,
    analysis: CommitSizeAnalysis,
    context: ReviewContext,
) -> dict[str, Any]:
    """Notification payload describing how a changeset was split."""
    return {
        "type": "large_commit_split",
        "title": (
            f"Large Commit Split for Review - {context.repository} "
            f"({context.target_branch})"
        ),
        "message": (
            f"Large commit has been split into {len(chunks)} review chunks "
            "due to size limitations."
        ),
        "details": {
            "original_files": analysis.total_files,
            "original_size": format_bytes(analysis.total_size_bytes),
            "chunks": [
                {
                    "chunk_number": i + 1,
                    "file_count": chunk.file_count,
                    "total_size": format_bytes(chunk.total_size),
                    "estimated_tokens": round(chunk.estimated_tokens),
                }
                for i, chunk in enumerate(chunks)
            ],
            "reason": analysis.reason,
            "recommendations": list(analysis.recommendations),
        },
        "severity": "info",
    }
