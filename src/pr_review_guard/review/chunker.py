"""File chunking for changesets that exceed a single review's limits.

Splits a file list into review-sized chunks and merges the per-chunk
review responses back into one.
"""

from dataclasses import dataclass, field
from typing import Any

from pr_review_guard.config import LimitsConfig
from pr_review_guard.models import FileDescriptor, build_summary


@dataclass
class ReviewChunk:
    """A size/count-bounded subset of a changeset, reviewed as one unit."""

    files: list[FileDescriptor] = field(default_factory=list)
    total_size: int = 0
    estimated_tokens: float = 0.0

    @property
    def file_count(self) -> int:
        return len(self.files)

    def add(self, f: FileDescriptor) -> None:
        self.files.append(f)
        self.total_size += f.size_bytes
        self.estimated_tokens += f.estimated_tokens or 0.0


def split_files_into_chunks(
    files: list[FileDescriptor],
    limits: LimitsConfig,
) -> list[ReviewChunk]:
    """Greedily pack files, smallest first, into chunks within the limits.

    A new chunk starts when the next file would push the current chunk over
    the total-size or token limit, or when the chunk already holds
    ``max_files_per_review`` files. The first file of a chunk is always
    accepted, so a single file above a limit still gets its own chunk.

    Args:
        files: Files to partition.
        limits: Size, token and file-count limits.

    Returns:
        Chunks whose files together are exactly the input files.
    """
    chunks: list[ReviewChunk] = []
    current = ReviewChunk()

    # sorted() is stable, so equal sizes keep input order
    for f in sorted(files, key=lambda f: f.size_bytes):
        tokens = f.estimated_tokens or 0.0
        would_exceed = (
            current.total_size + f.size_bytes > limits.max_total_size_bytes
            or current.estimated_tokens + tokens > limits.max_tokens
            or current.file_count >= limits.max_files_per_review
        )

        if would_exceed and current.files:
            chunks.append(current)
            current = ReviewChunk()

        current.add(f)

    if current.files:
        chunks.append(current)

    return chunks


def merge_chunk_responses(responses: list[dict[str, Any]]) -> dict[str, Any]:
    """Merge per-chunk review responses into one.

    Issues are concatenated in chunk order, summary counts are recomputed and
    fallback flags are carried over when any chunk needed one.
    """
    issues: list[dict[str, Any]] = []
    fallback_used = False
    fallback_types: list[str] = []

    for response in responses:
        issues.extend(response.get("issues") or [])
        summary = response.get("summary") or {}
        if summary.get("fallback_used"):
            fallback_used = True
            fallback_type = summary.get("fallback_type")
            if fallback_type and fallback_type not in fallback_types:
                fallback_types.append(fallback_type)

    extra: dict[str, Any] = {"chunks_reviewed": len(responses)}
    if fallback_used:
        extra["fallback_used"] = True
        extra["fallback_type"] = ",".join(fallback_types) or "unknown"

    return {"issues": issues, "summary": build_summary(issues, **extra)}
