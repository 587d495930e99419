"""Console output formatting."""

from typing import Any

from pr_review_guard.gates.quality_gate import QualityGateResult
from pr_review_guard.gates.size_gate import CommitSizeAnalysis, format_bytes, get_recommendations
from pr_review_guard.models import ReviewIssue
from pr_review_guard.pipeline import PipelineResult
from pr_review_guard.review.chunker import ReviewChunk


def format_analysis_output(
    analysis: CommitSizeAnalysis,
    chunks: list[ReviewChunk] | None = None,
) -> str:
    """Format commit size analysis and chunk plan for console."""
    lines = []

    lines.append("=" * 60)
    lines.append("Commit Size Analysis")
    lines.append("=" * 60)
    lines.append(f"Files: {analysis.total_files}")
    lines.append(f"Total size: {format_bytes(analysis.total_size_bytes)}")
    lines.append(f"Estimated tokens: {round(analysis.estimated_tokens)}")
    lines.append("")

    if not analysis.needs_handling:
        lines.append("✓ Within limits - reviewable as a single unit")
    else:
        lines.append(f"⚠ {analysis.strategy.value.upper()} ({analysis.reason})")
        for rec in get_recommendations(analysis):
            lines.append(f"  → {rec}")

    if analysis.oversized_files:
        lines.append("")
        lines.append("## Oversized Files")
        for f in analysis.oversized_files:
            lines.append(f"  ✗ {f.path} ({format_bytes(f.size)} > {format_bytes(f.max_size)})")

    if chunks:
        lines.append("")
        lines.append("## Review Chunks")
        for i, chunk in enumerate(chunks):
            lines.append(
                f"  {i + 1}. {chunk.file_count} files, {format_bytes(chunk.total_size)}, "
                f"~{round(chunk.estimated_tokens)} tokens"
            )

    lines.append("=" * 60)
    return "\n".join(lines)


def format_gate_output(result: QualityGateResult, status_message: str) -> str:
    """Format a quality gate decision for console."""
    lines = []

    lines.append("## Quality Gate")
    lines.append(status_message)
    lines.append(f"Highest severity: {result.highest_severity}")
    lines.append(f"Issues at or above threshold: {result.issues_found}")
    lines.append(f"Production: {'yes' if result.is_production else 'no'}")
    if result.override_used:
        lines.append(f"Overrides remaining today: {result.remaining_overrides}")
    if result.limit_exceeded:
        lines.append("⚠ Override requested but daily limit exceeded")
    lines.append(f"Evaluated in {result.evaluation_time_ms}ms")

    return "\n".join(lines)


def format_health_output(report: dict[str, Any]) -> str:
    """Format a service health report for console."""
    lines = []

    lines.append("## Service Health")
    lines.append(f"Mode: {report['current_mode'].upper()}")
    lines.append("")

    for name, service in report["services"].items():
        icon = "✓" if service["available"] else "✗"
        critical = " (critical)" if service["critical"] else ""
        timing = (
            f" {service['response_time_ms']}ms"
            if service["response_time_ms"] is not None
            else ""
        )
        lines.append(f"  {icon} {name}{critical}{timing}")
        if service["error"]:
            lines.append(f"     {service['error']}")

    if report["recommendations"]:
        lines.append("")
        for rec in report["recommendations"]:
            lines.append(f"  ⚠ {rec}")

    return "\n".join(lines)


def format_review_output(result: PipelineResult, status_message: str | None = None) -> str:
    """Format a full pipeline run for console."""
    lines = []

    lines.append("=" * 60)
    lines.append(f"Code Review ({result.mode.value} mode, {result.duration_ms}ms)")
    lines.append("=" * 60)

    for notification in result.notifications:
        lines.append(f"⚠ {notification['title']}")
        lines.append(f"  {notification['message']}")

    if result.response is None:
        lines.append("No review performed")
    else:
        summary = result.response.get("summary", {})
        lines.append(
            f"Issues: {summary.get('total_issues', 0)} "
            f"(high {summary.get('high_severity_count', 0)}, "
            f"medium {summary.get('medium_severity_count', 0)}, "
            f"low {summary.get('low_severity_count', 0)})"
        )
        if summary.get("fallback_used"):
            lines.append(f"Fallback: {summary.get('fallback_type', 'repaired response')}")

        for raw in result.response.get("issues") or []:
            if not isinstance(raw, dict):
                continue
            issue = ReviewIssue.from_dict(raw)
            location = issue.file or ""
            if issue.line:
                location += f":{issue.line}"
            lines.append(f"  [{issue.severity.value}] {issue.category.value} {location}")
            lines.append(f"    {issue.description}")

    if result.gate and status_message:
        lines.append("")
        lines.append(format_gate_output(result.gate, status_message))

    lines.append("=" * 60)
    return "\n".join(lines)


def print_analysis(analysis: CommitSizeAnalysis, chunks: list[ReviewChunk] | None = None) -> None:
    print(format_analysis_output(analysis, chunks))


def print_gate_result(result: QualityGateResult, status_message: str) -> None:
    print(format_gate_output(result, status_message))


def print_health_report(report: dict[str, Any]) -> None:
    print(format_health_output(report))


def print_review_result(result: PipelineResult, status_message: str | None = None) -> None:
    print(format_review_output(result, status_message))
