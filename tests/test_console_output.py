"""Tests for console output."""

from conftest import VALID_REVIEW, make_file

from pr_review_guard.config import LimitsConfig
from pr_review_guard.execution.degradation import DegradationMode, ServiceAvailabilityMonitor
from pr_review_guard.gates.quality_gate import QualityGateResult
from pr_review_guard.gates.size_gate import analyze_commit_size
from pr_review_guard.output.console import (
    format_analysis_output,
    format_gate_output,
    format_health_output,
    format_review_output,
)
from pr_review_guard.pipeline import PipelineResult
from pr_review_guard.review.chunker import split_files_into_chunks


def test_format_analysis_within_limits(limits):
    analysis = analyze_commit_size([make_file("a.py", 400)], limits)

    output = format_analysis_output(analysis)

    assert "Files: 1" in output
    assert "Total size: 400 Bytes" in output
    assert "Estimated tokens: 100" in output
    assert "Within limits" in output


def test_format_analysis_with_chunks(limits):
    files = [make_file(f"f{i}.py", 10) for i in range(60)]
    analysis = analyze_commit_size(files, limits)
    chunks = split_files_into_chunks(files, limits)

    output = format_analysis_output(analysis, chunks)

    assert "SPLIT (file_count_exceeded)" in output
    assert "## Review Chunks" in output
    assert "1. 50 files" in output
    assert "2. 10 files" in output


def test_format_analysis_oversized_files():
    limits = LimitsConfig(max_file_size_bytes=100, max_tokens=10_000)
    analysis = analyze_commit_size([make_file("huge.bin", 2048, content="")], limits)

    output = format_analysis_output(analysis)

    assert "## Oversized Files" in output
    assert "huge.bin (2 KB > 100 Bytes)" in output


def test_format_gate_output_with_override():
    result = QualityGateResult(
        passed=True, blocked=False, reason="URGENT override applied",
        override_used=True, highest_severity="HIGH", issues_found=1,
        is_production=True, remaining_overrides=2,
    )

    output = format_gate_output(result, "✅ Quality gate passed (URGENT override used)")

    assert "URGENT override used" in output
    assert "Highest severity: HIGH" in output
    assert "Production: yes" in output
    assert "Overrides remaining today: 2" in output


def test_format_gate_output_limit_exceeded():
    result = QualityGateResult(passed=False, blocked=True, reason="x", limit_exceeded=True)

    output = format_gate_output(result, "❌ Quality gate failed: x")

    assert "daily limit exceeded" in output
    assert "Production: no" in output


def test_format_health_output():
    report = ServiceAvailabilityMonitor().get_health_report()
    report["services"]["language-model"]["error"] = "connection refused"

    output = format_health_output(report)

    assert "Mode: FULL" in output
    assert "✗ language-model (critical)" in output
    assert "connection refused" in output
    assert "Critical service Language Model API is unavailable" in output


def test_format_review_output_lists_issues():
    result = PipelineResult(mode=DegradationMode.FULL, response=VALID_REVIEW, duration_ms=12)

    output = format_review_output(result)

    assert "Code Review (full mode, 12ms)" in output
    assert "Issues: 2 (high 1, medium 0, low 1)" in output
    assert "[HIGH] Security app/db.py:12" in output
    assert "SQL built from user input" in output
    assert "## Quality Gate" not in output


def test_format_review_output_skipped():
    result = PipelineResult(
        mode=DegradationMode.FULL,
        skipped=True,
        notifications=[{"title": "Large Commit Skipped - a/b (main)", "message": "skipped"}],
    )

    output = format_review_output(result)

    assert "⚠ Large Commit Skipped - a/b (main)" in output
    assert "No review performed" in output


def test_format_review_output_with_gate():
    gate = QualityGateResult(passed=False, blocked=True, reason="HIGH issues")
    result = PipelineResult(mode=DegradationMode.PARTIAL, response=VALID_REVIEW, gate=gate)

    output = format_review_output(result, "❌ Quality gate failed: HIGH issues")

    assert "❌ Quality gate failed: HIGH issues" in output


def test_format_review_output_normalizes_odd_issue_values():
    response = {
        "issues": [
            {"severity": ["HIGH"], "category": "Style", "description": "x", "line": "7"},
            "not an issue",
        ],
        "summary": {"total_issues": 1},
    }
    result = PipelineResult(mode=DegradationMode.FULL, response=response)

    output = format_review_output(result)

    assert "  [MEDIUM] Standards " in output
    assert ":7" not in output
