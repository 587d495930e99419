"""CLI entrypoint for PR Review Guard."""

import argparse
import fnmatch
import json
import os
import sys
from pathlib import Path

from loguru import logger

from pr_review_guard.config import Config, load_config, validate_config
from pr_review_guard.execution.degradation import DegradationMode, ServiceAvailabilityMonitor
from pr_review_guard.execution.probes import default_probes
from pr_review_guard.gates.quality_gate import GateReview, QualityGateEvaluator
from pr_review_guard.gates.size_gate import SizeStrategy, analyze_commit_size
from pr_review_guard.logger import setup_logging
from pr_review_guard.metrics.audit import AuditSink, NullAuditSink, SupabaseAuditSink
from pr_review_guard.models import FileDescriptor, ReviewContext
from pr_review_guard.output.console import (
    print_analysis,
    print_gate_result,
    print_health_report,
    print_review_result,
)
from pr_review_guard.pipeline import ReviewPipeline
from pr_review_guard.review.chunker import split_files_into_chunks
from pr_review_guard.review.llm_reviewer import AnthropicReviewInvoker


def _match_pattern(filename: str, pattern: str) -> bool:
    """Simple glob pattern matching."""
    return fnmatch.fnmatch(filename, pattern)


def load_files(paths: list[str], ignore: list[str]) -> list[FileDescriptor]:
    """Read local files into descriptors, skipping ignored patterns."""
    files = []
    for raw in paths:
        path = Path(raw)
        if any(_match_pattern(str(path), pattern) for pattern in ignore):
            continue
        files.append(FileDescriptor(
            path=str(path),
            size_bytes=path.stat().st_size,
            content=path.read_text(errors="replace"),
        ))
    return files


def _audit_sink() -> AuditSink:
    supabase_url = os.environ.get("SUPABASE_URL")
    supabase_key = os.environ.get("SUPABASE_KEY")
    if supabase_url and supabase_key:
        return SupabaseAuditSink(supabase_url, supabase_key)
    return NullAuditSink()


def cmd_analyze(args: argparse.Namespace, config: Config) -> int:
    files = load_files(args.paths, config.ignore)
    analysis = analyze_commit_size(files, config.limits)

    chunks = None
    if analysis.strategy == SizeStrategy.SPLIT:
        chunks = split_files_into_chunks(files, config.limits)

    print_analysis(analysis, chunks)
    return 1 if analysis.strategy == SizeStrategy.SKIP else 0


def cmd_gate(args: argparse.Namespace, config: Config) -> int:
    with open(args.review) as f:
        data = json.load(f)

    review = GateReview.from_dict(data)
    if args.branch:
        review.target_branch = args.branch
    if args.author:
        review.commit_author = args.author
    if args.message:
        review.commit_message = args.message

    context = ReviewContext(
        repository=args.repo or "",
        target_branch=review.target_branch,
        author=review.commit_author,
    )
    evaluator = QualityGateEvaluator(config.quality_gates, audit=_audit_sink())
    environment = args.environment or config.current_environment
    result = evaluator.evaluate(review, environment, context)

    print_gate_result(result, evaluator.generate_status_message(result))
    return 1 if result.blocked else 0


def cmd_health(args: argparse.Namespace, config: Config) -> int:
    monitor = ServiceAvailabilityMonitor(
        check_interval_ms=config.degradation.check_interval_ms,
        probe_timeout_s=config.degradation.probe_timeout_seconds,
        modes=config.degradation.modes,
    )
    monitor.check_all(default_probes())
    mode = monitor.determine_mode()

    print_health_report(monitor.get_health_report())
    return 1 if mode == DegradationMode.OFFLINE else 0


def cmd_review(args: argparse.Namespace, config: Config) -> int:
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        print("Error: ANTHROPIC_API_KEY not set", file=sys.stderr)
        return 1

    files = load_files(args.paths, config.ignore)
    monitor = ServiceAvailabilityMonitor(
        check_interval_ms=config.degradation.check_interval_ms,
        probe_timeout_s=config.degradation.probe_timeout_seconds,
        modes=config.degradation.modes,
    )
    monitor.check_all(default_probes())

    pipeline = ReviewPipeline(
        AnthropicReviewInvoker(api_key, config.llm),
        config,
        monitor=monitor,
        audit=_audit_sink(),
    )
    context = ReviewContext(
        repository=args.repo or "",
        target_branch=args.branch or "",
        commit_sha=args.commit or "",
        author=args.author or "",
    )
    result = pipeline.run(
        files,
        context,
        commit_message=args.message or "",
        environment=args.environment or config.current_environment,
        emergency_reason=args.emergency,
    )

    status = pipeline.evaluator.generate_status_message(result.gate) if result.gate else None
    print_review_result(result, status)

    if args.output and result.response is not None:
        with open(args.output, "w") as f:
            json.dump(result.response, f, indent=2)

    return 1 if result.gate and result.gate.blocked else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resilience and quality gate engine for AI code review",
        prog="pr-review-guard",
    )
    parser.add_argument("--config", default=".ai-review.yaml", help="Config file path")
    parser.add_argument("--log-level", default="INFO", help="Log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze changeset size and chunk plan")
    analyze.add_argument("paths", nargs="+", help="Changed files")

    gate = subparsers.add_parser("gate", help="Run the quality gate on a saved review")
    gate.add_argument("--review", required=True, help="Review JSON file")
    gate.add_argument("--branch", help="Target branch")
    gate.add_argument("--author", help="Commit author")
    gate.add_argument("--message", help="Commit message")
    gate.add_argument("--environment", help="Deployment environment name")
    gate.add_argument("--repo", help="Repository (owner/repo)")

    subparsers.add_parser("health", help="Probe dependent services")

    review = subparsers.add_parser("review", help="Review local files and run the quality gate")
    review.add_argument("paths", nargs="+", help="Changed files")
    review.add_argument("--branch", help="Target branch")
    review.add_argument("--author", help="Commit author")
    review.add_argument("--message", help="Commit message")
    review.add_argument("--repo", help="Repository (owner/repo)")
    review.add_argument("--commit", help="Commit SHA")
    review.add_argument("--environment", help="Deployment environment name")
    review.add_argument("--emergency", metavar="REASON", help="Bypass review for an emergency (spends a daily override on production)")
    review.add_argument("--output", help="Write the final review JSON to this file")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    from dotenv import load_dotenv
    load_dotenv()

    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.json_logs)

    config = load_config(Path(args.config))
    errors = validate_config(config)
    if errors:
        for error in errors:
            print(f"Config error: {error}", file=sys.stderr)
        return 1

    commands = {
        "analyze": cmd_analyze,
        "gate": cmd_gate,
        "health": cmd_health,
        "review": cmd_review,
    }

    try:
        return commands[args.command](args, config)
    except Exception as e:
        logger.exception(f"{args.command} failed")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
