"""Review pipeline: availability check, size handling, attempt loop, quality gate."""

import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from loguru import logger

from pr_review_guard.config import Config
from pr_review_guard.execution.circuit_breaker import BreakerResult, run_with_breaker
from pr_review_guard.execution.degradation import DegradationMode, ServiceAvailabilityMonitor
from pr_review_guard.execution.fallback import (
    FallbackStrategist,
    FallbackStrategy,
    create_manual_response,
)
from pr_review_guard.execution.retry_handler import RetryQueue, is_retryable_error
from pr_review_guard.gates.quality_gate import GateReview, QualityGateEvaluator, QualityGateResult
from pr_review_guard.gates.size_gate import (
    CommitSizeAnalysis,
    OversizedFile,
    SizeStrategy,
    analyze_commit_size,
    build_skip_notification,
    build_split_notification,
    filter_oversized_files,
)
from pr_review_guard.metrics.audit import AuditSink, NullAuditSink, safe_audit
from pr_review_guard.models import FileDescriptor, ReviewContext, SeverityBreakdown, build_summary
from pr_review_guard.review.chunker import ReviewChunk, merge_chunk_responses, split_files_into_chunks
from pr_review_guard.review.llm_reviewer import (
    ResponseParseError,
    ReviewInvoker,
    ReviewPrompt,
    build_review_prompt,
)
from pr_review_guard.review.validator import ProcessedResponse, process_response


class ReviewAbortedError(Exception):
    """The attempt loop ended with no strategy able to produce a response."""


@dataclass
class ChunkReview:
    """Final response for one chunk and how it was obtained."""

    index: int
    files: list[str]
    response: dict[str, Any]
    attempts: int
    fallback_used: bool = False
    strategy: FallbackStrategy | None = None


@dataclass
class PipelineResult:
    """Everything the orchestration layer needs after one review."""

    mode: DegradationMode
    response: dict[str, Any] | None = None
    analysis: CommitSizeAnalysis | None = None
    gate: QualityGateResult | None = None
    chunks: list[ChunkReview] = field(default_factory=list)
    excluded_files: list[OversizedFile] = field(default_factory=list)
    notifications: list[dict[str, Any]] = field(default_factory=list)
    skipped: bool = False
    duration_ms: int = 0


class ReviewPipeline:
    """Runs one changeset through the resilience and decision engine.

    Never raises past ``run``: every failure ends in a real, repaired or
    synthesized response.
    """

    def __init__(
        self,
        invoker: ReviewInvoker,
        config: Config | None = None,
        monitor: ServiceAvailabilityMonitor | None = None,
        strategist: FallbackStrategist | None = None,
        evaluator: QualityGateEvaluator | None = None,
        audit: AuditSink | None = None,
    ):
        self.invoker = invoker
        self.config = config or Config()
        self.audit = audit or NullAuditSink()
        self.monitor = monitor or ServiceAvailabilityMonitor(
            check_interval_ms=self.config.degradation.check_interval_ms,
            probe_timeout_s=self.config.degradation.probe_timeout_seconds,
            modes=self.config.degradation.modes,
        )
        self.strategist = strategist or FallbackStrategist(
            max_attempts=self.config.retry.max_retries,
            enabled=self.config.retry.fallbacks_enabled,
            base_delay_ms=self.config.retry.retry_delay_ms,
            max_delay_ms=self.config.retry.max_retry_delay_ms,
        )
        self.evaluator = evaluator or QualityGateEvaluator(
            self.config.quality_gates, audit=self.audit
        )

    def run(
        self,
        files: list[FileDescriptor],
        context: ReviewContext,
        commit_message: str = "",
        environment: str | None = None,
        emergency_reason: str | None = None,
    ) -> PipelineResult:
        """Review ``files`` and gate the result.

        ``emergency_reason`` skips the review itself, but on a production
        target the bypass spends one of the author's daily overrides and is
        blocked once they are used up.
        """
        start = time.monotonic()
        mode = self.monitor.determine_mode()
        result = PipelineResult(mode=mode)

        if mode in (DegradationMode.OFFLINE, DegradationMode.MINIMAL):
            logger.warning(f"Running in {mode.value} mode, skipping automated review")
            result.response = self.monitor.create_offline_review_response(context)
            result.skipped = True
            return self._finish(result, context, start)

        analysis = analyze_commit_size(files, self.config.limits)
        result.analysis = analysis
        to_review = list(files)

        if analysis.strategy == SizeStrategy.SKIP and analysis.reason == "total_size_exceeded":
            result.notifications.append(
                build_skip_notification(analysis, self.config.limits, context)
            )
            result.skipped = True
            return self._finish(result, context, start)

        if analysis.reason == "oversized_files":
            filtered = filter_oversized_files(files, self.config.limits)
            to_review = filtered.included
            result.excluded_files = filtered.excluded
            result.notifications.append(
                build_skip_notification(analysis, self.config.limits, context)
            )
            if not to_review:
                logger.warning("Every file exceeds the size limit, skipping review")
                result.skipped = True
                return self._finish(result, context, start)

        chunks = split_files_into_chunks(to_review, self.config.limits)
        if analysis.strategy == SizeStrategy.SPLIT:
            result.notifications.append(build_split_notification(chunks, analysis, context))

        if emergency_reason:
            decision = self.strategist.execute_strategy(
                FallbackStrategy.EMERGENCY, context=context, reason=emergency_reason
            )
            result.response = decision.response
        elif not self.monitor.should_proceed("ai_review"):
            decision = self.strategist.execute_strategy(
                FallbackStrategy.DEGRADED, files=to_review, context=context
            )
            result.response = self.monitor.create_partial_review_response(
                context, decision.response
            )
        else:
            result.chunks = [
                self._review_chunk(i, chunk, context) for i, chunk in enumerate(chunks)
            ]
            if not result.chunks:
                result.response = {"issues": [], "summary": build_summary([])}
            elif len(result.chunks) == 1:
                result.response = result.chunks[0].response
            else:
                result.response = merge_chunk_responses([c.response for c in result.chunks])

            if mode == DegradationMode.PARTIAL:
                result.response = self.monitor.create_partial_review_response(
                    context, result.response
                )

        result.gate = self.evaluator.evaluate(
            GateReview(
                severity_breakdown=SeverityBreakdown.from_issues(result.response["issues"]),
                commit_message=commit_message,
                commit_author=context.author,
                target_branch=context.target_branch,
                emergency=bool(emergency_reason),
            ),
            environment,
            context,
        )
        return self._finish(result, context, start)

    def _finish(
        self, result: PipelineResult, context: ReviewContext, start: float
    ) -> PipelineResult:
        result.duration_ms = int((time.monotonic() - start) * 1000)
        safe_audit(
            self.audit.log_info,
            "review_completed",
            {
                "mode": result.mode.value,
                "skipped": result.skipped,
                "chunks": len(result.chunks),
                "blocked": result.gate.blocked if result.gate else None,
                "duration_ms": result.duration_ms,
            },
            context,
        )
        return result

    def _call_timeout(self) -> float | None:
        timeout_ms = self.monitor.get_mode_configuration().timeout_ms
        return timeout_ms / 1000 if timeout_ms > 0 else None

    def _invoke(self, prompt: ReviewPrompt, files: list[FileDescriptor]) -> BreakerResult:
        return run_with_breaker(
            partial(self.invoker.invoke, prompt, files), self._call_timeout()
        )

    def _review_chunk(
        self, index: int, chunk: ReviewChunk, context: ReviewContext
    ) -> ChunkReview:
        paths = [f.path for f in chunk.files]
        try:
            return self._attempt_loop(index, chunk, context)
        except ReviewAbortedError as e:
            logger.error(f"Review of chunk {index + 1} aborted: {e}")
            return ChunkReview(
                index=index,
                files=paths,
                response=create_manual_response(e, context),
                attempts=self.strategist.max_attempts,
                fallback_used=True,
                strategy=FallbackStrategy.MANUAL,
            )

    def _attempt_loop(
        self, index: int, chunk: ReviewChunk, context: ReviewContext
    ) -> ChunkReview:
        """Attempts run strictly in order; each waits out its delay in the queue."""
        paths = [f.path for f in chunk.files]
        target = f"chunk-{index + 1}"
        queue = RetryQueue()
        prompt = build_review_prompt(chunk.files)
        attempt = 1
        delay_ms = 0.0

        while True:
            queue.enqueue(target, partial(self._invoke, prompt, chunk.files), delay_ms, attempt)
            outcome = queue.drain()[0]
            if not outcome.succeeded:
                raise ReviewAbortedError(f"Review call could not be made: {outcome.error}")

            breaker: BreakerResult = outcome.value
            if breaker.completed:
                processed = process_response(breaker.value, None, context)
            elif isinstance(breaker.error, ResponseParseError):
                # Unparseable output gets a synthesized response, not another attempt
                processed = process_response(None, breaker.error, context)
            else:
                processed = ProcessedResponse(
                    error=breaker.error, retryable=is_retryable_error(breaker.error)
                )

            if processed.success:
                return ChunkReview(
                    index=index,
                    files=paths,
                    response=processed.response,
                    attempts=attempt,
                    fallback_used=processed.fallback_used,
                )

            strategy = self.strategist.determine_strategy(processed.error, attempt)
            logger.warning(
                f"Attempt {attempt} for {target} failed ({processed.error}), "
                f"strategy: {strategy.value}"
            )
            decision = self.strategist.execute_strategy(
                strategy,
                error=processed.error,
                attempt=attempt,
                files=chunk.files,
                original_prompt=prompt,
                context=context,
            )

            if not decision.should_retry:
                if decision.response is None:
                    raise ReviewAbortedError(
                        f"No fallback available after attempt {attempt}: {processed.error}"
                    )
                return ChunkReview(
                    index=index,
                    files=paths,
                    response=decision.response,
                    attempts=attempt,
                    fallback_used=True,
                    strategy=strategy,
                )

            if decision.prompt is not None:
                prompt = decision.prompt
            delay_ms = decision.delay_ms or 0.0
            attempt += 1
