"""Gates module for size and quality decisions."""

from pr_review_guard.gates.quality_gate import (
    GateReview,
    OverrideLedger,
    QualityGateEvaluator,
    QualityGateResult,
)
from pr_review_guard.gates.size_gate import (
    CommitSizeAnalysis,
    SizeStrategy,
    analyze_commit_size,
    filter_oversized_files,
)

__all__ = [
    "CommitSizeAnalysis", "SizeStrategy", "analyze_commit_size", "filter_oversized_files",
    "GateReview", "OverrideLedger", "QualityGateEvaluator", "QualityGateResult",
]
