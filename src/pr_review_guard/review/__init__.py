"""Review module for invoking, validating and chunking LLM reviews."""

from pr_review_guard.review.chunker import ReviewChunk, merge_chunk_responses, split_files_into_chunks
from pr_review_guard.review.llm_reviewer import AnthropicReviewInvoker, ReviewInvoker, ReviewPrompt
from pr_review_guard.review.validator import (
    ResponseValidation,
    fix_response,
    process_response,
    validate_response,
)

__all__ = [
    "AnthropicReviewInvoker",
    "ReviewInvoker",
    "ReviewPrompt",
    "ReviewChunk",
    "split_files_into_chunks",
    "merge_chunk_responses",
    "ResponseValidation",
    "validate_response",
    "fix_response",
    "process_response",
]
