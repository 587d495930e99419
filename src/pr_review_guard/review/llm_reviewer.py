"""LLM review invoker using Claude API."""

import json
from dataclasses import dataclass
from typing import Any, Protocol

from anthropic import Anthropic
from loguru import logger

from pr_review_guard.config import LLMConfig
from pr_review_guard.models import FileDescriptor

RESPONSE_FORMAT = """\
Respond in JSON format:
{
  "issues": [
    {
      "severity": "HIGH|MEDIUM|LOW",
      "category": "Security|Performance|Standards|Formatting|Logic",
      "description": "What's wrong",
      "file": "path/to/file.py",
      "line": 42,
      "recommendation": "How to fix it"
    }
  ],
  "summary": {
    "total_issues": 0,
    "high_severity_count": 0,
    "medium_severity_count": 0,
    "low_severity_count": 0
  }
}"""

REVIEW_SYSTEM_PROMPT = f"""\
You are an expert code reviewer. Review the changed files and report actionable issues.

Focus on:
1. Security vulnerabilities
2. Logic errors and bugs
3. Performance problems
4. Coding standards violations

Rate each issue HIGH (must fix before merge), MEDIUM (should fix) or LOW (nice to fix).
For each issue, provide the exact file path and line number.

{RESPONSE_FORMAT}"""


class ResponseParseError(ValueError):
    """The review service replied with text that is not a JSON object."""


@dataclass
class ReviewPrompt:
    """System and user halves of a review request."""

    system: str
    user: str


def render_files(files: list[FileDescriptor]) -> str:
    """Render changed files as fenced blocks for the user prompt."""
    sections = []
    for f in files:
        sections.append(f"### {f.path}\n```\n{f.content}\n```")
    return "\n\n".join(sections)


def build_review_prompt(files: list[FileDescriptor]) -> ReviewPrompt:
    """Full review prompt for a chunk of files."""
    user = f"""## Changed Files
{render_files(files)}

Please review these changes and provide your feedback in the JSON format specified."""
    return ReviewPrompt(system=REVIEW_SYSTEM_PROMPT, user=user)


def parse_review_json(text: str) -> dict[str, Any]:
    """Parse a JSON object out of the model's reply.

    Falls back to the outermost ``{...}`` span when the reply wraps the JSON
    in prose. Raises ResponseParseError when no object can be recovered.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise ResponseParseError("Failed to parse review response: no JSON object found")
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"Failed to parse review response: {e}") from e

    if not isinstance(data, dict):
        raise ResponseParseError("Failed to parse review response: top level is not an object")
    return data


class ReviewInvoker(Protocol):
    """Anything that can run one review request. Raises on failure."""

    def invoke(self, prompt: ReviewPrompt, files: list[FileDescriptor]) -> dict[str, Any]:
        ...


class AnthropicReviewInvoker:
    """Claude-based review invoker."""

    def __init__(self, api_key: str, llm: LLMConfig | None = None):
        """Initialize with Anthropic API key."""
        self.client = Anthropic(api_key=api_key)
        self.llm = llm or LLMConfig()

    def invoke(self, prompt: ReviewPrompt, files: list[FileDescriptor]) -> dict[str, Any]:
        """Send the prompt and return the parsed JSON reply."""
        logger.debug(f"Requesting review of {len(files)} files from {self.llm.default_model}")

        response = self.client.messages.create(
            model=self.llm.default_model,
            max_tokens=self.llm.max_tokens,
            system=prompt.system,
            messages=[{"role": "user", "content": prompt.user}],
        )

        if not response.content:
            raise ResponseParseError("Failed to parse review response: empty reply")
        return parse_review_json(response.content[0].text)
